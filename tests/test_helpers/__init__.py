"""
Helpers shared across the xchain-rpc tests.
"""
from .contracts import (
    CALLBACK_NAME,
    CallbackRecorder,
    FailingCallbackRecorder,
    MockContract,
)
from .deployment import DAPP_ID, Deployment, deploy, remote_call_data

__all__ = [
    "CALLBACK_NAME",
    "CallbackRecorder",
    "DAPP_ID",
    "Deployment",
    "FailingCallbackRecorder",
    "MockContract",
    "deploy",
    "remote_call_data",
]
