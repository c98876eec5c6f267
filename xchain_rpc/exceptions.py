"""
Exceptions for the xchain-rpc protocol.

Every protocol error is terminal for the attempted operation and is raised to
the immediate caller. Remote-call and callback failures are not errors: they
are reported as ``success=False`` in the emitted events.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """
    Error codes carried by protocol errors.

    The values match the revert reasons used by the on-chain registries.
    """
    NON_EXISTENT_CALL = "non-existent call"
    ILLEGAL_PROXY_ADDRESS = "illegal proxy address"
    ILLEGAL_RPC_SERVER = "illegal rpc server"
    INCORRECT_PROXY = "incorrect proxy"
    NON_EXISTENT_CALL_REQUEST = "non-existent call request"
    NON_EXISTENT_CALL_EXECUTION = "non-existent call execution"
    FAILED_CALL_REQUEST = "failed call request"
    FAILED_CALL_EXECUTION = "failed call execution"
    MULTIPLE_EXECUTION = "multiple execution"
    MULTIPLE_ACKNOWLEDGEMENT = "multiple acknowledgement"
    INSUFFICIENT_RESOURCES = "insufficient resources"
    CODEC_ERROR = "codec error"


class RPCError(Exception):
    """Base exception for protocol errors."""

    code: ErrorCode

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.code.value
        super().__init__(self.message)


class NonExistentCall(RPCError):
    """Raised when a call id is not in the expected pending/requested state."""
    code = ErrorCode.NON_EXISTENT_CALL


class IllegalProxyAddress(RPCError):
    """Raised when a call request comes from a proxy the server does not trust."""
    code = ErrorCode.ILLEGAL_PROXY_ADDRESS


class IllegalRpcServer(RPCError):
    """Raised when an execution was performed by a server the proxy does not trust."""
    code = ErrorCode.ILLEGAL_RPC_SERVER


class IncorrectProxy(RPCError):
    """Raised when the proof is addressed to another proxy."""
    code = ErrorCode.INCORRECT_PROXY


class InclusionProofError(RPCError):
    """Base class for failed header or inclusion verification."""
    pass


class NonExistentCallRequest(InclusionProofError):
    """Raised by the server when the call request transaction cannot be proven."""
    code = ErrorCode.NON_EXISTENT_CALL_REQUEST


class NonExistentCallExecution(InclusionProofError):
    """Raised by the proxy when the execution transaction cannot be proven."""
    code = ErrorCode.NON_EXISTENT_CALL_EXECUTION


class FailedCallRequest(RPCError):
    """Raised when the proven call request transaction reverted."""
    code = ErrorCode.FAILED_CALL_REQUEST


class FailedCallExecution(RPCError):
    """Raised when the proven execution transaction reverted."""
    code = ErrorCode.FAILED_CALL_EXECUTION


class MultipleExecution(RPCError):
    """Raised when a call request has already been executed."""
    code = ErrorCode.MULTIPLE_EXECUTION


class MultipleAcknowledgement(RPCError):
    """Raised when a call has already been acknowledged."""
    code = ErrorCode.MULTIPLE_ACKNOWLEDGEMENT


class InsufficientResources(RPCError):
    """Raised when the supplied gas is below the minimum for a safe invocation."""
    code = ErrorCode.INSUFFICIENT_RESOURCES

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"insufficient resources: need {required} gas, {available} available"
        )


class CodecError(RPCError, ValueError):
    """Raised when bytes cannot be decoded into a header, transaction or receipt."""
    code = ErrorCode.CODEC_ERROR


class ExecutionError(Exception):
    """Base class for failures of the execution environment."""
    pass


class Revert(ExecutionError):
    """
    Contract-triggered revert.

    Args:
        reason: Human-readable revert reason
    """

    def __init__(self, reason: str = ""):
        self.reason = reason
        super().__init__(f"revert: {reason}" if reason else "revert")


class OutOfGas(ExecutionError):
    """Raised when execution exceeds its gas limit."""
    pass
