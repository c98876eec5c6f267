"""
Command line tools for xchain-rpc.
"""
from .main import app

__all__ = ["app"]
