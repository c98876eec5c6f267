"""
ABI helpers for the registry interfaces.

Calldata is encoded with the standard contract ABI so that the
transactions relayed between chains are the ones a wallet would produce.
"""
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import ABITypeError, DecodingError, EncodingError, ParseError
from eth_utils import (
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
)

# Proof tuple: header, tx, receipt, path, tx nodes, receipt nodes
PROOF_TUPLE = "(bytes,bytes,bytes,bytes,bytes[],bytes[])"

CALL_CONTRACT = "callContract(address,bytes,bytes,string)"
REQUEST_CALL = "requestCall(uint256)"
EXECUTE_CALL = f"executeCall({PROOF_TUPLE})"
ACKNOWLEDGE_CALL = f"acknowledgeCall({PROOF_TUPLE})"
NEXT_CALL_ID = "nextCallId()"

ERROR_SELECTOR = function_signature_to_4byte_selector("Error(string)")


class ABIError(ValueError):
    """Raised when calldata or log data does not match its declared types."""
    pass


def split_signature(signature: str) -> Tuple[str, List[str]]:
    """
    Split ``name(type1,type2)`` into its name and top-level argument types.

    Tuple types are kept intact, e.g. ``f((bytes,bytes),uint256)`` yields
    ``["(bytes,bytes)", "uint256"]``.
    """
    open_at = signature.find("(")
    if open_at <= 0 or not signature.endswith(")"):
        raise ABIError(f"Invalid signature: {signature}")
    name = signature[:open_at]
    inner = signature[open_at + 1:-1]
    types: List[str] = []
    depth = 0
    current = ""
    for ch in inner:
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        current += ch
    if current:
        types.append(current)
    return name, types


def function_selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


def event_topic(signature: str) -> bytes:
    return event_signature_to_log_topic(signature)


def callback_signature(name: str) -> str:
    """Signature of a callback receiving ``(callData, success, returnData)``."""
    return f"{name}(bytes,bool,bytes)"


def encode_args(types: Sequence[str], args: Sequence[Any]) -> bytes:
    try:
        return encode(list(types), list(args))
    except (EncodingError, ParseError, ABITypeError, TypeError) as e:
        raise ABIError(f"Cannot encode {list(types)}: {e}") from e


def decode_args(types: Sequence[str], data: bytes) -> Tuple[Any, ...]:
    try:
        return tuple(decode(list(types), data))
    except (DecodingError, ParseError, ABITypeError, OverflowError) as e:
        raise ABIError(f"Cannot decode {list(types)}: {e}") from e


def encode_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """
    Build calldata for ``signature``.

    Args:
        signature: Canonical function signature, e.g. ``requestCall(uint256)``
        args: Positional arguments

    Returns:
        4-byte selector followed by the ABI encoded arguments
    """
    _, types = split_signature(signature)
    return function_selector(signature) + encode_args(types, args)


def decode_call(signature: str, calldata: bytes) -> Tuple[Any, ...]:
    """
    Decode calldata produced for ``signature``.

    Raises:
        ABIError: If the selector does not match or the arguments are malformed
    """
    if calldata[:4] != function_selector(signature):
        raise ABIError(f"Calldata is not a call to {signature}")
    _, types = split_signature(signature)
    return decode_args(types, calldata[4:])


def encode_revert(reason: str) -> bytes:
    return ERROR_SELECTOR + encode(["string"], [reason])


def decode_revert(data: bytes) -> str:
    """Extract an ``Error(string)`` reason; returns an empty string otherwise."""
    if data[:4] != ERROR_SELECTOR:
        return ""
    try:
        return decode(["string"], data[4:])[0]
    except DecodingError:
        return ""


@dataclass(frozen=True)
class EventSpec:
    """
    Event layout.

    All parameters are carried in the log data; the only topic is the event
    signature hash.
    """
    name: str
    types: Tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.types)})"

    @property
    def topic(self) -> bytes:
        return event_topic(self.signature)

    def encode(self, values: Sequence[Any]) -> Tuple[List[bytes], bytes]:
        return [self.topic], encode_args(self.types, values)

    def matches(self, topics: Sequence[bytes]) -> bool:
        return bool(topics) and topics[0] == self.topic

    def decode(self, data: bytes) -> Tuple[Any, ...]:
        return decode_args(self.types, data)


CALL_PREPARED = EventSpec("CallPrepared", ("uint256",))
CALL_REQUESTED = EventSpec(
    "CallRequested", ("uint256", "address", "address", "address", "bytes")
)
CALL_EXECUTED = EventSpec("CallExecuted", ("uint256", "address", "bool", "bytes"))
CALL_ACKNOWLEDGED = EventSpec("CallAcknowledged", ("uint256", "bool"))
