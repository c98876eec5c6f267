"""
Data models for xchain-rpc.
"""
import json
from enum import Enum
from typing import Annotated, Any, ClassVar, List, Optional, Tuple, Union

import rlp
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer, ValidationError
from rlp.exceptions import RLPException

from .abi import (
    CALL_ACKNOWLEDGED,
    CALL_EXECUTED,
    CALL_PREPARED,
    CALL_REQUESTED,
    EventSpec,
)
from .codec import Log
from .exceptions import CodecError


def _to_bytes(value: Any) -> Any:
    if isinstance(value, str):
        return bytes(HexBytes(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return value


def _to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'proof'}: {err['msg']}" for err in error.errors()
    )


def _to_node_list(value: Any) -> Any:
    # Proof nodes may arrive as a single RLP list of encoded nodes
    if isinstance(value, (str, bytes, bytearray, memoryview)):
        blob = _to_bytes(value)
        try:
            value = rlp.decode(blob)
        except RLPException as e:
            raise ValueError(f"Proof nodes are not an RLP list: {e}") from e
        if not isinstance(value, list) or any(not isinstance(node, bytes) for node in value):
            raise ValueError("Proof nodes must be an RLP list of byte strings")
        return value
    if isinstance(value, (list, tuple)):
        return [_to_bytes(node) for node in value]
    return value


HexBytesField = Annotated[
    bytes,
    BeforeValidator(_to_bytes),
    PlainSerializer(_to_hex, return_type=str, when_used="json"),
]
AddressField = Annotated[str, BeforeValidator(to_checksum_address)]
NodeListField = Annotated[
    List[bytes],
    BeforeValidator(_to_node_list),
    PlainSerializer(lambda nodes: [_to_hex(n) for n in nodes], return_type=List[str], when_used="json"),
]


class CallProof(BaseModel):
    """
    Proof that a transaction and its receipt are included in a block.

    This is the six-field wire format exchanged between the chains. JSON uses
    0x-hex strings and the original camelCase names; node lists may also be
    given as one RLP encoded list.
    """
    header: HexBytesField = Field(..., alias="rlpHeader")
    encoded_tx: HexBytesField = Field(..., alias="rlpEncodedTx")
    encoded_receipt: HexBytesField = Field(..., alias="rlpEncodedReceipt")
    tx_index_path: HexBytesField = Field(..., alias="path")
    tx_proof_nodes: NodeListField = Field(..., alias="rlpEncodedTxNodes")
    receipt_proof_nodes: NodeListField = Field(..., alias="rlpEncodedReceiptNodes")

    class Config:
        populate_by_name = True

    @classmethod
    def parse(cls, data: Union["CallProof", dict, list, tuple, str, bytes]) -> "CallProof":
        """
        Build a proof from any of its accepted representations.

        Args:
            data: A CallProof, the ABI tuple, a dict, or a JSON document

        Returns:
            Validated CallProof

        Raises:
            CodecError: If a field is missing or malformed, or a tuple does
                not have six fields
        """
        if isinstance(data, cls):
            return data
        try:
            if isinstance(data, (list, tuple)):
                if len(data) != 6:
                    raise CodecError(f"Proof tuple must have 6 fields, got {len(data)}")
                names = list(cls.model_fields)
                return cls(**dict(zip(names, data)))
            if isinstance(data, (str, bytes)):
                return cls.model_validate_json(data)
            return cls.model_validate(data)
        except ValidationError as e:
            raise CodecError(f"Malformed proof: {_describe(e)}") from e

    def to_abi(self) -> Tuple[bytes, bytes, bytes, bytes, List[bytes], List[bytes]]:
        return (
            self.header,
            self.encoded_tx,
            self.encoded_receipt,
            self.tx_index_path,
            list(self.tx_proof_nodes),
            list(self.receipt_proof_nodes),
        )

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), indent=indent)


class PendingCall(BaseModel):
    """Call prepared on the origin chain and not yet requested."""
    call_id: int = Field(..., alias="callId")
    caller: AddressField
    contract_address: AddressField = Field(..., alias="contractAddress")
    dapp_specific_id: HexBytesField = Field(..., alias="dappSpecificId")
    call_data: HexBytesField = Field(..., alias="callData")
    callback: str

    class Config:
        populate_by_name = True


class RequestedCall(BaseModel):
    """Routing kept after a request so the acknowledgement reaches the caller."""
    call_id: int = Field(..., alias="callId")
    caller: AddressField
    dapp_specific_id: HexBytesField = Field(..., alias="dappSpecificId")
    callback: str

    class Config:
        populate_by_name = True


class CallStatus(str, Enum):
    NON_EXISTENT = "non_existent"
    PREPARED = "prepared"
    REQUESTED = "requested"
    ACKNOWLEDGED = "acknowledged"


class EventModel(BaseModel):
    """Base class for registry events decoded from receipt logs."""
    EVENT: ClassVar[EventSpec]
    FIELDS: ClassVar[Tuple[str, ...]]

    emitter: Optional[str] = None

    class Config:
        populate_by_name = True

    @classmethod
    def from_log(cls, log: Log) -> "EventModel":
        """
        Decode a log emitted for this event.

        Raises:
            ValueError: If the log is not an instance of this event
        """
        if not cls.EVENT.matches(log.topics):
            raise ValueError(f"Log is not a {cls.EVENT.name} event")
        values = cls.EVENT.decode(log.data)
        return cls(emitter=log.emitter, **dict(zip(cls.FIELDS, values)))


class CallPrepared(EventModel):
    EVENT: ClassVar[EventSpec] = CALL_PREPARED
    FIELDS: ClassVar[Tuple[str, ...]] = ("call_id",)

    call_id: int = Field(..., alias="callId")


class CallRequested(EventModel):
    EVENT: ClassVar[EventSpec] = CALL_REQUESTED
    FIELDS: ClassVar[Tuple[str, ...]] = (
        "call_id", "caller", "remote_server", "remote_contract", "call_data",
    )

    call_id: int = Field(..., alias="callId")
    caller: AddressField
    remote_server: AddressField = Field(..., alias="remoteServer")
    remote_contract: AddressField = Field(..., alias="remoteContract")
    call_data: HexBytesField = Field(..., alias="callData")


class CallExecuted(EventModel):
    EVENT: ClassVar[EventSpec] = CALL_EXECUTED
    FIELDS: ClassVar[Tuple[str, ...]] = ("call_id", "proxy_address", "success", "returndata")

    call_id: int = Field(..., alias="callId")
    proxy_address: AddressField = Field(..., alias="remoteRPCProxy")
    success: bool
    returndata: HexBytesField = Field(..., alias="data")


class CallAcknowledged(EventModel):
    EVENT: ClassVar[EventSpec] = CALL_ACKNOWLEDGED
    FIELDS: ClassVar[Tuple[str, ...]] = ("call_id", "success")

    call_id: int = Field(..., alias="callId")
    success: bool
