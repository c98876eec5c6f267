"""
Canonical encoding of block headers, transactions and receipts.

The encodings are the RLP structures Ethereum clients hash, so the keccak of
an encoded header is its block hash and the encoded transactions/receipts are
the values committed to by the header's trie roots.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import rlp
from rlp.exceptions import RLPException
from rlp.sedes import Binary, CountableList, List as RLPList, big_endian_int, binary
from eth_utils import keccak, to_checksum_address

from .exceptions import CodecError

# Configure logger
logger = logging.getLogger(__name__)

hash32 = Binary.fixed_length(32)
address20 = Binary.fixed_length(20)
bloom256 = Binary.fixed_length(256)

BLANK_ROOT = keccak(rlp.encode(b""))
EMPTY_OMMERS_HASH = keccak(rlp.encode([]))
ZERO_HASH = b"\x00" * 32
ZERO_ADDRESS = b"\x00" * 20

STATUS_SUCCESS = b"\x01"
STATUS_FAILURE = b""

# ─────────────────────────────────────────────────────────────────────────
#  Headers
# ─────────────────────────────────────────────────────────────────────────

HEADER_FIELDS = (
    ("parent_hash", hash32),
    ("ommers_hash", hash32),
    ("coinbase", address20),
    ("state_root", hash32),
    ("transactions_root", hash32),
    ("receipts_root", hash32),
    ("logs_bloom", bloom256),
    ("difficulty", big_endian_int),
    ("number", big_endian_int),
    ("gas_limit", big_endian_int),
    ("gas_used", big_endian_int),
    ("timestamp", big_endian_int),
    ("extra_data", binary),
)
SEAL_FIELDS = (
    ("mix_hash", hash32),
    ("nonce", Binary.fixed_length(8)),
)


@dataclass(frozen=True)
class BlockHeader:
    """
    Block header in canonical field order.

    ``extensions`` holds the raw trailing fields appended by later forks
    (base fee, withdrawals root, blob gas fields, ...). They follow the seal
    fields in the sealed encoding and the ``extra_data`` field otherwise.
    """
    parent_hash: bytes
    ommers_hash: bytes
    coinbase: bytes
    state_root: bytes
    transactions_root: bytes
    receipts_root: bytes
    logs_bloom: bytes
    difficulty: int
    number: int
    gas_limit: int
    gas_used: int
    timestamp: int
    extra_data: bytes
    mix_hash: bytes = ZERO_HASH
    nonce: bytes = b"\x00" * 8
    extensions: Tuple[bytes, ...] = field(default_factory=tuple)

    @property
    def hash(self) -> bytes:
        """keccak256 of the sealed header encoding (the block hash)."""
        return keccak(encode_header(self))


def encode_header(header: BlockHeader, include_seal: bool = True) -> bytes:
    """
    Encode a header.

    Args:
        header: Header to encode
        include_seal: Whether to include the ``mix_hash``/``nonce`` seal fields

    Returns:
        RLP encoded header

    Raises:
        CodecError: If a field does not fit its canonical type
    """
    fields = HEADER_FIELDS + SEAL_FIELDS if include_seal else HEADER_FIELDS
    try:
        items: List[Any] = [
            sedes.serialize(getattr(header, name)) for name, sedes in fields
        ]
    except RLPException as e:
        raise CodecError(f"Invalid header field: {e}") from e
    items.extend(header.extensions)
    return rlp.encode(items)


def decode_header(data: bytes, sealed: bool = True) -> BlockHeader:
    """
    Decode a header produced by ``encode_header``.

    Args:
        data: RLP encoded header
        sealed: Whether the encoding carries the seal fields

    Returns:
        Decoded header

    Raises:
        CodecError: If the bytes are not a well-formed header
    """
    fields = HEADER_FIELDS + SEAL_FIELDS if sealed else HEADER_FIELDS
    items = _decode_list(data, "header")
    if len(items) < len(fields):
        raise CodecError(
            f"Header has {len(items)} fields, expected at least {len(fields)}"
        )
    values = {}
    try:
        for (name, sedes), item in zip(fields, items):
            values[name] = sedes.deserialize(item)
    except RLPException as e:
        raise CodecError(f"Invalid header field {name}: {e}") from e
    extensions = tuple(items[len(fields):])
    if any(not isinstance(item, bytes) for item in extensions):
        raise CodecError("Header extension fields must be byte strings")
    return BlockHeader(extensions=extensions, **values)


# ─────────────────────────────────────────────────────────────────────────
#  Transactions
# ─────────────────────────────────────────────────────────────────────────

class LegacyTransaction(rlp.Serializable):
    """Pre-EIP-2718 transaction, optionally EIP-155 replay protected."""
    fields = [
        ("nonce", big_endian_int),
        ("gas_price", big_endian_int),
        ("gas", big_endian_int),
        ("to", Binary.fixed_length(20, allow_empty=True)),
        ("value", big_endian_int),
        ("data", binary),
        ("v", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]

    tx_type = 0

    @property
    def chain_id(self) -> Optional[int]:
        if self.v >= 35:
            return (self.v - 35) // 2
        return None

    @property
    def recipient(self) -> Optional[str]:
        return to_checksum_address(self.to) if self.to else None


access_list_sedes = CountableList(RLPList([address20, CountableList(hash32)]))


class AccessListTransaction(rlp.Serializable):
    """EIP-2930 (type 1) transaction payload."""
    fields = [
        ("chain_id", big_endian_int),
        ("nonce", big_endian_int),
        ("gas_price", big_endian_int),
        ("gas", big_endian_int),
        ("to", Binary.fixed_length(20, allow_empty=True)),
        ("value", big_endian_int),
        ("data", binary),
        ("access_list", access_list_sedes),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]

    tx_type = 1

    @property
    def recipient(self) -> Optional[str]:
        return to_checksum_address(self.to) if self.to else None


class DynamicFeeTransaction(rlp.Serializable):
    """EIP-1559 (type 2) transaction payload."""
    fields = [
        ("chain_id", big_endian_int),
        ("nonce", big_endian_int),
        ("max_priority_fee_per_gas", big_endian_int),
        ("max_fee_per_gas", big_endian_int),
        ("gas", big_endian_int),
        ("to", Binary.fixed_length(20, allow_empty=True)),
        ("value", big_endian_int),
        ("data", binary),
        ("access_list", access_list_sedes),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]

    tx_type = 2

    @property
    def recipient(self) -> Optional[str]:
        return to_checksum_address(self.to) if self.to else None


class BlobTransaction(rlp.Serializable):
    """EIP-4844 (type 3) transaction payload, without the network wrapper."""
    fields = [
        ("chain_id", big_endian_int),
        ("nonce", big_endian_int),
        ("max_priority_fee_per_gas", big_endian_int),
        ("max_fee_per_gas", big_endian_int),
        ("gas", big_endian_int),
        ("to", address20),
        ("value", big_endian_int),
        ("data", binary),
        ("access_list", access_list_sedes),
        ("max_fee_per_blob_gas", big_endian_int),
        ("blob_versioned_hashes", CountableList(hash32)),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]

    tx_type = 3

    @property
    def recipient(self) -> Optional[str]:
        return to_checksum_address(self.to)


class Authorization(rlp.Serializable):
    fields = [
        ("chain_id", big_endian_int),
        ("address", address20),
        ("nonce", big_endian_int),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]


class SetCodeTransaction(rlp.Serializable):
    """EIP-7702 (type 4) transaction payload."""
    fields = [
        ("chain_id", big_endian_int),
        ("nonce", big_endian_int),
        ("max_priority_fee_per_gas", big_endian_int),
        ("max_fee_per_gas", big_endian_int),
        ("gas", big_endian_int),
        ("to", address20),
        ("value", big_endian_int),
        ("data", binary),
        ("access_list", access_list_sedes),
        ("authorization_list", CountableList(Authorization)),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]

    tx_type = 4

    @property
    def recipient(self) -> Optional[str]:
        return to_checksum_address(self.to)


Transaction = Union[
    LegacyTransaction, AccessListTransaction, DynamicFeeTransaction, BlobTransaction, SetCodeTransaction
]

TYPED_TRANSACTIONS = {
    cls.tx_type: cls
    for cls in (AccessListTransaction, DynamicFeeTransaction, BlobTransaction, SetCodeTransaction)
}


def encode_transaction(tx: Transaction) -> bytes:
    """Encode a transaction exactly as it is hashed and committed to."""
    payload = rlp.encode(tx)
    if tx.tx_type:
        return bytes([tx.tx_type]) + payload
    return payload


def decode_transaction(raw: bytes) -> Transaction:
    """
    Decode a legacy or EIP-2718 typed transaction (types 1 to 4).

    Raises:
        CodecError: If the bytes are malformed or the type is unsupported
    """
    if not raw:
        raise CodecError("Empty transaction")
    if raw[0] < 0xc0 and raw[0] not in TYPED_TRANSACTIONS:
        raise CodecError(f"Unsupported transaction type: {raw[0]}")
    try:
        if raw[0] >= 0xc0:
            return rlp.decode(raw, LegacyTransaction)
        return rlp.decode(raw[1:], TYPED_TRANSACTIONS[raw[0]])
    except RLPException as e:
        raise CodecError(f"Malformed transaction: {e}") from e


def transaction_hash(raw: bytes) -> bytes:
    return keccak(raw)


# ─────────────────────────────────────────────────────────────────────────
#  Receipts
# ─────────────────────────────────────────────────────────────────────────

class Log(rlp.Serializable):
    fields = [
        ("address", address20),
        ("topics", CountableList(hash32)),
        ("data", binary),
    ]

    @property
    def emitter(self) -> str:
        return to_checksum_address(self.address)


class Receipt(rlp.Serializable):
    """
    Post-Byzantium transaction receipt.

    ``status`` is a one byte flag: ``0x01`` for success, empty for failure.
    """
    fields = [
        ("status", binary),
        ("cumulative_gas_used", big_endian_int),
        ("logs_bloom", bloom256),
        ("logs", CountableList(Log)),
    ]

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


def encode_receipt(receipt: Receipt, tx_type: int = 0) -> bytes:
    payload = rlp.encode(receipt)
    if tx_type:
        return bytes([tx_type]) + payload
    return payload


def decode_receipt(raw: bytes) -> Receipt:
    """
    Decode a (possibly typed) receipt.

    Raises:
        CodecError: If the bytes are malformed or the status is not a flag
    """
    if not raw:
        raise CodecError("Empty receipt")
    if raw[0] < 0xc0 and raw[0] not in TYPED_TRANSACTIONS:
        raise CodecError(f"Unsupported receipt type: {raw[0]}")
    payload = raw if raw[0] >= 0xc0 else raw[1:]
    try:
        receipt = rlp.decode(payload, Receipt)
    except RLPException as e:
        raise CodecError(f"Malformed receipt: {e}") from e
    if receipt.status not in (STATUS_SUCCESS, STATUS_FAILURE, b"\x00"):
        # Pre-Byzantium receipts carry an intermediate state root here
        raise CodecError(f"Receipt status is not a flag: 0x{receipt.status.hex()}")
    return receipt


def make_receipt(success: bool, cumulative_gas_used: int, logs: Sequence[Log]) -> Receipt:
    return Receipt(
        status=STATUS_SUCCESS if success else STATUS_FAILURE,
        cumulative_gas_used=cumulative_gas_used,
        logs_bloom=logs_bloom(logs),
        logs=list(logs),
    )


def logs_bloom(logs: Iterable[Log]) -> bytes:
    """Compute the 2048-bit log bloom over emitter addresses and topics."""
    bloom = 0
    for log in logs:
        for item in [log.address, *log.topics]:
            digest = keccak(item)
            for i in (0, 2, 4):
                bit = int.from_bytes(digest[i:i + 2], "big") & 2047
                bloom |= 1 << bit
    return bloom.to_bytes(256, "big")


def merge_blooms(blooms: Iterable[bytes]) -> bytes:
    merged = 0
    for bloom in blooms:
        merged |= int.from_bytes(bloom, "big")
    return merged.to_bytes(256, "big")


def _decode_list(data: bytes, what: str) -> List[Any]:
    try:
        items = rlp.decode(data)
    except RLPException as e:
        raise CodecError(f"Malformed {what}: {e}") from e
    if not isinstance(items, list):
        raise CodecError(f"Malformed {what}: expected an RLP list")
    return items
