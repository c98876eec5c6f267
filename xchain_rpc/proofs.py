"""
Proof construction.

Builds the ``CallProof`` for a transaction either from a ``LocalChain`` or
from any Ethereum JSON-RPC node reachable through ``web3``.
"""
import logging
from typing import Any, List, Mapping, Union

from eth_utils import keccak, to_canonical_address
from hexbytes import HexBytes
from rlp.sedes import big_endian_int
from web3 import Web3

from .chain import LocalChain
from .codec import BlockHeader, Log, Receipt, encode_header, encode_receipt
from .models import CallProof
from .trie import ProofTrie, index_key

# Configure logger
logger = logging.getLogger(__name__)

# Header fields appended by later forks, in encoding order
HEADER_EXTENSION_FIELDS = (
    "baseFeePerGas",
    "withdrawalsRoot",
    "blobGasUsed",
    "excessBlobGas",
    "parentBeaconBlockRoot",
    "requestsHash",
)


class ProofBuildError(Exception):
    """Raised when node data does not reproduce the block's commitments."""
    pass


def build_call_proof(chain: LocalChain, tx_hash: Union[bytes, str]) -> CallProof:
    """
    Build the inclusion proof of a mined ``LocalChain`` transaction.

    Args:
        chain: Chain holding the transaction
        tx_hash: Transaction hash

    Returns:
        CallProof for the transaction and its receipt

    Raises:
        KeyError: If the transaction is not in a sealed block
    """
    number, index = chain.locate(bytes(HexBytes(tx_hash)))
    block = chain.get_block(number)
    return CallProof(
        header=encode_header(block.header),
        encoded_tx=block.transactions[index],
        encoded_receipt=encode_receipt(block.receipts[index]),
        tx_index_path=index_key(index),
        tx_proof_nodes=block.transaction_proof(index),
        receipt_proof_nodes=block.receipt_proof(index),
    )


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16)
    return int(value or 0)


def _extension_bytes(value: Any) -> bytes:
    if isinstance(value, int):
        return big_endian_int.serialize(value)
    return bytes(HexBytes(value))


def header_from_block(block: Mapping[str, Any]) -> BlockHeader:
    """Rebuild a header from a JSON-RPC block object."""
    extensions = tuple(
        _extension_bytes(block[name]) for name in HEADER_EXTENSION_FIELDS if block.get(name) is not None
    )
    return BlockHeader(
        parent_hash=bytes(HexBytes(block["parentHash"])),
        ommers_hash=bytes(HexBytes(block["sha3Uncles"])),
        coinbase=to_canonical_address(block["miner"]),
        state_root=bytes(HexBytes(block["stateRoot"])),
        transactions_root=bytes(HexBytes(block["transactionsRoot"])),
        receipts_root=bytes(HexBytes(block["receiptsRoot"])),
        logs_bloom=bytes(HexBytes(block["logsBloom"])),
        difficulty=_as_int(block["difficulty"]),
        number=_as_int(block["number"]),
        gas_limit=_as_int(block["gasLimit"]),
        gas_used=_as_int(block["gasUsed"]),
        timestamp=_as_int(block["timestamp"]),
        extra_data=bytes(HexBytes(block["extraData"])),
        mix_hash=bytes(HexBytes(block["mixHash"])),
        nonce=bytes(HexBytes(block["nonce"])),
        extensions=extensions,
    )


def receipt_from_rpc(receipt: Mapping[str, Any]) -> bytes:
    """Encode a JSON-RPC receipt as committed to by the receipts root."""
    logs: List[Log] = [
        Log(
            address=to_canonical_address(log["address"]),
            topics=[bytes(HexBytes(topic)) for topic in log["topics"]],
            data=bytes(HexBytes(log["data"])),
        )
        for log in receipt["logs"]
    ]
    encoded = Receipt(
        status=b"\x01" if _as_int(receipt["status"]) == 1 else b"",
        cumulative_gas_used=_as_int(receipt["cumulativeGasUsed"]),
        logs_bloom=bytes(HexBytes(receipt["logsBloom"])),
        logs=logs,
    )
    return encode_receipt(encoded, _as_int(receipt.get("type", 0)))


def create_proof_data(w3: Web3, tx_hash: Union[bytes, str]) -> CallProof:
    """
    Build the inclusion proof of a transaction from a JSON-RPC node.

    Every transaction and receipt of the block is fetched to rebuild both
    tries; the rebuilt roots and header hash are checked against the block.

    Args:
        w3: Connected Web3 instance
        tx_hash: Transaction hash

    Returns:
        CallProof for the transaction and its receipt

    Raises:
        ProofBuildError: If the rebuilt header or roots do not match the block
        web3.exceptions.TransactionNotFound: If the node does not know the hash
    """
    tx = w3.eth.get_transaction(tx_hash)
    block = w3.eth.get_block(tx["blockHash"])
    header = header_from_block(block)
    encoded_header = encode_header(header)
    if keccak(encoded_header) != bytes(HexBytes(block["hash"])):
        raise ProofBuildError(f"Re-encoded header of block {header.number} does not hash to its block hash")

    tx_trie, receipt_trie = ProofTrie(), ProofTrie()
    for i, item in enumerate(block["transactions"]):
        item_hash = item["hash"] if isinstance(item, Mapping) else item
        tx_trie.put(index_key(i), bytes(w3.eth.get_raw_transaction(item_hash)))
        receipt_trie.put(index_key(i), receipt_from_rpc(w3.eth.get_transaction_receipt(item_hash)))

    if tx_trie.root_hash() != header.transactions_root:
        raise ProofBuildError(f"Transactions root mismatch for block {header.number}")
    if receipt_trie.root_hash() != header.receipts_root:
        raise ProofBuildError(f"Receipts root mismatch for block {header.number}")

    index = _as_int(tx["transactionIndex"])
    key = index_key(index)
    logger.debug(f"Built proof for tx {Web3.to_hex(HexBytes(tx_hash))} at index {index} of block {header.number}")
    return CallProof(
        header=encoded_header,
        encoded_tx=tx_trie.get(key),
        encoded_receipt=receipt_trie.get(key),
        tx_index_path=key,
        tx_proof_nodes=tx_trie.get_proof(key),
        receipt_proof_nodes=receipt_trie.get_proof(key),
    )
