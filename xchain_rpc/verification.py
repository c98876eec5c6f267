"""
Checks shared by both registries: decoding a proof and verifying that its
transaction and receipt are included under a header the relay trusts.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from eth_utils import keccak

from .codec import BlockHeader, Receipt, Transaction, decode_header, decode_receipt, decode_transaction
from .models import CallProof
from .relay import HeaderRelay, RootKind
from .trie import ProofResult, verify_proof

# Configure logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodedProof:
    header: BlockHeader
    header_hash: bytes
    transaction: Transaction
    receipt: Receipt


@dataclass(frozen=True)
class InclusionResult:
    """
    Outcome of an inclusion check.

    Attributes:
        included: Whether the header is trusted and both proofs hold
        reason: Why the check failed, empty on success
        tx_result: Trie verdict for the transaction, if it was checked
        receipt_result: Trie verdict for the receipt, if it was checked
    """
    included: bool
    reason: str = ""
    tx_result: Optional[ProofResult] = None
    receipt_result: Optional[ProofResult] = None


def decode_proof(proof: CallProof) -> DecodedProof:
    """
    Decode the header, transaction and receipt carried by a proof.

    The header hash is taken over the bytes as given, not a re-encoding.

    Raises:
        CodecError: If any of the three encodings is malformed
    """
    return DecodedProof(
        header=decode_header(proof.header),
        header_hash=keccak(proof.header),
        transaction=decode_transaction(proof.encoded_tx),
        receipt=decode_receipt(proof.encoded_receipt),
    )


def verify_inclusion(
    proof: CallProof,
    decoded: DecodedProof,
    relay: HeaderRelay,
    confirmations: int = 0,
) -> InclusionResult:
    """
    Verify a proof against the relay and the header's trie roots.

    Args:
        proof: Proof as submitted
        decoded: Result of ``decode_proof(proof)``
        relay: Header oracle to trust
        confirmations: Blocks required on top of the header

    Returns:
        InclusionResult; never raises for an invalid proof
    """
    header = decoded.header
    if not relay.is_header_canonical(decoded.header_hash, confirmations):
        return _rejected(f"header 0x{decoded.header_hash.hex()} is not canonical")
    if not relay.validate_root(header.transactions_root, RootKind.TRANSACTIONS):
        return _rejected("transactions root is not valid")
    if not relay.validate_root(header.receipts_root, RootKind.RECEIPTS):
        return _rejected("receipts root is not valid")

    tx_result = verify_proof(
        header.transactions_root, proof.tx_index_path, proof.tx_proof_nodes, proof.encoded_tx
    )
    if not tx_result.is_member:
        return _rejected(f"transaction not included ({tx_result.status.value}): {tx_result.reason}", tx_result)

    receipt_result = verify_proof(
        header.receipts_root, proof.tx_index_path, proof.receipt_proof_nodes, proof.encoded_receipt
    )
    if not receipt_result.is_member:
        return _rejected(
            f"receipt not included ({receipt_result.status.value}): {receipt_result.reason}",
            tx_result,
            receipt_result,
        )
    return InclusionResult(True, "", tx_result, receipt_result)


def _rejected(
    reason: str,
    tx_result: Optional[ProofResult] = None,
    receipt_result: Optional[ProofResult] = None,
) -> InclusionResult:
    logger.debug(f"Inclusion check failed: {reason}")
    return InclusionResult(False, reason, tx_result, receipt_result)
