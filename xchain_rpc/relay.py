"""
Header relay clients.

A relay is the trust root of every proof: the registries never judge chain
validity themselves, they ask a ``HeaderRelay`` whether a header is canonical
and whether a trie root is anchored in such a header.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Optional

from cachetools import TTLCache
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import BlockNotFound, Web3Exception

from ._rate_limited_log import rate_limited_log

if TYPE_CHECKING:
    from .chain import LocalChain

# Configure logger
logger = logging.getLogger(__name__)


class RootKind(str, Enum):
    TRANSACTIONS = "transactions"
    RECEIPTS = "receipts"


class HeaderRelay(ABC):
    """
    Interface of a header-validity oracle.

    Implementations must answer synchronously and must not need to replay
    proofs to do so.
    """

    @abstractmethod
    def is_header_canonical(self, header_hash: bytes, confirmations: int = 0) -> bool:
        """
        Check whether a header is part of the canonical chain.

        Args:
            header_hash: keccak256 of the encoded header
            confirmations: Blocks required on top of the header

        Returns:
            True if the header is canonical and deep enough
        """
        pass

    @abstractmethod
    def validate_root(self, root: bytes, kind: RootKind) -> bool:
        """
        Check whether a transactions or receipts root belongs to a canonical header.

        Args:
            root: Trie root
            kind: Which root of the header ``root`` claims to be

        Returns:
            True if the root is anchored in a canonical header
        """
        pass

    def validate(self, header_hash: bytes) -> bool:
        return self.is_header_canonical(header_hash)


class MockRelay(HeaderRelay):
    """
    Relay with configurable verdicts for tests and development.

    Every query succeeds until one of the setters flips its answer.
    """

    def __init__(self, header_valid: bool = True, tx_valid: bool = True, receipt_valid: bool = True):
        self.header_valid = header_valid
        self.tx_valid = tx_valid
        self.receipt_valid = receipt_valid

    def set_header_result(self, valid: bool) -> None:
        self.header_valid = valid

    def set_tx_verification_result(self, valid: bool) -> None:
        self.tx_valid = valid

    def set_receipt_verification_result(self, valid: bool) -> None:
        self.receipt_valid = valid

    def is_header_canonical(self, header_hash: bytes, confirmations: int = 0) -> bool:
        return self.header_valid

    def validate_root(self, root: bytes, kind: RootKind) -> bool:
        if kind == RootKind.TRANSACTIONS:
            return self.tx_valid
        return self.receipt_valid


class ChainRelay(HeaderRelay):
    """
    Relay that follows the sealed blocks of a ``LocalChain``.

    Args:
        chain: Chain whose blocks are trusted
    """

    def __init__(self, chain: "LocalChain"):
        self.chain = chain

    def is_header_canonical(self, header_hash: bytes, confirmations: int = 0) -> bool:
        block = self.chain.block_by_hash(header_hash)
        if block is None:
            logger.debug(f"Unknown header 0x{bytes(header_hash).hex()} on chain {self.chain.chain_id}")
            return False
        depth = self.chain.head_number - block.number
        if depth < confirmations:
            logger.debug(f"Header {block.number} has {depth} confirmations, {confirmations} required")
            return False
        return True

    def validate_root(self, root: bytes, kind: RootKind) -> bool:
        return self.chain.block_with_root(root, kind) is not None


class Web3Relay(HeaderRelay):
    """
    Relay backed by an Ethereum node.

    Roots of headers found canonical are cached so ``validate_root`` can answer
    for them without another round trip.

    Args:
        w3: Connected Web3 instance
        cache_ttl: Seconds a validated header's roots stay trusted
        cache_size: Maximum number of cached roots
    """

    def __init__(self, w3: Web3, cache_ttl: int = 600, cache_size: int = 1024):
        self.w3 = w3
        self._roots: TTLCache = TTLCache(maxsize=cache_size, ttl=cache_ttl)

    def is_header_canonical(self, header_hash: bytes, confirmations: int = 0) -> bool:
        try:
            block = self.w3.eth.get_block(Web3.to_hex(header_hash))
            canonical = self.w3.eth.get_block(block["number"])
            head = self.w3.eth.block_number
        except BlockNotFound:
            logger.debug(f"Header {Web3.to_hex(header_hash)} not found")
            return False
        except (Web3Exception, RequestException) as e:
            rate_limited_log(f"Relay node query failed: {e}", logger_instance=logger)
            return False

        if bytes(canonical["hash"]) != bytes(header_hash):
            logger.debug(f"Header {Web3.to_hex(header_hash)} is not on the canonical chain")
            return False
        if head - block["number"] < confirmations:
            logger.debug(f"Header {block['number']} lacks {confirmations} confirmations")
            return False

        self._roots[(RootKind.TRANSACTIONS.value, bytes(block["transactionsRoot"]))] = block["number"]
        self._roots[(RootKind.RECEIPTS.value, bytes(block["receiptsRoot"]))] = block["number"]
        return True

    def validate_root(self, root: bytes, kind: RootKind) -> bool:
        return (RootKind(kind).value, bytes(root)) in self._roots

    def cached_block_number(self, root: bytes, kind: RootKind) -> Optional[int]:
        return self._roots.get((RootKind(kind).value, bytes(root)))
