"""
Merkle-Patricia trie proofs.

``verify_proof`` checks that a key/value pair is committed to by a trie root
given the ordered list of nodes on the path from the root. It never raises:
callers get a ``ProofResult`` telling membership apart from malformed proofs.

``ProofTrie`` is the matching in-memory builder used to produce proofs for the
transactions and receipts of a block.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import rlp
from rlp.exceptions import RLPException
from eth_utils import keccak

from .codec import BLANK_ROOT

# Configure logger
logger = logging.getLogger(__name__)

NodeRef = Union[bytes, list]


class ProofStatus(str, Enum):
    MEMBER = "member"
    NOT_MEMBER = "not_member"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ProofResult:
    """
    Outcome of a proof walk.

    Attributes:
        status: Membership verdict, or MALFORMED if the proof itself is broken
        value: Value bound to the key when one was reached
        reason: Human-readable diagnostic
    """
    status: ProofStatus
    value: Optional[bytes] = None
    reason: str = ""

    @property
    def is_member(self) -> bool:
        return self.status is ProofStatus.MEMBER

    @property
    def is_malformed(self) -> bool:
        return self.status is ProofStatus.MALFORMED


def index_key(index: int) -> bytes:
    """Trie key of the transaction/receipt at ``index`` within a block."""
    return rlp.encode(index)


def bytes_to_nibbles(data: bytes) -> List[int]:
    nibbles = []
    for b in data:
        nibbles.append(b >> 4)
        nibbles.append(b & 0x0F)
    return nibbles


def encode_path(nibbles: Sequence[int], is_leaf: bool) -> bytes:
    """Hex-prefix encode a nibble path."""
    flags = 2 if is_leaf else 0
    if len(nibbles) % 2:
        prefixed = [flags | 1, *nibbles]
    else:
        prefixed = [flags, 0, *nibbles]
    return bytes(
        (prefixed[i] << 4) | prefixed[i + 1] for i in range(0, len(prefixed), 2)
    )


def decode_path(encoded: bytes) -> Optional[Tuple[List[int], bool]]:
    """Decode a hex-prefix path; returns None for invalid flags."""
    if not encoded:
        return None
    nibbles = bytes_to_nibbles(encoded)
    flag = nibbles[0]
    if flag > 3:
        return None
    is_leaf = flag >= 2
    if flag % 2:
        return nibbles[1:], is_leaf
    if nibbles[1] != 0:
        return None
    return nibbles[2:], is_leaf


# ─────────────────────────────────────────────────────────────────────────
#  Verification
# ─────────────────────────────────────────────────────────────────────────

def lookup(root: bytes, key: bytes, proof_nodes: Sequence[bytes]) -> ProofResult:
    """
    Walk a proof and return the value bound to ``key``.

    Args:
        root: Trie root hash
        key: Raw (un-nibbled) key
        proof_nodes: RLP encoded nodes from the root towards the leaf

    Returns:
        MEMBER with the value, NOT_MEMBER if the path ends without one,
        MALFORMED if the proof is inconsistent with the root
    """
    if not proof_nodes:
        return ProofResult(ProofStatus.NOT_MEMBER, reason="empty proof")

    path = bytes_to_nibbles(key)
    position = 0
    consumed = 0
    ref: NodeRef = root

    while True:
        if isinstance(ref, list):
            node = ref
        else:
            if len(ref) != 32:
                return _malformed(f"invalid node reference of {len(ref)} bytes")
            if consumed >= len(proof_nodes):
                return _malformed("proof is missing nodes")
            raw = proof_nodes[consumed]
            consumed += 1
            if keccak(raw) != ref:
                return _malformed(f"hash mismatch at node {consumed - 1}")
            try:
                node = rlp.decode(raw)
            except RLPException as e:
                return _malformed(f"undecodable node {consumed - 1}: {e}")
            if not isinstance(node, list):
                return _malformed(f"node {consumed - 1} is not a list")

        if len(node) == 17:
            if position == len(path):
                return _finish(node[16], consumed, proof_nodes)
            child = node[path[position]]
            position += 1
            if child == b"":
                return _finish(None, consumed, proof_nodes, "branch slot is empty")
            ref = child
        elif len(node) == 2:
            decoded = decode_path(node[0]) if isinstance(node[0], bytes) else None
            if decoded is None:
                return _malformed("invalid hex-prefix path")
            nibbles, is_leaf = decoded
            if is_leaf:
                if path[position:] != nibbles:
                    return _finish(None, consumed, proof_nodes, "leaf path diverges")
                return _finish(node[1], consumed, proof_nodes)
            if path[position:position + len(nibbles)] != nibbles:
                return _finish(None, consumed, proof_nodes, "extension path diverges")
            position += len(nibbles)
            ref = node[1]
        else:
            return _malformed(f"node with {len(node)} items")


def verify_proof(
    root: bytes,
    key: bytes,
    proof_nodes: Sequence[bytes],
    expected_value: bytes,
) -> ProofResult:
    """
    Check that ``(key, expected_value)`` is a member of the trie at ``root``.

    Returns:
        ProofResult; ``is_member`` is True only if the walk reached exactly
        ``expected_value`` and consumed every proof node
    """
    result = lookup(root, key, proof_nodes)
    if result.is_member and result.value != expected_value:
        return ProofResult(ProofStatus.NOT_MEMBER, result.value, "value mismatch")
    return result


def _malformed(reason: str) -> ProofResult:
    return ProofResult(ProofStatus.MALFORMED, reason=reason)


def _finish(
    value: Any,
    consumed: int,
    proof_nodes: Sequence[bytes],
    reason: str = "",
) -> ProofResult:
    if consumed != len(proof_nodes):
        return _malformed(f"{len(proof_nodes) - consumed} trailing proof nodes")
    if not isinstance(value, bytes) or value == b"":
        return ProofResult(ProofStatus.NOT_MEMBER, reason=reason or "no value at key")
    return ProofResult(ProofStatus.MEMBER, value)


# ─────────────────────────────────────────────────────────────────────────
#  Construction
# ─────────────────────────────────────────────────────────────────────────

class _Node:
    def structure(self) -> list:
        raise NotImplementedError

    def encode(self) -> bytes:
        return rlp.encode(self.structure())

    def ref(self) -> NodeRef:
        # Nodes shorter than a hash are embedded in their parent
        encoded = self.encode()
        return self.structure() if len(encoded) < 32 else keccak(encoded)


class _Leaf(_Node):
    def __init__(self, path: List[int], value: bytes):
        self.path = path
        self.value = value

    def structure(self) -> list:
        return [encode_path(self.path, True), self.value]


class _Extension(_Node):
    def __init__(self, path: List[int], child: _Node):
        self.path = path
        self.child = child

    def structure(self) -> list:
        return [encode_path(self.path, False), self.child.ref()]


class _Branch(_Node):
    def __init__(self):
        self.children: List[Optional[_Node]] = [None] * 16
        self.value = b""

    def structure(self) -> list:
        return [c.ref() if c else b"" for c in self.children] + [self.value]


def _common_prefix_length(a: Sequence[int], b: Sequence[int]) -> int:
    i = 0
    while i < min(len(a), len(b)) and a[i] == b[i]:
        i += 1
    return i


class ProofTrie:
    """
    In-memory Merkle-Patricia trie for building inclusion proofs.

    Only insertion is supported; tries are built once per block.
    """

    def __init__(self):
        self._root: Optional[_Node] = None
        self._items: Dict[bytes, bytes] = {}

    def __len__(self) -> int:
        return len(self._items)

    def put(self, key: bytes, value: bytes) -> None:
        if not value:
            raise ValueError("Empty values cannot be stored in the trie")
        self._items[key] = value
        self._root = self._insert(self._root, bytes_to_nibbles(key), value)

    def get(self, key: bytes) -> Optional[bytes]:
        return self._items.get(key)

    def root_hash(self) -> bytes:
        if self._root is None:
            return BLANK_ROOT
        return keccak(self._root.encode())

    def get_proof(self, key: bytes) -> List[bytes]:
        """
        Collect the hash-referenced nodes on the path to ``key``.

        The list always starts with the root node. Embedded nodes travel inside
        their parent and are not listed separately.
        """
        if self._root is None:
            return []
        proof = [self._root.encode()]
        node: Optional[_Node] = self._root
        path = bytes_to_nibbles(key)
        while node is not None:
            if isinstance(node, _Leaf):
                break
            if isinstance(node, _Extension):
                if path[:len(node.path)] != node.path:
                    break
                path = path[len(node.path):]
                node = node.child
            else:
                if not path:
                    break
                node = node.children[path[0]]
                path = path[1:]
            if node is not None and not isinstance(node.ref(), list):
                proof.append(node.encode())
        return proof

    def _insert(self, node: Optional[_Node], path: List[int], value: bytes) -> _Node:
        if node is None:
            return _Leaf(path, value)

        if isinstance(node, _Branch):
            if not path:
                node.value = value
            else:
                node.children[path[0]] = self._insert(node.children[path[0]], path[1:], value)
            return node

        if isinstance(node, _Leaf):
            common = _common_prefix_length(node.path, path)
            if common == len(node.path) == len(path):
                node.value = value
                return node
            branch = _Branch()
            self._attach(branch, node.path[common:], lambda rest: _Leaf(rest, node.value), node.value)
            self._attach(branch, path[common:], lambda rest: _Leaf(rest, value), value)
            return _Extension(path[:common], branch) if common else branch

        common = _common_prefix_length(node.path, path)
        if common == len(node.path):
            node.child = self._insert(node.child, path[common:], value)
            return node
        branch = _Branch()
        remainder = node.path[common + 1:]
        branch.children[node.path[common]] = (
            _Extension(remainder, node.child) if remainder else node.child
        )
        self._attach(branch, path[common:], lambda rest: _Leaf(rest, value), value)
        return _Extension(path[:common], branch) if common else branch

    @staticmethod
    def _attach(branch: _Branch, rest: List[int], make_leaf, value: bytes) -> None:
        if rest:
            branch.children[rest[0]] = make_leaf(rest[1:])
        else:
            branch.value = value
