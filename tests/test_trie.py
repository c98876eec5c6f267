"""
Tests for Merkle-Patricia proofs.
"""
import pytest
import rlp
from eth_utils import keccak
from hypothesis import given, settings, strategies as st

from xchain_rpc.codec import BLANK_ROOT
from xchain_rpc.trie import (
    ProofStatus,
    ProofTrie,
    bytes_to_nibbles,
    decode_path,
    encode_path,
    index_key,
    lookup,
    verify_proof,
)

values_strategy = st.binary(min_size=1, max_size=80)
items_strategy = st.lists(values_strategy, min_size=1, max_size=40)


def _indexed_trie(values):
    trie = ProofTrie()
    for i, value in enumerate(values):
        trie.put(index_key(i), value)
    return trie


class TestHexPrefix:
    """Hex-prefix path encoding."""

    @pytest.mark.parametrize("nibbles,is_leaf,encoded", [
        ([1, 2, 3, 4, 5], False, "112345"),
        ([0, 1, 2, 3, 4, 5], False, "00012345"),
        ([0, 15, 1, 12, 11, 8], True, "200f1cb8"),
        ([15, 1, 12, 11, 8], True, "3f1cb8"),
        ([], True, "20"),
    ])
    def test_encode_decode(self, nibbles, is_leaf, encoded):
        assert encode_path(nibbles, is_leaf).hex() == encoded
        assert decode_path(bytes.fromhex(encoded)) == (nibbles, is_leaf)

    @pytest.mark.parametrize("encoded", ["", "40", "0123", "2f"])
    def test_invalid_flags(self, encoded):
        """Unknown flags and non-zero padding are rejected."""
        assert decode_path(bytes.fromhex(encoded)) is None

    def test_nibbles(self):
        assert bytes_to_nibbles(b"\x12\xab") == [1, 2, 10, 11]

    def test_index_keys(self):
        """Keys are the RLP encoding of the index."""
        assert index_key(0) == b"\x80"
        assert index_key(1) == b"\x01"
        assert index_key(127) == b"\x7f"
        assert index_key(128) == b"\x81\x80"


class TestProofTrie:
    """Trie construction."""

    def test_empty_trie(self):
        trie = ProofTrie()
        assert trie.root_hash() == BLANK_ROOT
        assert trie.get_proof(index_key(0)) == []
        assert len(trie) == 0

    def test_single_item_root(self):
        """A single item is a leaf holding the whole key."""
        key, value = index_key(0), b"\xf8" + b"x" * 100
        trie = ProofTrie()
        trie.put(key, value)

        expected = keccak(rlp.encode([encode_path(bytes_to_nibbles(key), True), value]))
        assert trie.root_hash() == expected
        assert trie.get_proof(key) == [rlp.encode([encode_path(bytes_to_nibbles(key), True), value])]

    def test_empty_value_rejected(self):
        with pytest.raises(ValueError):
            ProofTrie().put(b"key", b"")

    def test_overwrite(self):
        trie = ProofTrie()
        trie.put(b"key", b"old")
        trie.put(b"key", b"new")

        assert trie.get(b"key") == b"new"
        assert len(trie) == 1
        assert verify_proof(trie.root_hash(), b"key", trie.get_proof(b"key"), b"new").is_member

    def test_root_independent_of_insertion_order(self):
        items = {b"doe": b"reindeer", b"dog": b"puppy", b"dogglesworth": b"cat"}
        forward, backward = ProofTrie(), ProofTrie()
        for key in items:
            forward.put(key, items[key])
        for key in reversed(list(items)):
            backward.put(key, items[key])

        assert forward.root_hash() == backward.root_hash()

    def test_keys_that_prefix_each_other(self):
        """Values stored at branch positions are provable."""
        items = {b"do": b"verb", b"dog": b"puppy", b"doge": b"coin", b"horse": b"stallion"}
        trie = ProofTrie()
        for key, value in items.items():
            trie.put(key, value)

        root = trie.root_hash()
        for key, value in items.items():
            result = verify_proof(root, key, trie.get_proof(key), value)
            assert result.is_member, (key, result.reason)


class TestVerifyProof:
    """Proof verification."""

    @pytest.fixture
    def trie(self):
        return _indexed_trie([bytes([i]) * (20 + i) for i in range(30)])

    def test_every_index_is_member(self, trie):
        root = trie.root_hash()
        for i in range(30):
            key = index_key(i)
            result = verify_proof(root, key, trie.get_proof(key), trie.get(key))
            assert result.status is ProofStatus.MEMBER
            assert result.value == trie.get(key)

    def test_absent_key_is_not_member(self, trie):
        key = index_key(31)
        result = lookup(trie.root_hash(), key, trie.get_proof(key))

        assert result.status is ProofStatus.NOT_MEMBER
        assert not result.is_malformed

    def test_value_mismatch(self, trie):
        key = index_key(3)
        result = verify_proof(trie.root_hash(), key, trie.get_proof(key), b"other")

        assert result.status is ProofStatus.NOT_MEMBER
        assert result.reason == "value mismatch"
        assert result.value == trie.get(key)

    def test_proof_for_other_key(self, trie):
        """A valid proof does not prove a different index."""
        result = verify_proof(trie.root_hash(), index_key(4), trie.get_proof(index_key(5)), trie.get(index_key(5)))
        assert not result.is_member

    def test_wrong_root(self, trie):
        key = index_key(2)
        result = verify_proof(b"\x00" * 32, key, trie.get_proof(key), trie.get(key))

        assert result.is_malformed
        assert "hash mismatch" in result.reason

    def test_tampered_node(self, trie):
        key = index_key(7)
        proof = trie.get_proof(key)
        last = bytearray(proof[-1])
        last[-1] ^= 0xFF
        proof[-1] = bytes(last)

        assert verify_proof(trie.root_hash(), key, proof, trie.get(key)).is_malformed

    def test_missing_nodes(self, trie):
        key = index_key(9)
        proof = trie.get_proof(key)
        assert len(proof) > 1

        result = verify_proof(trie.root_hash(), key, proof[:-1], trie.get(key))
        assert result.is_malformed
        assert "missing" in result.reason

    def test_trailing_nodes(self, trie):
        key = index_key(9)
        proof = trie.get_proof(key) + [rlp.encode(b"extra")]

        result = verify_proof(trie.root_hash(), key, proof, trie.get(key))
        assert result.is_malformed
        assert "trailing" in result.reason

    def test_empty_proof(self, trie):
        result = verify_proof(trie.root_hash(), index_key(0), [], trie.get(index_key(0)))
        assert result.status is ProofStatus.NOT_MEMBER

    @pytest.mark.parametrize("node", [
        rlp.encode(b"not a list"),
        rlp.encode([b"a", b"b", b"c"]),
        rlp.encode([b"\x40", b"value"]),
        b"\xf9\xff\xff",
    ])
    def test_malformed_nodes(self, node):
        """Non-list nodes, wrong arity, bad prefixes and bad RLP are malformed."""
        result = lookup(keccak(node), b"\x01", [node])
        assert result.is_malformed

    def test_short_hash_reference(self):
        """Child references must be 32-byte hashes or embedded nodes."""
        branch = [b""] * 17
        branch[0] = b"\x01" * 20
        node = rlp.encode(branch)

        result = lookup(keccak(node), b"\x01", [node])
        assert result.is_malformed


@settings(max_examples=50, deadline=None)
@given(values=items_strategy)
def test_indexed_membership_property(values):
    """Every inserted index is provable against the root."""
    trie = _indexed_trie(values)
    root = trie.root_hash()
    for i, value in enumerate(values):
        key = index_key(i)
        assert verify_proof(root, key, trie.get_proof(key), value).is_member


@settings(max_examples=50, deadline=None)
@given(
    items=st.dictionaries(st.binary(min_size=1, max_size=8), values_strategy, min_size=1, max_size=30),
    lookup_key=st.binary(min_size=1, max_size=8),
)
def test_arbitrary_keys_property(items, lookup_key):
    """Arbitrary keys, including prefixes of each other, prove and disprove correctly."""
    trie = ProofTrie()
    for key, value in items.items():
        trie.put(key, value)
    root = trie.root_hash()

    for key, value in items.items():
        assert verify_proof(root, key, trie.get_proof(key), value).is_member

    result = lookup(root, lookup_key, trie.get_proof(lookup_key))
    if lookup_key in items:
        assert result.is_member and result.value == items[lookup_key]
    else:
        assert result.status is ProofStatus.NOT_MEMBER
