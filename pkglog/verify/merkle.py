"""
Merkle tree hashing (RFC 6962 / RFC 9162 construction).

Leaf and node hashes are domain separated so a leaf can never be confused
with an internal node:
- leaf:  sha256(0x00 || leaf_bytes)
- node:  sha256(0x01 || left || right)
- empty: sha256(b"")

Tree construction and proof generation are provided alongside the hashing
primitives; the registry side of a test harness (or a mirror) builds proofs
with them, and the verifier in proof.py checks them.
"""

import hashlib
from typing import List, Sequence

from ..core.digest import Digest, SHA256

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

EMPTY_ROOT = Digest(SHA256, hashlib.sha256(b"").digest())


def leaf_hash(data: bytes) -> Digest:
    return Digest(SHA256, hashlib.sha256(LEAF_PREFIX + data).digest())


def node_hash(left: Digest, right: Digest) -> Digest:
    return Digest(SHA256, hashlib.sha256(NODE_PREFIX + left.value + right.value).digest())


def _split(n: int) -> int:
    """Largest power of two strictly smaller than n (n >= 2)."""
    k = 1
    while k << 1 < n:
        k <<= 1
    return k


def merkle_root(leaves: Sequence[Digest]) -> Digest:
    """
    Root of the tree over already-hashed leaves.

    Args:
        leaves: Leaf hashes (output of leaf_hash), in tree order

    Returns:
        Root digest (EMPTY_ROOT for an empty tree)
    """
    n = len(leaves)
    if n == 0:
        return EMPTY_ROOT
    if n == 1:
        return leaves[0]
    k = _split(n)
    return node_hash(merkle_root(leaves[:k]), merkle_root(leaves[k:]))


def inclusion_path(index: int, leaves: Sequence[Digest]) -> List[Digest]:
    """
    Audit path for the leaf at index (RFC 6962 section 2.1.1).

    Raises:
        IndexError: If index is outside the tree
    """
    n = len(leaves)
    if not 0 <= index < n:
        raise IndexError(f"leaf index {index} outside tree of size {n}")
    if n == 1:
        return []
    k = _split(n)
    if index < k:
        return inclusion_path(index, leaves[:k]) + [merkle_root(leaves[k:])]
    return inclusion_path(index - k, leaves[k:]) + [merkle_root(leaves[:k])]


def consistency_path(old_size: int, leaves: Sequence[Digest]) -> List[Digest]:
    """
    Consistency proof from a tree of old_size leaves to the full tree
    (RFC 6962 section 2.1.2).

    An empty path is returned when old_size is 0 or equals the tree size.
    """
    n = len(leaves)
    if not 0 <= old_size <= n:
        raise IndexError(f"old size {old_size} outside tree of size {n}")
    if old_size == 0 or old_size == n:
        return []
    return _subproof(old_size, leaves, True)


def _subproof(m: int, leaves: Sequence[Digest], complete: bool) -> List[Digest]:
    n = len(leaves)
    if m == n:
        return [] if complete else [merkle_root(leaves)]
    k = _split(n)
    if m <= k:
        return _subproof(m, leaves[:k], complete) + [merkle_root(leaves[k:])]
    return _subproof(m - k, leaves[k:], False) + [merkle_root(leaves[:k])]
