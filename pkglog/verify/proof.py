"""
Inclusion and consistency proof verification.

Both verifiers recompute Merkle roots from audit paths (RFC 9162 sections
2.1.3.2 and 2.1.4.2) and compare them with checkpoint roots:
- structural problems (wrong path length, bad ordering, length mismatch)
  raise BundleFailure
- a well-formed proof that yields a different root raises IncorrectProof

Verification is pure: same inputs always give the same outcome.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Sequence, Tuple

from ..core.digest import Digest
from ..core.errors import BundleFailure, IncorrectProof
from ..log.records import LogLeaf
from .merkle import EMPTY_ROOT, leaf_hash, node_hash

if TYPE_CHECKING:
    from ..checkpoint.model import Checkpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafProof:
    """Audit path of one leaf."""
    index: int
    path: Tuple[Digest, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "path": [str(d) for d in self.path]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeafProof":
        return cls(index=data["index"], path=tuple(Digest.parse(d) for d in data["path"]))


@dataclass(frozen=True)
class InclusionProof:
    """
    Inclusion proof for a batch of leaves.

    Fields:
        log_length: Tree length the paths were computed against
        entries: One LeafProof per leaf, same order as the leaves,
                 indices strictly increasing
    """
    log_length: int
    entries: Tuple[LeafProof, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"log_length": self.log_length, "entries": [e.to_dict() for e in self.entries]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InclusionProof":
        return cls(
            log_length=data["log_length"],
            entries=tuple(LeafProof.from_dict(e) for e in data["entries"]),
        )


@dataclass(frozen=True)
class ConsistencyProof:
    """Proof that the first old_length leaves of a new_length tree form the old tree."""
    old_length: int
    new_length: int
    path: Tuple[Digest, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "old_length": self.old_length,
            "new_length": self.new_length,
            "path": [str(d) for d in self.path],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsistencyProof":
        return cls(
            old_length=data["old_length"],
            new_length=data["new_length"],
            path=tuple(Digest.parse(d) for d in data["path"]),
        )


def _root_from_path(index: int, size: int, leaf: Digest, path: Sequence[Digest]) -> Digest:
    if index >= size:
        raise BundleFailure(f"leaf index {index} is outside a tree of length {size}")

    fn = index
    sn = size - 1
    r = leaf
    for p in path:
        if sn == 0:
            raise BundleFailure(f"inclusion path for leaf {index} is too long")
        if fn & 1 or fn == sn:
            r = node_hash(p, r)
            if not fn & 1:
                while not fn & 1 and fn != 0:
                    fn >>= 1
                    sn >>= 1
        else:
            r = node_hash(r, p)
        fn >>= 1
        sn >>= 1

    if sn != 0:
        raise BundleFailure(f"inclusion path for leaf {index} is too short")
    return r


def verify_inclusion(
    leaves: Sequence[LogLeaf],
    checkpoint: "Checkpoint",
    proof: InclusionProof,
) -> None:
    """
    Verify that every leaf is included in the tree committed to by checkpoint.

    Args:
        leaves: Leaves in tree order
        checkpoint: Checkpoint whose root and length the proof targets
        proof: Batch inclusion proof, one entry per leaf

    Raises:
        BundleFailure: Proof shape is invalid for the claimed tree length
        IncorrectProof: A recomputed root differs from checkpoint.root
    """
    if proof.log_length != checkpoint.length:
        raise BundleFailure(
            f"proof targets length {proof.log_length}, checkpoint has length {checkpoint.length}"
        )
    if len(proof.entries) != len(leaves):
        raise BundleFailure(
            f"proof has {len(proof.entries)} entries for {len(leaves)} leaves"
        )

    previous = -1
    for entry in proof.entries:
        if entry.index <= previous:
            raise BundleFailure("proof leaf indices are not strictly increasing")
        previous = entry.index

    for leaf, entry in zip(leaves, proof.entries):
        root = _root_from_path(entry.index, checkpoint.length, leaf_hash(leaf.to_bytes()), entry.path)
        if root != checkpoint.root:
            logger.debug("inclusion root mismatch for leaf %s at index %d", leaf.record_id, entry.index)
            raise IncorrectProof(
                f"leaf `{leaf.record_id}` at index {entry.index} does not lead to root `{checkpoint.root}`",
                index=entry.index,
            )


def verify_consistency(
    old: "Checkpoint",
    new: "Checkpoint",
    proof: ConsistencyProof,
) -> None:
    """
    Verify that old's tree is a prefix of new's tree.

    Equal lengths require equal roots (and an empty path). An empty old tree
    is a prefix of every tree.

    Raises:
        BundleFailure: Proof shape is invalid for the two lengths
        IncorrectProof: Recomputed roots differ from the checkpoint roots
    """
    m = old.length
    n = new.length
    if proof.old_length != m or proof.new_length != n:
        raise BundleFailure(
            f"proof covers {proof.old_length}->{proof.new_length}, checkpoints are {m}->{n}"
        )
    if m > n:
        raise BundleFailure(f"old length {m} is greater than new length {n}")

    path: List[Digest] = list(proof.path)

    if m == n:
        if path:
            raise BundleFailure("consistency proof between equal lengths must be empty")
        if old.root != new.root:
            raise IncorrectProof(f"roots differ at equal length {m}")
        return

    if m == 0:
        if path:
            raise BundleFailure("consistency proof from an empty tree must be empty")
        if old.root != EMPTY_ROOT:
            raise IncorrectProof("empty tree checkpoint has a non-empty root")
        return

    if not path:
        raise BundleFailure(f"empty consistency proof for {m}->{n}")

    if m & (m - 1) == 0:
        path.insert(0, old.root)

    fn = m - 1
    sn = n - 1
    while fn & 1:
        fn >>= 1
        sn >>= 1

    fr = path[0]
    sr = path[0]
    for c in path[1:]:
        if sn == 0:
            raise BundleFailure(f"consistency proof for {m}->{n} is too long")
        if fn & 1 or fn == sn:
            fr = node_hash(c, fr)
            sr = node_hash(c, sr)
            if not fn & 1:
                while not fn & 1 and fn != 0:
                    fn >>= 1
                    sn >>= 1
        else:
            sr = node_hash(sr, c)
        fn >>= 1
        sn >>= 1

    if sn != 0:
        raise BundleFailure(f"consistency proof for {m}->{n} is too short")
    if fr != old.root:
        raise IncorrectProof(f"consistency proof does not reproduce old root at length {m}")
    if sr != new.root:
        raise IncorrectProof(f"consistency proof does not reproduce new root at length {n}")
