"""
Merkle proof verification for registry checkpoints.
"""

from .merkle import EMPTY_ROOT, leaf_hash, node_hash, merkle_root, inclusion_path, consistency_path
from .proof import (
    LeafProof,
    InclusionProof,
    ConsistencyProof,
    verify_inclusion,
    verify_consistency,
)

__all__ = [
    "EMPTY_ROOT",
    "leaf_hash",
    "node_hash",
    "merkle_root",
    "inclusion_path",
    "consistency_path",
    "LeafProof",
    "InclusionProof",
    "ConsistencyProof",
    "verify_inclusion",
    "verify_consistency",
]
