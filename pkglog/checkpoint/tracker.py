"""
Checkpoint tracker.

Decides whether a registry checkpoint may replace the last trusted one.
The tracker owns no state: the caller passes in the known checkpoint and
persists whatever accept() returns (single writer per registry).

Rules:
- no known checkpoint: accept as baseline
- shorter than known: Rollback
- same length: roots must match (Fork otherwise); known is returned
- longer than known: a verified consistency proof is required
"""

import logging
from typing import Optional, TypeVar

from ..core.errors import CheckpointError, Fork, MissingProof, ProofError, Rollback
from ..verify.proof import ConsistencyProof, verify_consistency

logger = logging.getLogger(__name__)

# Checkpoint or SignedCheckpoint: anything with .root and .length
C = TypeVar("C")


def accept(
    candidate: C,
    known: Optional[C],
    proof: Optional[ConsistencyProof] = None,
) -> C:
    """
    Accept candidate as the new trusted checkpoint.

    Args:
        candidate: Checkpoint offered by the registry
        known: Last trusted checkpoint (None if this is the first)
        proof: Consistency proof from known to candidate

    Returns:
        Checkpoint to persist (known itself when candidate is identical)

    Raises:
        Rollback: candidate is shorter than known
        Fork: same length, different root
        MissingProof: candidate is longer and no proof was supplied
        ProofError: the consistency proof does not verify
    """
    if known is None:
        logger.info("accepting checkpoint at length %d as baseline", candidate.length)
        return candidate

    if candidate.length < known.length:
        raise Rollback(known.length, candidate.length)

    if candidate.length == known.length:
        if candidate.root != known.root:
            raise Fork(known.length, str(known.root), str(candidate.root))
        return known

    if proof is None:
        raise MissingProof(known.length, candidate.length)

    verify_consistency(known, candidate, proof)
    logger.info(
        "checkpoint advanced from length %d to %d", known.length, candidate.length
    )
    return candidate


def ensure_prefix(earlier: C, known: C, proof: Optional[ConsistencyProof] = None) -> None:
    """
    Check that an earlier checkpoint describes a prefix of known's tree.

    Registries report the checkpoint a record was sequenced at, which may
    predate the last trusted one. Such a checkpoint is never persisted;
    it is only trusted through its consistency with known.

    Raises:
        ValueError: earlier is longer than known
        Fork: same length, different root
        MissingProof: earlier is shorter and no proof was supplied
        ProofError: the consistency proof does not verify
    """
    if earlier.length > known.length:
        raise ValueError(
            f"checkpoint at length {earlier.length} is newer than known length {known.length}"
        )
    if earlier.length == known.length:
        if earlier.root != known.root:
            raise Fork(known.length, str(known.root), str(earlier.root))
        return
    if proof is None:
        raise MissingProof(earlier.length, known.length)
    verify_consistency(earlier, known, proof)


def is_trust_error(error: Exception) -> bool:
    """True for errors that must reach the caller unmodified."""
    return isinstance(error, (CheckpointError, ProofError))
