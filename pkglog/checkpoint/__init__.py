"""
Registry checkpoints.

Provides:
- Checkpoint / SignedCheckpoint model with canonical signing payload
- Signature verification against operator commit keys
- Tracker: rollback/fork detection and consistency-checked advancement
"""

from .model import Checkpoint, SignedCheckpoint
from .verify import (
    VerificationResult,
    verify_signature,
    verify_operator_signature,
    ensure_operator_signature,
)
from .tracker import accept, ensure_prefix, is_trust_error

__all__ = [
    "Checkpoint",
    "SignedCheckpoint",
    "VerificationResult",
    "verify_signature",
    "verify_operator_signature",
    "ensure_operator_signature",
    "accept",
    "ensure_prefix",
    "is_trust_error",
]
