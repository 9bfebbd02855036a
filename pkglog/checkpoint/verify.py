"""
Checkpoint signature verification.

A registry checkpoint is trusted only when it is signed by a key that holds
the `commit` permission in the operator log.
"""

from dataclasses import dataclass
from typing import Optional

from ..core.errors import InvalidCheckpointSignature
from ..core.signer import VerifyingKey
from ..log.records import LogKind, Permission
from ..log.state import LogState
from .model import SignedCheckpoint


@dataclass
class VerificationResult:
    """
    Result of checkpoint signature verification.

    Fields:
        valid: Overall validity (all checks passed)
        signature_valid: Signature verification passed
        error: Error message if verification failed
    """
    valid: bool
    signature_valid: bool = False
    error: Optional[str] = None


def verify_signature(signed: SignedCheckpoint, verifying_key: VerifyingKey) -> VerificationResult:
    """
    Verify a checkpoint signature against one key.

    Args:
        signed: Checkpoint to verify
        verifying_key: Public key for verification

    Returns:
        VerificationResult with signature_valid set
    """
    expected_key_id = verifying_key.key_id()
    if signed.key_id != expected_key_id:
        return VerificationResult(
            valid=False,
            signature_valid=False,
            error=f"Key ID mismatch: expected {expected_key_id}, got {signed.key_id}",
        )

    if not verifying_key.verify_base64(signed.checkpoint.signing_payload(), signed.signature):
        return VerificationResult(valid=False, signature_valid=False, error="Invalid signature")

    return VerificationResult(valid=True, signature_valid=True)


def verify_operator_signature(signed: SignedCheckpoint, operator: LogState) -> VerificationResult:
    """
    Verify a checkpoint against the operator log's commit keys.

    Args:
        signed: Checkpoint to verify
        operator: Validated operator log state

    Returns:
        VerificationResult
    """
    if operator.kind != LogKind.OPERATOR:
        raise ValueError("checkpoint signatures are verified against the operator log")

    public_key = operator.keys.get(signed.key_id)
    if public_key is None:
        return VerificationResult(valid=False, error=f"Unknown operator key {signed.key_id}")
    if not operator.key_has_permission(signed.key_id, Permission.COMMIT):
        return VerificationResult(
            valid=False,
            error=f"Key {signed.key_id} does not hold the commit permission",
        )

    return verify_signature(signed, VerifyingKey.from_string(public_key))


def ensure_operator_signature(signed: SignedCheckpoint, operator: LogState) -> None:
    """
    Raise unless the checkpoint carries a valid commit signature.

    Raises:
        InvalidCheckpointSignature: If verification fails
    """
    result = verify_operator_signature(signed, operator)
    if not result.valid:
        raise InvalidCheckpointSignature(
            f"checkpoint at length {signed.length} failed signature verification: {result.error}"
        )
