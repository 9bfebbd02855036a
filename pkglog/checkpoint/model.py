"""
Checkpoint model for registry tree commitments.

A checkpoint captures:
- Root digest of the registry's global Merkle tree
- Tree length (number of leaves)
- Registry timestamp
- Registry signature (SignedCheckpoint) and local receipt time
"""

import json
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from ..core.digest import Digest


@dataclass(frozen=True)
class Checkpoint:
    """
    Immutable tree commitment.

    Fields:
        root: Merkle root of the first `length` leaves
        length: Tree length
        timestamp: Registry timestamp (integer seconds)
    """
    root: Digest
    length: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"root": str(self.root), "length": self.length, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            root=Digest.parse(data["root"]),
            length=data["length"],
            timestamp=data["timestamp"],
        )

    def signing_payload(self) -> Dict[str, Any]:
        """Canonical representation that the registry signs."""
        return self.to_dict()


@dataclass(frozen=True)
class SignedCheckpoint:
    """
    Checkpoint signed by a registry operator key.

    Fields:
        checkpoint: The signed commitment
        key_id: Id of the signing key (must hold `commit` in the operator log)
        signature: Base64 Ed25519 signature over checkpoint.signing_payload()
        received_at: Local receipt time, set by the client (not signed)
    """
    checkpoint: Checkpoint
    key_id: str
    signature: str
    received_at: Optional[int] = None

    @classmethod
    def sign(cls, checkpoint: Checkpoint, signing_key) -> "SignedCheckpoint":
        return cls(
            checkpoint=checkpoint,
            key_id=signing_key.key_id(),
            signature=signing_key.sign_base64(checkpoint.signing_payload()),
        )

    @property
    def length(self) -> int:
        return self.checkpoint.length

    @property
    def root(self) -> Digest:
        return self.checkpoint.root

    def received(self, when: int) -> "SignedCheckpoint":
        return replace(self, received_at=when)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkpoint": self.checkpoint.to_dict(),
            "key_id": self.key_id,
            "signature": self.signature,
            "received_at": self.received_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedCheckpoint":
        return cls(
            checkpoint=Checkpoint.from_dict(data["checkpoint"]),
            key_id=data["key_id"],
            signature=data["signature"],
            received_at=data.get("received_at"),
        )

    def to_json(self) -> str:
        """Serialize to JSON string (for file storage)."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "SignedCheckpoint":
        return cls.from_dict(json.loads(json_str))
