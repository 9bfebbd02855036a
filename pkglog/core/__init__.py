"""
Core primitives shared by every layer.

- Digest: algorithm-tagged content hash
- PackageId / LogId / RecordId: stable identifiers
- Canonical: deterministic serialization for hashing and signing
- Clock: record timestamps and poll timing
- Errors: exception families per subsystem
"""

from .digest import Digest, digest, digest_chunks, SHA256
from .ids import PackageId, LogId, RecordId, coerce_package_id
from .canonical import canonicalize, canonical_json_bytes, canonical_json_str
from .clock import SystemClock, DeterministicClock
from .signer import SigningKey, VerifyingKey, key_id_for

__all__ = [
    "Digest",
    "digest",
    "digest_chunks",
    "SHA256",
    "PackageId",
    "LogId",
    "RecordId",
    "coerce_package_id",
    "canonicalize",
    "canonical_json_bytes",
    "canonical_json_str",
    "SystemClock",
    "DeterministicClock",
    "SigningKey",
    "VerifyingKey",
    "key_id_for",
]
