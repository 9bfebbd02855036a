"""
Log record model.

A record is a signed, hash-chained entry in a package or operator log:
- Record: previous record id, protocol version, timestamp, entries
- RecordEnvelope: record contents plus signer key id and signature
- PublishedRecord: envelope plus its index in the registry's global tree
- LogLeaf: (LogId, RecordId) pair committed to the global tree

Entries are tagged variants (init, grant, revoke, release, yank). Operator
logs only accept init/grant/revoke.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from packaging.version import Version

from ..core.canonical import canonical_json_bytes
from ..core.digest import Digest, SHA256
from ..core.ids import LogId, RecordId

PROTOCOL_VERSION = 0


class LogKind(str, Enum):
    PACKAGE = "package"
    OPERATOR = "operator"


class Permission(str, Enum):
    RELEASE = "release"
    YANK = "yank"
    COMMIT = "commit"


PERMISSIONS_BY_KIND = {
    LogKind.PACKAGE: frozenset({Permission.RELEASE, Permission.YANK}),
    LogKind.OPERATOR: frozenset({Permission.COMMIT}),
}


@dataclass(frozen=True)
class Init:
    """First entry of every log; grants the key all permissions of its log kind."""
    key: str
    hash_algorithm: str = SHA256

    kind = "init"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "key": self.key, "hash_algorithm": self.hash_algorithm}


@dataclass(frozen=True)
class Grant:
    key: str
    permissions: Tuple[Permission, ...]

    kind = "grant"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "key": self.key,
            "permissions": sorted(p.value for p in self.permissions),
        }


@dataclass(frozen=True)
class Revoke:
    key_id: str
    permissions: Tuple[Permission, ...]

    kind = "revoke"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "key_id": self.key_id,
            "permissions": sorted(p.value for p in self.permissions),
        }


@dataclass(frozen=True)
class Release:
    version: str
    content: Digest

    kind = "release"

    def __post_init__(self) -> None:
        # Raises packaging.version.InvalidVersion (a ValueError)
        Version(self.version)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "version": self.version, "content": str(self.content)}


@dataclass(frozen=True)
class Yank:
    version: str

    kind = "yank"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "version": self.version}


Entry = Union[Init, Grant, Revoke, Release, Yank]

ENTRIES_BY_KIND = {
    LogKind.PACKAGE: (Init, Grant, Revoke, Release, Yank),
    LogKind.OPERATOR: (Init, Grant, Revoke),
}


def entry_from_dict(data: Dict[str, Any]) -> Entry:
    """
    Deserialize a tagged entry.

    Raises:
        ValueError: If the kind is unknown or a field is malformed
    """
    kind = data.get("kind")
    if kind == "init":
        return Init(key=data["key"], hash_algorithm=data.get("hash_algorithm", SHA256))
    if kind == "grant":
        return Grant(key=data["key"], permissions=tuple(Permission(p) for p in data["permissions"]))
    if kind == "revoke":
        return Revoke(
            key_id=data["key_id"],
            permissions=tuple(Permission(p) for p in data["permissions"]),
        )
    if kind == "release":
        return Release(version=data["version"], content=Digest.parse(data["content"]))
    if kind == "yank":
        return Yank(version=data["version"])
    raise ValueError(f"unknown entry kind: {kind!r}")


@dataclass(frozen=True)
class Record:
    """
    Unsigned record contents.

    Fields:
        prev: Id of the previous record in this log (None for the first)
        timestamp: Integer seconds, non-decreasing along the chain
        entries: Operations applied by this record, in order
        version: Protocol version
    """
    prev: Optional[RecordId]
    timestamp: int
    entries: Tuple[Entry, ...]
    version: int = PROTOCOL_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prev": str(self.prev) if self.prev is not None else None,
            "version": self.version,
            "timestamp": self.timestamp,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        prev = data.get("prev")
        return cls(
            prev=RecordId.parse(prev) if prev else None,
            version=data.get("version", PROTOCOL_VERSION),
            timestamp=data["timestamp"],
            entries=tuple(entry_from_dict(e) for e in data.get("entries", [])),
        )

    def releases(self) -> Tuple[Release, ...]:
        return tuple(e for e in self.entries if isinstance(e, Release))


@dataclass(frozen=True)
class RecordEnvelope:
    """Signed record: contents, signer key id and base64 Ed25519 signature."""
    contents: Record
    key_id: str
    signature: str

    @classmethod
    def sign(cls, contents: Record, signing_key) -> "RecordEnvelope":
        return cls(
            contents=contents,
            key_id=signing_key.key_id(),
            signature=signing_key.sign_base64(contents.to_dict()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contents": self.contents.to_dict(),
            "key_id": self.key_id,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordEnvelope":
        return cls(
            contents=Record.from_dict(data["contents"]),
            key_id=data["key_id"],
            signature=data["signature"],
        )

    def to_bytes(self) -> bytes:
        return canonical_json_bytes(self.to_dict())

    @property
    def record_id(self) -> RecordId:
        return RecordId.for_envelope_bytes(self.to_bytes())


@dataclass(frozen=True)
class PublishedRecord:
    """Envelope as returned by the registry, with its global tree index."""
    envelope: RecordEnvelope
    registry_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {"envelope": self.envelope.to_dict(), "registry_index": self.registry_index}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishedRecord":
        return cls(
            envelope=RecordEnvelope.from_dict(data["envelope"]),
            registry_index=data["registry_index"],
        )


@dataclass(frozen=True)
class LogLeaf:
    """Unit committed to the registry's global Merkle tree."""
    log_id: LogId
    record_id: RecordId

    def to_bytes(self) -> bytes:
        return self.log_id.digest.value + self.record_id.digest.value

    def to_dict(self) -> Dict[str, Any]:
        return {"log_id": str(self.log_id), "record_id": str(self.record_id)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogLeaf":
        return cls(log_id=LogId.parse(data["log_id"]), record_id=RecordId.parse(data["record_id"]))
