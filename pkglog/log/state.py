"""
Local log state: the validated, materialized view of one log.

fold() is a pure function: it checks that a record extends the current head,
that its signature is valid and that the signer was authorized by the state
before the record, then returns a new LogState. The input state is never
mutated, so a rejected record leaves prior accepted history intact.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from packaging.specifiers import SpecifierSet
from packaging.version import Version

from ..core.digest import Digest, SHA256
from ..core.errors import (
    ConflictingRelease,
    FirstEntryIsNotInit,
    ForkedChain,
    InitialEntryAfterBeginning,
    InvalidSignature,
    PermissionNotHeld,
    ProtocolVersionNotAllowed,
    TimestampLowerThanPrevious,
    Unauthorized,
    UnknownKey,
    ValidationError,
    YankOfUnreleased,
)
from ..core.ids import LogId, PackageId, RecordId
from ..core.signer import VerifyingKey, key_id_for
from .records import (
    ENTRIES_BY_KIND,
    PERMISSIONS_BY_KIND,
    PROTOCOL_VERSION,
    Grant,
    Init,
    LogKind,
    Permission,
    RecordEnvelope,
    Release,
    Revoke,
    Yank,
)


class StatusKind(str, Enum):
    UNVALIDATED = "unvalidated"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class LogStatus:
    kind: StatusKind = StatusKind.UNVALIDATED
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogStatus":
        return cls(kind=StatusKind(data["kind"]), reason=data.get("reason"))


UNVALIDATED = LogStatus(StatusKind.UNVALIDATED)
VALID = LogStatus(StatusKind.VALID)


@dataclass(frozen=True)
class ReleaseInfo:
    """A released version and the record that released (and maybe yanked) it."""
    version: str
    content: Digest
    record_id: RecordId
    timestamp: int
    yanked_by: Optional[RecordId] = None

    @property
    def yanked(self) -> bool:
        return self.yanked_by is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "content": str(self.content),
            "record_id": str(self.record_id),
            "timestamp": self.timestamp,
            "yanked_by": str(self.yanked_by) if self.yanked_by else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReleaseInfo":
        yanked_by = data.get("yanked_by")
        return cls(
            version=data["version"],
            content=Digest.parse(data["content"]),
            record_id=RecordId.parse(data["record_id"]),
            timestamp=data["timestamp"],
            yanked_by=RecordId.parse(yanked_by) if yanked_by else None,
        )


@dataclass(frozen=True)
class LogState:
    """
    Immutable view of one package or operator log.

    Fields:
        kind: Package or operator log
        package_id: Owning package (None for the operator log)
        records: Accepted envelopes in chain order
        head: Id of the last accepted record
        head_timestamp: Timestamp of the last accepted record
        keys: key_id -> public key string
        permissions: key_id -> permissions currently held
        releases: version -> ReleaseInfo (package logs only)
        status: Validation status of the last fold attempt
    """
    kind: LogKind
    package_id: Optional[PackageId] = None
    records: Tuple[RecordEnvelope, ...] = ()
    head: Optional[RecordId] = None
    head_timestamp: Optional[int] = None
    keys: Dict[str, str] = field(default_factory=dict)
    permissions: Dict[str, FrozenSet[Permission]] = field(default_factory=dict)
    releases: Dict[str, ReleaseInfo] = field(default_factory=dict)
    status: LogStatus = UNVALIDATED

    @classmethod
    def for_package(cls, package_id: PackageId) -> "LogState":
        return cls(kind=LogKind.PACKAGE, package_id=package_id)

    @classmethod
    def for_operator(cls) -> "LogState":
        return cls(kind=LogKind.OPERATOR)

    @property
    def log_id(self) -> LogId:
        if self.kind == LogKind.OPERATOR:
            return LogId.operator_log()
        return LogId.package_log(self.package_id)

    @property
    def is_empty(self) -> bool:
        return self.head is None

    @property
    def is_initialized(self) -> bool:
        return not self.is_empty

    def fold(self, envelope: RecordEnvelope) -> "LogState":
        return fold(self, envelope)

    def rejected(self, reason: str) -> "LogState":
        """Same accepted history, marked invalid for the last attempted record."""
        return replace(self, status=LogStatus(StatusKind.INVALID, reason))

    def key_has_permission(self, key_id: str, permission: Permission) -> bool:
        return permission in self.permissions.get(key_id, frozenset())

    def released_versions(self) -> List[ReleaseInfo]:
        """Releases sorted by version (yanked included)."""
        return sorted(self.releases.values(), key=lambda r: Version(r.version))

    def find_latest_release(self, requirement: Optional[str] = None) -> Optional[ReleaseInfo]:
        """
        Newest non-yanked release matching a PEP 440 specifier.

        Args:
            requirement: Specifier such as ">=1.0,<2" (None or "" = any)

        Returns:
            Matching release or None
        """
        spec = SpecifierSet(requirement or "")
        candidates = {
            Version(r.version): r for r in self.releases.values() if not r.yanked
        }
        matches = list(spec.filter(candidates.keys()))
        if not matches:
            return None
        return candidates[max(matches)]

    def release(self, version: str) -> Optional[ReleaseInfo]:
        return self.releases.get(version)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "package_id": str(self.package_id) if self.package_id else None,
            "records": [r.to_dict() for r in self.records],
            "head": str(self.head) if self.head else None,
            "head_timestamp": self.head_timestamp,
            "keys": dict(self.keys),
            "permissions": {k: sorted(p.value for p in v) for k, v in self.permissions.items()},
            "releases": {v: r.to_dict() for v, r in self.releases.items()},
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogState":
        package_id = data.get("package_id")
        head = data.get("head")
        return cls(
            kind=LogKind(data["kind"]),
            package_id=PackageId.parse(package_id) if package_id else None,
            records=tuple(RecordEnvelope.from_dict(r) for r in data.get("records", [])),
            head=RecordId.parse(head) if head else None,
            head_timestamp=data.get("head_timestamp"),
            keys=dict(data.get("keys", {})),
            permissions={
                k: frozenset(Permission(p) for p in v)
                for k, v in data.get("permissions", {}).items()
            },
            releases={
                v: ReleaseInfo.from_dict(r) for v, r in data.get("releases", {}).items()
            },
            status=LogStatus.from_dict(data.get("status", {"kind": "unvalidated"})),
        )


def _verify_signature(envelope: RecordEnvelope, public_key: str) -> None:
    try:
        key = VerifyingKey.from_string(public_key)
    except ValueError as ex:
        raise InvalidSignature(envelope.key_id) from ex
    if not key.verify_base64(envelope.contents.to_dict(), envelope.signature):
        raise InvalidSignature(envelope.key_id)


def _check_permissions(
    kind: LogKind,
    signer: str,
    authority: FrozenSet[Permission],
    permissions: Iterable[Permission],
) -> None:
    for permission in permissions:
        if permission not in PERMISSIONS_BY_KIND[kind]:
            raise ValidationError(
                f"permission `{permission.value}` does not apply to a {kind.value} log"
            )
        if permission not in authority:
            raise Unauthorized(signer, permission.value)


def fold(current: LogState, envelope: RecordEnvelope) -> LogState:
    """
    Apply one record to a log state.

    Args:
        current: State after the previously accepted record
        envelope: Signed record to apply

    Returns:
        New LogState with the record accepted and status VALID

    Raises:
        ValidationError: (ForkedChain, Unauthorized, InvalidSignature, ...)
            when the record cannot extend the log; current is unchanged
    """
    record = envelope.contents
    kind = current.kind

    if record.prev != current.head:
        raise ForkedChain(
            expected=str(current.head) if current.head else None,
            found=str(record.prev) if record.prev else None,
        )
    if record.version != PROTOCOL_VERSION:
        raise ProtocolVersionNotAllowed(record.version)
    if current.head_timestamp is not None and record.timestamp < current.head_timestamp:
        raise TimestampLowerThanPrevious(current.head_timestamp, record.timestamp)

    first = current.head is None
    signer = envelope.key_id

    if first:
        if not record.entries or not isinstance(record.entries[0], Init):
            raise FirstEntryIsNotInit()
        init_key = record.entries[0].key
        if key_id_for(init_key) != signer:
            raise Unauthorized(signer, "init")
        signer_key = init_key
        # Nothing precedes the first record: the init entry is the authority.
        authority = PERMISSIONS_BY_KIND[kind]
    else:
        signer_key = current.keys.get(signer)
        if signer_key is None:
            raise UnknownKey(signer)
        authority = current.permissions.get(signer, frozenset())

    _verify_signature(envelope, signer_key)

    record_id = envelope.record_id
    keys = dict(current.keys)
    permissions = {k: set(v) for k, v in current.permissions.items()}
    releases = dict(current.releases)

    for index, entry in enumerate(record.entries):
        if not isinstance(entry, ENTRIES_BY_KIND[kind]):
            raise ValidationError(f"entry `{entry.kind}` is not allowed in a {kind.value} log")

        if isinstance(entry, Init):
            if not (first and index == 0):
                raise InitialEntryAfterBeginning()
            if entry.hash_algorithm != SHA256:
                raise ValidationError(f"unsupported hash algorithm `{entry.hash_algorithm}`")
            keys[signer] = entry.key
            permissions[signer] = set(PERMISSIONS_BY_KIND[kind])

        elif isinstance(entry, Grant):
            _check_permissions(kind, signer, authority, entry.permissions)
            try:
                VerifyingKey.from_string(entry.key)
            except ValueError as ex:
                raise ValidationError(f"grant to malformed key: {ex}") from ex
            grantee = key_id_for(entry.key)
            keys[grantee] = entry.key
            permissions.setdefault(grantee, set()).update(entry.permissions)

        elif isinstance(entry, Revoke):
            _check_permissions(kind, signer, authority, entry.permissions)
            held = permissions.get(entry.key_id, set())
            for permission in entry.permissions:
                if permission not in held:
                    raise PermissionNotHeld(entry.key_id, permission.value)
            held.difference_update(entry.permissions)

        elif isinstance(entry, Release):
            if Permission.RELEASE not in authority:
                raise Unauthorized(signer, Permission.RELEASE.value)
            existing = releases.get(entry.version)
            if existing is not None:
                if existing.content != entry.content:
                    raise ConflictingRelease(entry.version, str(existing.content), str(entry.content))
                continue
            releases[entry.version] = ReleaseInfo(
                version=entry.version,
                content=entry.content,
                record_id=record_id,
                timestamp=record.timestamp,
            )

        elif isinstance(entry, Yank):
            if Permission.YANK not in authority:
                raise Unauthorized(signer, Permission.YANK.value)
            existing = releases.get(entry.version)
            if existing is None:
                raise YankOfUnreleased(entry.version)
            if not existing.yanked:
                releases[entry.version] = replace(existing, yanked_by=record_id)

    return LogState(
        kind=kind,
        package_id=current.package_id,
        records=current.records + (envelope,),
        head=record_id,
        head_timestamp=record.timestamp,
        keys=keys,
        permissions={k: frozenset(v) for k, v in permissions.items()},
        releases=releases,
        status=VALID,
    )
