"""
Stable identifiers for packages, logs and records.

LogIds are derived deterministically from package ids (or the fixed operator
tag), so the same package always maps to the same log.
"""

import re
from dataclasses import dataclass

from .digest import Digest, digest

PACKAGE_LOG_PREFIX = "PKGLOG-PACKAGE-LOG-ID-V0:"
OPERATOR_LOG_TAG = "PKGLOG-OPERATOR-LOG-ID-V0"
RECORD_ID_PREFIX = b"PKGLOG-RECORD-ID-V0:"

_SEGMENT = r"[a-z][a-z0-9]*(?:-[a-z0-9]+)*"
_PACKAGE_ID_RE = re.compile(rf"^({_SEGMENT}):({_SEGMENT})$")


@dataclass(frozen=True)
class PackageId:
    """
    Package identifier of the form "namespace:name".

    Both segments are lowercase kebab-case.
    """
    namespace: str
    name: str

    @classmethod
    def parse(cls, text: str) -> "PackageId":
        m = _PACKAGE_ID_RE.match(text)
        if not m:
            raise ValueError(f"invalid package id: {text!r}")
        return cls(namespace=m.group(1), name=m.group(2))

    def __str__(self) -> str:
        return f"{self.namespace}:{self.name}"


@dataclass(frozen=True)
class LogId:
    """Identifier of one append-only record chain."""
    digest: Digest

    @classmethod
    def package_log(cls, package_id: PackageId) -> "LogId":
        return cls(digest((PACKAGE_LOG_PREFIX + str(package_id)).encode("utf-8")))

    @classmethod
    def operator_log(cls) -> "LogId":
        return cls(digest(OPERATOR_LOG_TAG.encode("utf-8")))

    @classmethod
    def parse(cls, text: str) -> "LogId":
        return cls(Digest.parse(text))

    def __str__(self) -> str:
        return str(self.digest)


@dataclass(frozen=True)
class RecordId:
    """Identifier of one signed record (digest of its envelope)."""
    digest: Digest

    @classmethod
    def for_envelope_bytes(cls, envelope_bytes: bytes) -> "RecordId":
        return cls(digest(RECORD_ID_PREFIX + envelope_bytes))

    @classmethod
    def parse(cls, text: str) -> "RecordId":
        return cls(Digest.parse(text))

    def __str__(self) -> str:
        return str(self.digest)


def coerce_package_id(value) -> PackageId:
    """Accept either a PackageId or its text form."""
    if isinstance(value, PackageId):
        return value
    return PackageId.parse(value)
