"""
In-memory storage implementations.

Used by tests and by short-lived clients that do not need to persist
anything across processes.
"""

import threading
from typing import Dict, Iterable, List, Optional

from ..checkpoint.model import SignedCheckpoint
from ..core.digest import Digest, digest
from ..core.errors import StorageError
from ..core.ids import PackageId
from ..log.state import LogState
from ..publish.entry import PublishEntry
from .store import ContentStorage, RegistryStorage


class MemoryContentStorage(ContentStorage):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: Dict[Digest, bytes] = {}

    def has(self, digest: Digest) -> bool:
        with self._lock:
            return digest in self._objects

    def load(self, digest: Digest) -> Optional[bytes]:
        with self._lock:
            return self._objects.get(digest)

    def store(self, chunks: Iterable[bytes], expected_digest: Optional[Digest] = None) -> Digest:
        data = b"".join(chunks)
        actual = digest(data)
        if expected_digest is not None and actual != expected_digest:
            raise StorageError(
                f"content digest mismatch: expected {expected_digest}, got {actual}"
            )
        with self._lock:
            self._objects.setdefault(actual, data)
        return actual

    def content_location(self, digest: Digest) -> Optional[str]:
        return f"memory://{digest}" if self.has(digest) else None


class MemoryRegistryStorage(RegistryStorage):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._checkpoint: Optional[SignedCheckpoint] = None
        self._operator: Optional[LogState] = None
        self._packages: Dict[PackageId, LogState] = {}
        self._publishes: Dict[PackageId, PublishEntry] = {}

    def load_checkpoint(self) -> Optional[SignedCheckpoint]:
        with self._lock:
            return self._checkpoint

    def store_checkpoint(self, checkpoint: SignedCheckpoint) -> None:
        with self._lock:
            self._checkpoint = checkpoint

    def load_operator(self) -> Optional[LogState]:
        with self._lock:
            return self._operator

    def store_operator(self, state: LogState) -> None:
        with self._lock:
            self._operator = state

    def load_package(self, package_id: PackageId) -> Optional[LogState]:
        with self._lock:
            return self._packages.get(package_id)

    def store_package(self, state: LogState) -> None:
        if state.package_id is None:
            raise StorageError("cannot store an operator log as a package")
        with self._lock:
            self._packages[state.package_id] = state

    def load_packages(self) -> List[LogState]:
        with self._lock:
            return [self._packages[k] for k in sorted(self._packages, key=str)]

    def load_publish(self, package_id: PackageId) -> Optional[PublishEntry]:
        with self._lock:
            return self._publishes.get(package_id)

    def store_publish(self, entry: PublishEntry) -> None:
        with self._lock:
            self._publishes[entry.package_id] = entry

    def clear_publish(self, package_id: PackageId) -> None:
        with self._lock:
            self._publishes.pop(package_id, None)
