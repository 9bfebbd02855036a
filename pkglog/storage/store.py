"""
Storage abstract interfaces.

Defines the contracts for local persistence used by the client core:
- ContentStorage: content-addressed bytes keyed by digest
- RegistryStorage: log states, last trusted checkpoint, in-flight publishes
"""

from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional

from ..checkpoint.model import SignedCheckpoint
from ..core.digest import Digest
from ..core.ids import PackageId
from ..log.state import LogState
from ..publish.entry import PublishEntry


class ContentStorage(ABC):
    """
    Content-addressed storage.

    All implementations must guarantee:
    - store() is idempotent: same bytes, same digest, same stored object
    - stored bytes always hash to their key
    - concurrent writes of identical content are safe
    """

    @abstractmethod
    def has(self, digest: Digest) -> bool:
        ...

    @abstractmethod
    def load(self, digest: Digest) -> Optional[bytes]:
        """Return content bytes or None if not stored."""
        ...

    @abstractmethod
    def store(self, chunks: Iterable[bytes], expected_digest: Optional[Digest] = None) -> Digest:
        """
        Store content and return its digest.

        Raises:
            StorageError: If expected_digest is given and does not match
        """
        ...

    def stream(self, digest: Digest) -> Optional[Iterator[bytes]]:
        """Content as a chunk iterator (None if not stored)."""
        data = self.load(digest)
        if data is None:
            return None
        return iter([data])

    def content_location(self, digest: Digest) -> Optional[str]:
        """Human readable location of stored content (path, key), if any."""
        return None


class RegistryStorage(ABC):
    """
    Persistence for verified log state.

    Callers serialize writes per log id and per registry; implementations
    only need to make individual reads and writes atomic.
    """

    @abstractmethod
    def load_checkpoint(self) -> Optional[SignedCheckpoint]:
        ...

    @abstractmethod
    def store_checkpoint(self, checkpoint: SignedCheckpoint) -> None:
        ...

    @abstractmethod
    def load_operator(self) -> Optional[LogState]:
        ...

    @abstractmethod
    def store_operator(self, state: LogState) -> None:
        ...

    @abstractmethod
    def load_package(self, package_id: PackageId) -> Optional[LogState]:
        ...

    @abstractmethod
    def store_package(self, state: LogState) -> None:
        ...

    @abstractmethod
    def load_packages(self) -> List[LogState]:
        """All tracked package logs."""
        ...

    @abstractmethod
    def load_publish(self, package_id: PackageId) -> Optional[PublishEntry]:
        ...

    @abstractmethod
    def store_publish(self, entry: PublishEntry) -> None:
        ...

    @abstractmethod
    def clear_publish(self, package_id: PackageId) -> None:
        ...
