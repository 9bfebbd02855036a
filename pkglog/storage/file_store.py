"""
File-based storage.

Layout under the storage root:
    content/sha256/<hex>                 content bytes
    registry/checkpoint.json             last trusted checkpoint
    registry/operator.json               operator log state
    registry/packages/<log id hex>.json  package log states
    registry/publish/<log id hex>.json   in-flight publish entries

Every JSON write goes to a temp file, is fsynced and then renamed over the
target, so readers never see a partial document. Writers serialize on an
fcntl lock file.
"""

import hashlib
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..checkpoint.model import SignedCheckpoint
from ..core.canonical import canonical_json_str
from ..core.digest import Digest
from ..core.errors import StorageError
from ..core.ids import LogId, PackageId
from ..log.state import LogState
from ..publish.entry import PublishEntry
from .store import ContentStorage, RegistryStorage

try:
    import fcntl
except ImportError:  # Windows or unsupported platform
    fcntl = None

CHUNK_SIZE = 64 * 1024


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
    _fsync_dir(path.parent)


class FileContentStorage(ContentStorage):
    """
    Content-addressed files.

    Guarantees:
    - Content is hashed while it is written; bytes are only moved into
      place once the digest is known (and matches, if one was expected)
    - Existing objects are never rewritten
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, digest: Digest) -> Path:
        return self.root / digest.algorithm / digest.hex

    def has(self, digest: Digest) -> bool:
        return self._path(digest).is_file()

    def load(self, digest: Digest) -> Optional[bytes]:
        path = self._path(digest)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as ex:
            raise StorageError(f"failed to read content {digest}: {ex}") from ex

    def stream(self, digest: Digest) -> Optional[Iterator[bytes]]:
        path = self._path(digest)
        if not path.is_file():
            return None
        return self._iter_file(path)

    def _iter_file(self, path: Path) -> Iterator[bytes]:
        with open(path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    return
                yield chunk

    def store(self, chunks: Iterable[bytes], expected_digest: Optional[Digest] = None) -> Digest:
        tmp_dir = self.root / "tmp"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(tmp_dir))
        h = hashlib.sha256()
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    h.update(chunk)
                    f.write(chunk)
                f.flush()
                os.fsync(f.fileno())

            actual = Digest("sha256", h.digest())
            if expected_digest is not None and actual != expected_digest:
                raise StorageError(
                    f"content digest mismatch: expected {expected_digest}, got {actual}"
                )

            target = self._path(actual)
            if target.exists():
                os.remove(tmp)
                return actual
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp, target)
            _fsync_dir(target.parent)
            return actual
        except OSError as ex:
            raise StorageError(f"failed to store content: {ex}") from ex
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)

    def content_location(self, digest: Digest) -> Optional[str]:
        path = self._path(digest)
        return str(path) if path.is_file() else None


class FileRegistryStorage(RegistryStorage):
    """
    JSON documents on disk, one per log plus the checkpoint.
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.packages_dir = self.root / "packages"
        self.publish_dir = self.root / "publish"
        self.checkpoint_path = self.root / "checkpoint.json"
        self.operator_path = self.root / "operator.json"
        self.lock_path = self.root / ".lock"
        for d in (self.root, self.packages_dir, self.publish_dir):
            d.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with open(self.lock_path, "a+b") as f:
            if fcntl:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                if fcntl:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as ex:
            raise StorageError(f"failed to read {path}: {ex}") from ex

    def _write(self, path: Path, data: Dict[str, Any]) -> None:
        try:
            with self._locked():
                _write_atomic(path, canonical_json_str(data).encode("utf-8"))
        except OSError as ex:
            raise StorageError(f"failed to write {path}: {ex}") from ex

    def _package_path(self, package_id: PackageId) -> Path:
        return self.packages_dir / f"{LogId.package_log(package_id).digest.hex}.json"

    def _publish_path(self, package_id: PackageId) -> Path:
        return self.publish_dir / f"{LogId.package_log(package_id).digest.hex}.json"

    def load_checkpoint(self) -> Optional[SignedCheckpoint]:
        data = self._read(self.checkpoint_path)
        return SignedCheckpoint.from_dict(data) if data else None

    def store_checkpoint(self, checkpoint: SignedCheckpoint) -> None:
        self._write(self.checkpoint_path, checkpoint.to_dict())

    def load_operator(self) -> Optional[LogState]:
        data = self._read(self.operator_path)
        return LogState.from_dict(data) if data else None

    def store_operator(self, state: LogState) -> None:
        self._write(self.operator_path, state.to_dict())

    def load_package(self, package_id: PackageId) -> Optional[LogState]:
        data = self._read(self._package_path(package_id))
        return LogState.from_dict(data) if data else None

    def store_package(self, state: LogState) -> None:
        if state.package_id is None:
            raise StorageError("cannot store an operator log as a package")
        self._write(self._package_path(state.package_id), state.to_dict())

    def load_packages(self) -> List[LogState]:
        states = []
        for path in sorted(self.packages_dir.glob("*.json")):
            data = self._read(path)
            if data:
                states.append(LogState.from_dict(data))
        states.sort(key=lambda s: str(s.package_id))
        return states

    def load_publish(self, package_id: PackageId) -> Optional[PublishEntry]:
        data = self._read(self._publish_path(package_id))
        return PublishEntry.from_dict(data) if data else None

    def store_publish(self, entry: PublishEntry) -> None:
        self._write(self._publish_path(entry.package_id), entry.to_dict())

    def clear_publish(self, package_id: PackageId) -> None:
        path = self._publish_path(package_id)
        try:
            with self._locked():
                path.unlink()
        except FileNotFoundError:
            return
        except OSError as ex:
            raise StorageError(f"failed to remove {path}: {ex}") from ex
