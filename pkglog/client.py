"""
Client facade.

Composes the proof verifier, checkpoint tracker, log state fold and publish
machine against a RegistryApi and local storage.

Usage:
    client = Client(api, FileContentStorage(...), FileRegistryStorage(...))
    client.upsert(["acme:widgets"])
    client.publish("acme:widgets", signing_key, [Release("1.0.0", digest)])
    download = client.download("acme:widgets", ">=1.0")
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from . import metrics, sync
from .api.client import RegistryApi
from .checkpoint import tracker
from .checkpoint.model import SignedCheckpoint
from .checkpoint.verify import ensure_operator_signature
from .config import ClientConfig
from .core.clock import SystemClock
from .core.digest import Digest
from .core.errors import (
    AlreadyExistsError,
    CannotInitializePackage,
    CheckpointError,
    ContentDigestMismatch,
    ContentNotFound,
    ContentNotFoundApiError,
    LogNotFoundError,
    NotPublishing,
    PackageDoesNotExist,
    PackageLogEmpty,
    PackageValidationFailed,
    PackageVersionDoesNotExist,
    ProofError,
    PublishRejected,
    ValidationError,
)
from .core.ids import LogId, PackageId, coerce_package_id
from .core.signer import SigningKey
from .log.records import Entry
from .log.state import LogState
from .logging_config import get_logger
from .publish.backoff import Backoff
from .publish.entry import PublishEntry, PublishState
from .publish.machine import PublishMachine
from .storage.file_store import FileContentStorage, FileRegistryStorage
from .storage.store import ContentStorage, RegistryStorage

logger = logging.getLogger(__name__)

PackageRef = Union[str, PackageId]


@dataclass(frozen=True)
class PackageDownload:
    """Resolved release content on local storage."""
    package_id: PackageId
    version: str
    digest: Digest
    location: Optional[str]


class Client:
    """
    Registry client.

    Writes to RegistryStorage are not serialized here: one Client (or one
    process) per storage directory.
    """

    def __init__(
        self,
        api: RegistryApi,
        content: ContentStorage,
        registry: RegistryStorage,
        config: Optional[ClientConfig] = None,
        clock=None,
        backoff: Optional[Backoff] = None,
    ) -> None:
        self.api = api
        self.content = content
        self.registry = registry
        self.config = config or ClientConfig()
        self.clock = clock or SystemClock()
        self.machine = PublishMachine(
            api, content, registry, config=self.config, clock=self.clock, backoff=backoff
        )

    @classmethod
    def from_config(cls, api: RegistryApi, config: Optional[ClientConfig] = None) -> "Client":
        """Client over file storage rooted at config.storage_dir."""
        config = config or ClientConfig.from_env()
        return cls(
            api,
            FileContentStorage(os.path.join(config.storage_dir, "content")),
            FileRegistryStorage(os.path.join(config.storage_dir, "registry")),
            config=config,
        )

    # ------------------------------------------------------------------
    # Log updates
    # ------------------------------------------------------------------

    def tracked_packages(self) -> List[PackageId]:
        return [s.package_id for s in self.registry.load_packages()]

    def update(self) -> None:
        """Refresh the operator log and every tracked package log."""
        self._update(self.tracked_packages())

    def upsert(self, package_ids: Iterable[PackageRef]) -> List[LogState]:
        """
        Start tracking packages and bring them up to date.

        Raises:
            PackageDoesNotExist: The registry has no log for one of the packages
        """
        requested = [coerce_package_id(p) for p in package_ids]
        tracked = self.tracked_packages()
        self._update(tracked + [p for p in requested if p not in tracked])
        return [self.registry.load_package(p) for p in requested]

    def package(self, package_id: PackageRef) -> LogState:
        """Local view of a package, fetched from the registry on first use."""
        package_id = coerce_package_id(package_id)
        state = self.registry.load_package(package_id)
        if state is None:
            state = self.upsert([package_id])[0]
        return state

    def _accept_latest_checkpoint(self) -> Tuple[SignedCheckpoint, Optional[SignedCheckpoint]]:
        known = self.registry.load_checkpoint()
        candidate = self.api.latest_checkpoint()
        try:
            proof = None
            if known is not None and candidate.length > known.length:
                proof = self.api.prove_consistency(known.length, candidate.length)
            return tracker.accept(candidate, known, proof), known
        except ProofError:
            metrics.track_proof_failure()
            raise
        except CheckpointError as ex:
            metrics.track_checkpoint_rejection(type(ex).__name__)
            logger.error("registry checkpoint rejected: %s", ex)
            raise

    def _update(self, package_ids: Sequence[PackageId]) -> None:
        with metrics.track_update_duration():
            accepted, known = self._accept_latest_checkpoint()

            operator = self.registry.load_operator() or LogState.for_operator()
            packages = {
                LogId.package_log(p): self.registry.load_package(p) or LogState.for_package(p)
                for p in package_ids
            }

            fetched = sync.fetch_records(self.api, accepted, operator, packages)
            sync.verify_records_included(self.api, accepted, fetched)
            operator_records, package_records = fetched.operator, fetched.packages
            operator = sync.fold_operator(self.registry, operator, operator_records)

            if self.config.verify_checkpoint_signatures and not operator.is_empty:
                ensure_operator_signature(accepted, operator)

            first_error: Optional[PackageValidationFailed] = None
            for lid, records in package_records.items():
                state = packages[lid]
                for record in records:
                    try:
                        state = state.fold(record.envelope)
                    except ValidationError as ex:
                        get_logger(__name__, trace_id=str(state.package_id)).warning(
                            "rejected record %s: %s", record.envelope.record_id, ex
                        )
                        state = state.rejected(str(ex))
                        if first_error is None:
                            first_error = PackageValidationFailed(
                                state.package_id, ex, record.envelope.record_id
                            )
                        break
                    metrics.track_records_folded("package")
                packages[lid] = state

            self.registry.store_operator(operator)
            for state in packages.values():
                self.registry.store_package(state)
            if accepted is not known:
                self.registry.store_checkpoint(accepted.received(self.clock.now()))

            logger.info(
                "updated to checkpoint length %d (%d operator, %d package records)",
                accepted.length,
                len(operator_records),
                sum(len(r) for r in package_records.values()),
            )
            if first_error is not None:
                raise first_error

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def stage(self, package_id: PackageRef, entries: Sequence[Entry]) -> PublishEntry:
        """
        Refresh the package log and stage entries for publishing.

        A package the registry does not know yet is treated as an empty log
        so that its init record can be staged; the checkpoint and operator
        log are still brought up to date first.
        """
        package_id = coerce_package_id(package_id)
        try:
            self._update([package_id])
        except PackageDoesNotExist:
            logger.info("package %s is not on the registry yet", package_id)
            self._update([])
        return self.machine.stage(package_id, entries)

    def publish(
        self,
        package_id: PackageRef,
        signing_key: SigningKey,
        entries: Optional[Sequence[Entry]] = None,
    ) -> LogState:
        """
        Publish staged entries (staging `entries` first when given).

        Returns:
            Package log state including the committed record

        Raises:
            NotPublishing: Nothing staged and no entries given
            PublishRejected: Registry refused the record
            PublishFailed / PublishTimeout: Workflow gave up (entry kept for resume())
            ProofError, CheckpointError: Registry evidence did not verify
        """
        package_id = coerce_package_id(package_id)
        if entries is not None:
            self.stage(package_id, entries)
        entry = self.registry.load_publish(package_id)
        if entry is None:
            raise NotPublishing(package_id)
        return self._run(entry, signing_key)

    def resume(self, package_id: PackageRef, signing_key: Optional[SigningKey] = None) -> LogState:
        """Continue an interrupted or failed publish from its stored entry."""
        package_id = coerce_package_id(package_id)
        entry = self.registry.load_publish(package_id)
        if entry is None:
            raise NotPublishing(package_id)
        return self._run(entry, signing_key)

    def abandon(self, package_id: PackageRef) -> PublishEntry:
        """Drop the stored publish entry. Uploaded content stays on the registry."""
        package_id = coerce_package_id(package_id)
        entry = self.registry.load_publish(package_id)
        if entry is None:
            raise NotPublishing(package_id)
        self.registry.clear_publish(package_id)
        get_logger(__name__, trace_id=str(package_id)).info(
            "abandoned publish in state %s", entry.state.value
        )
        return entry

    def _run(self, entry: PublishEntry, signing_key: Optional[SigningKey]) -> LogState:
        package_id = entry.package_id
        try:
            final = self.machine.run(entry, signing_key)
        except LogNotFoundError as ex:
            raise PackageDoesNotExist(package_id) from ex
        except AlreadyExistsError as ex:
            raise CannotInitializePackage(package_id) from ex

        if final.state == PublishState.REJECTED:
            raise PublishRejected(package_id, final.record_id, final.reason)
        return self.registry.load_package(package_id)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def download(self, package_id: PackageRef, requirement: Optional[str] = None) -> PackageDownload:
        """
        Resolve and fetch the newest non-yanked release matching requirement.

        Args:
            package_id: Package to download
            requirement: PEP 440 specifier such as ">=1.0,<2" (None = newest)

        Raises:
            PackageLogEmpty: The package has no records
            PackageVersionDoesNotExist: No release satisfies requirement
            ContentNotFound: The registry does not have the release content
            ContentDigestMismatch: Downloaded bytes hash to a different digest
        """
        package_id = coerce_package_id(package_id)
        state = self.package(package_id)
        if state.is_empty:
            raise PackageLogEmpty(package_id)

        release = state.find_latest_release(requirement)
        if release is None:
            raise PackageVersionDoesNotExist(package_id, requirement or "*")

        expected = release.content
        if not self.content.has(expected):
            try:
                chunks = self.api.download_content(expected)
                actual = self.content.store(chunks)
            except ContentNotFoundApiError as ex:
                raise ContentNotFound(expected, package_id) from ex
            if actual != expected:
                raise ContentDigestMismatch(expected, actual)

        return PackageDownload(
            package_id=package_id,
            version=release.version,
            digest=expected,
            location=self.content.content_location(expected),
        )
