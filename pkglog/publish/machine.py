"""
Publish state machine.

Drives one PublishEntry from STAGED to a terminal state. Every transition
is persisted through RegistryStorage before the next network call, so a
crash or a raised error always leaves an entry that run() can pick up again.

    STAGED              sign (once) and submit
    CONTENT_UPLOADING   upload digests the registry reported missing, resubmit
    SUBMITTED           start polling
    AWAITING_INCLUSION  poll record status with backoff until Included/Rejected
    COMMITTED           checkpoint accepted, operator log synced, inclusion
                        verified, record folded
    REJECTED            registry refused the record; entry cleared
    FAILED              entry kept; resumed() decides where to re-enter

Errors:
- TransientApiError is retried with backoff, max_attempts times per step,
  then surfaces as PublishFailed
- ProofError / CheckpointError are raised unmodified after the entry is
  marked FAILED
- Polling past poll_timeout raises PublishTimeout
"""

from dataclasses import replace
from typing import TYPE_CHECKING, Optional, Sequence

from .. import metrics, sync
from ..api.client import RegistryApi
from ..api.models import Included, Rejected
from ..checkpoint import tracker
from ..checkpoint.verify import ensure_operator_signature
from ..config import ClientConfig
from ..core.clock import SystemClock
from ..core.errors import (
    CannotInitializePackage,
    CheckpointError,
    ContentNotFound,
    MissingContentError,
    MustInitializePackage,
    NothingToPublish,
    PackageMissingContent,
    PackageValidationFailed,
    PkglogError,
    ProofError,
    PublishFailed,
    PublishInProgress,
    PublishTimeout,
    RecordRejectedError,
    TransientApiError,
    ValidationError,
)
from ..core.ids import PackageId
from ..log.records import Entry, Init, LogLeaf, Record, RecordEnvelope
from ..log.state import LogState
from ..logging_config import get_logger
from ..verify.proof import verify_inclusion
from .backoff import Backoff
from .entry import PublishEntry, PublishState

if TYPE_CHECKING:
    from ..storage.store import ContentStorage, RegistryStorage


class PublishMachine:
    """
    Publish workflow for package logs.

    One instance may serve many packages; callers must not run two
    workflows for the same package concurrently (stage() refuses while an
    entry is stored).
    """

    def __init__(
        self,
        api: RegistryApi,
        content: "ContentStorage",
        registry: "RegistryStorage",
        config: Optional[ClientConfig] = None,
        clock=None,
        backoff: Optional[Backoff] = None,
    ) -> None:
        self.api = api
        self.content = content
        self.registry = registry
        self.config = config or ClientConfig()
        self.clock = clock or SystemClock()
        self.backoff = backoff or Backoff(
            initial=self.config.poll_initial_delay,
            maximum=self.config.poll_max_delay,
        )

    def _package_state(self, package_id: PackageId) -> LogState:
        return self.registry.load_package(package_id) or LogState.for_package(package_id)

    def _save(self, entry: PublishEntry) -> PublishEntry:
        self.registry.store_publish(entry)
        return entry

    def _latest(self, entry: PublishEntry) -> PublishEntry:
        # a step may persist progress (uploads) before raising
        return self.registry.load_publish(entry.package_id) or entry

    def stage(self, package_id: PackageId, entries: Sequence[Entry]) -> PublishEntry:
        """
        Stage operations for a package log.

        Raises:
            PublishInProgress: An entry for this package is already stored
            NothingToPublish: entries is empty
            CannotInitializePackage: Init staged for an initialized log
            MustInitializePackage: Log is empty and entries do not start with Init
        """
        existing = self.registry.load_publish(package_id)
        if existing is not None:
            raise PublishInProgress(package_id, existing.state.value)

        entries = tuple(entries)
        if not entries:
            raise NothingToPublish(package_id)

        state = self._package_state(package_id)
        if state.is_initialized and any(isinstance(e, Init) for e in entries):
            raise CannotInitializePackage(package_id)
        if not state.is_initialized and not isinstance(entries[0], Init):
            raise MustInitializePackage(package_id)

        entry = PublishEntry(package_id=package_id, entries=entries)
        entry = replace(
            entry,
            content={d: self.content.content_location(d) for d in entry.content_digests()},
        )
        metrics.track_publish_transition(PublishState.STAGED.value)
        get_logger(__name__, trace_id=str(package_id)).info(
            "staged %d operation(s)", len(entries)
        )
        return self._save(entry)

    def step(self, entry: PublishEntry, signing_key=None) -> PublishEntry:
        """Advance entry by one transition (a pending poll returns the same state)."""
        if entry.state == PublishState.STAGED:
            return self._submit(self._sign(entry, signing_key))
        if entry.state == PublishState.CONTENT_UPLOADING:
            return self._upload(entry)
        if entry.state == PublishState.SUBMITTED:
            return self._save(entry.transition(PublishState.AWAITING_INCLUSION, polls=0))
        if entry.state == PublishState.AWAITING_INCLUSION:
            return self._poll(entry)
        raise ValueError(f"no transition from publish state {entry.state.value}")

    def run(self, entry: PublishEntry, signing_key=None) -> PublishEntry:
        """
        Step entry until it is COMMITTED or REJECTED.

        Returns:
            Terminal entry (COMMITTED or REJECTED)

        Raises:
            PublishTimeout: Inclusion not reported within poll_timeout
            PublishFailed: Transient errors exhausted max_attempts
            ProofError, CheckpointError: Registry evidence did not verify
            ClientError: Content or validation failures
        """
        log = get_logger(__name__, trace_id=str(entry.package_id))
        if entry.state == PublishState.FAILED:
            entry = self._save(entry.resumed())
            log.info("resuming publish from %s", entry.state.value)

        started = self.clock.monotonic()
        while not entry.state.terminal:
            previous = entry
            try:
                entry = self.step(entry, signing_key)
            except TransientApiError as ex:
                entry = self._retry(self._latest(previous), ex)
                continue
            except PkglogError as ex:
                self._fail(self._latest(previous), ex)
                raise

            if entry.state != previous.state:
                metrics.track_publish_transition(entry.state.value)
                log.info("publish %s -> %s", previous.state.value, entry.state.value)
                continue

            if entry.state == PublishState.AWAITING_INCLUSION:
                waited = self.clock.monotonic() - started
                if waited >= self.config.poll_timeout:
                    self._fail(entry, "timed out waiting for inclusion")
                    raise PublishTimeout(entry.package_id, entry.record_id, waited)
                delay = self.backoff.delay(entry.polls - 1)
                self.clock.sleep(min(delay, self.config.poll_timeout - waited))

        return entry

    def _sign(self, entry: PublishEntry, signing_key) -> PublishEntry:
        if entry.envelope is not None:
            return entry
        if signing_key is None:
            raise ValueError("a signing key is required to publish a staged record")

        state = self._package_state(entry.package_id)
        timestamp = max(self.clock.now(), state.head_timestamp or 0)
        record = Record(prev=state.head, timestamp=timestamp, entries=entry.entries)
        return self._save(replace(entry, envelope=RecordEnvelope.sign(record, signing_key)))

    def _submit(self, entry: PublishEntry) -> PublishEntry:
        try:
            record_id = self.api.submit_record(entry.log_id, entry.envelope)
        except MissingContentError as ex:
            return self._save(
                entry.transition(PublishState.CONTENT_UPLOADING, missing=tuple(ex.digests))
            )
        except RecordRejectedError as ex:
            return self._reject(entry, ex.reason)
        return self._save(entry.transition(PublishState.SUBMITTED, record_id=record_id))

    def _upload(self, entry: PublishEntry) -> PublishEntry:
        uploaded = list(entry.uploaded)
        for d in entry.missing:
            if d in uploaded:
                continue
            chunks = self.content.stream(d)
            if chunks is None:
                raise ContentNotFound(d, entry.package_id)
            self.api.upload_content(d, chunks)
            uploaded.append(d)
            entry = self._save(replace(entry, uploaded=tuple(uploaded), attempts=0))

        try:
            record_id = self.api.submit_record(entry.log_id, entry.envelope)
        except MissingContentError as ex:
            raise PackageMissingContent(entry.package_id, ex.digests) from ex
        except RecordRejectedError as ex:
            return self._reject(entry, ex.reason)
        return self._save(
            entry.transition(PublishState.SUBMITTED, record_id=record_id, missing=())
        )

    def _poll(self, entry: PublishEntry) -> PublishEntry:
        metrics.track_status_poll()
        status = self.api.record_status(entry.log_id, entry.record_id)
        if isinstance(status, Rejected):
            return self._reject(entry, status.reason)
        if isinstance(status, Included):
            return self._commit(entry, status)
        return self._save(replace(entry, polls=entry.polls + 1, attempts=0))

    def _reject(self, entry: PublishEntry, reason: str) -> PublishEntry:
        get_logger(__name__, trace_id=str(entry.package_id)).warning(
            "registry rejected record %s: %s", entry.record_id, reason
        )
        self.registry.clear_publish(entry.package_id)
        return entry.transition(PublishState.REJECTED, reason=reason)

    def _commit(self, entry: PublishEntry, status: Included) -> PublishEntry:
        candidate = status.checkpoint
        known = self.registry.load_checkpoint()

        try:
            if known is not None and candidate.length < known.length:
                # sequenced before the last trusted checkpoint, which stays
                proof = self.api.prove_consistency(candidate.length, known.length)
                tracker.ensure_prefix(candidate, known, proof)
                accepted = known
            else:
                proof = None
                if known is not None and candidate.length > known.length:
                    proof = self.api.prove_consistency(known.length, candidate.length)
                accepted = tracker.accept(candidate, known, proof)
            verify_inclusion([LogLeaf(entry.log_id, entry.record_id)], candidate, status.proof)
        except ProofError:
            metrics.track_proof_failure()
            raise
        except CheckpointError as ex:
            metrics.track_checkpoint_rejection(type(ex).__name__)
            raise

        operator = None
        if accepted is not known:
            operator = self._sync_operator(accepted)

        local = self._package_state(entry.package_id)
        if any(r.record_id == entry.record_id for r in local.records):
            # an update already folded it from the registry
            folded = local
        else:
            try:
                folded = local.fold(entry.envelope)
            except ValidationError as ex:
                raise PackageValidationFailed(entry.package_id, ex, entry.record_id) from ex
            metrics.track_records_folded(folded.kind.value)

        if operator is not None:
            self.registry.store_operator(operator)
        self.registry.store_package(folded)
        if accepted is not known:
            self.registry.store_checkpoint(accepted.received(self.clock.now()))
        self.registry.clear_publish(entry.package_id)
        return entry.transition(PublishState.COMMITTED)

    def _sync_operator(self, checkpoint) -> LogState:
        """Fold operator records up to checkpoint and check its signature with them."""
        operator = self.registry.load_operator() or LogState.for_operator()
        fetched = sync.fetch_records(self.api, checkpoint, operator, {})
        sync.verify_records_included(self.api, checkpoint, fetched)
        operator = sync.fold_operator(self.registry, operator, fetched.operator)

        if self.config.verify_checkpoint_signatures and not operator.is_empty:
            try:
                ensure_operator_signature(checkpoint, operator)
            except CheckpointError as ex:
                metrics.track_checkpoint_rejection(type(ex).__name__)
                raise
        return operator

    def _retry(self, entry: PublishEntry, error: Exception) -> PublishEntry:
        attempts = entry.attempts + 1
        metrics.track_publish_retry(entry.state.value)
        get_logger(__name__, trace_id=str(entry.package_id)).warning(
            "transient failure in %s (attempt %d/%d): %s",
            entry.state.value, attempts, self.config.max_attempts, error,
        )
        if attempts >= self.config.max_attempts:
            self._fail(entry, error)
            raise PublishFailed(entry.package_id, entry.record_id, error) from error
        entry = self._save(replace(entry, attempts=attempts))
        self.clock.sleep(self.backoff.delay(attempts - 1))
        return entry

    def _fail(self, entry: PublishEntry, error) -> None:
        metrics.track_publish_transition(PublishState.FAILED.value)
        self._save(entry.transition(PublishState.FAILED, error=str(error)))
