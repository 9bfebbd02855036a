"""
Tests for the publish state machine.

The machine runs against FakeRegistry with a DeterministicClock shared by
both sides, so backoff sleeps and poll timeouts advance simulated time.
Delays are whole seconds to keep clock arithmetic exact.
"""

import pytest

from pkglog.config import ClientConfig
from pkglog.core.clock import DeterministicClock
from pkglog.core.digest import digest
from pkglog.core.errors import (
    CannotInitializePackage,
    ContentNotFound,
    IncorrectProof,
    InvalidCheckpointSignature,
    MustInitializePackage,
    NothingToPublish,
    PackageMissingContent,
    PublishFailed,
    PublishInProgress,
    PublishTimeout,
)
from pkglog.core.ids import LogId, PackageId
from pkglog.core.signer import SigningKey
from pkglog.log import Init, Permission, Release
from pkglog.publish import Backoff, PublishEntry, PublishMachine, PublishState
from pkglog.storage import MemoryContentStorage, MemoryRegistryStorage
from pkglog.tests.fakes import START_TIME, FakeRegistry

PACKAGE = PackageId.parse("acme:widgets")
ARCHIVE = b"widgets-1.0.0.tar.gz bytes"


class Harness:
    def __init__(self, api=None, **config):
        self.clock = DeterministicClock(float(START_TIME))
        self.api = api or FakeRegistry(self.clock)
        self.api.clock = self.clock
        self.content = MemoryContentStorage()
        self.registry = MemoryRegistryStorage()
        settings = dict(poll_initial_delay=1.0, poll_max_delay=4.0, poll_timeout=10.0, max_attempts=3)
        settings.update(config)
        self.machine = PublishMachine(
            self.api,
            self.content,
            self.registry,
            config=ClientConfig(**settings),
            clock=self.clock,
            backoff=Backoff(initial=1.0, maximum=4.0, jitter=0),
        )
        self.key = SigningKey.generate()

    def init_entries(self, data=ARCHIVE, store=True):
        d = self.content.store([data]) if store else digest(data)
        return [Init(self.key.public_key_string()), Release("1.0.0", d)]

    def publish(self, entries):
        entry = self.machine.stage(PACKAGE, entries)
        return self.machine.run(entry, self.key)


@pytest.fixture
def h():
    return Harness()


def test_stage_records_content_locations(h):
    entries = h.init_entries()

    entry = h.machine.stage(PACKAGE, entries)

    assert entry.state == PublishState.STAGED
    assert entry.content == {digest(ARCHIVE): f"memory://{digest(ARCHIVE)}"}
    assert h.registry.load_publish(PACKAGE) == entry


def test_stage_preconditions(h):
    with pytest.raises(NothingToPublish):
        h.machine.stage(PACKAGE, [])
    with pytest.raises(MustInitializePackage):
        h.machine.stage(PACKAGE, [Release("1.0.0", digest(ARCHIVE))])

    h.machine.stage(PACKAGE, h.init_entries())
    with pytest.raises(PublishInProgress):
        h.machine.stage(PACKAGE, h.init_entries())


def test_cannot_initialize_twice(h):
    h.publish(h.init_entries())

    with pytest.raises(CannotInitializePackage):
        h.machine.stage(PACKAGE, [Init(h.key.public_key_string())])


def test_step_walks_every_state(h):
    entry = h.machine.stage(PACKAGE, h.init_entries())

    entry = h.machine.step(entry, h.key)
    assert entry.state == PublishState.CONTENT_UPLOADING
    assert entry.missing == (digest(ARCHIVE),)
    assert h.registry.load_publish(PACKAGE).state == PublishState.CONTENT_UPLOADING

    entry = h.machine.step(entry)
    assert entry.state == PublishState.SUBMITTED
    assert entry.record_id == entry.envelope.record_id
    assert h.api.uploads == [digest(ARCHIVE)]

    entry = h.machine.step(entry)
    assert entry.state == PublishState.AWAITING_INCLUSION

    entry = h.machine.step(entry)
    assert entry.state == PublishState.COMMITTED
    assert h.registry.load_publish(PACKAGE) is None


def test_staged_record_needs_a_signing_key(h):
    entry = h.machine.stage(PACKAGE, h.init_entries())

    with pytest.raises(ValueError):
        h.machine.step(entry)


def test_publish_commits_and_folds(h):
    entry = h.publish(h.init_entries())

    assert entry.state == PublishState.COMMITTED
    state = h.registry.load_package(PACKAGE)
    assert state.head == entry.record_id
    assert state.release("1.0.0").content == digest(ARCHIVE)
    assert h.registry.load_checkpoint().length == 2
    assert h.registry.load_checkpoint().received_at == START_TIME


def test_commit_syncs_operator_log(h):
    h.publish(h.init_entries())

    operator = h.registry.load_operator()
    assert operator.head == h.api.logs[LogId.operator_log()][-1].envelope.record_id
    assert operator.key_has_permission(h.api.operator_key.key_id(), Permission.COMMIT)


def test_commit_rejects_checkpoint_signed_without_commit(h):
    h.api.operator_key = SigningKey.generate()
    entry = h.machine.stage(PACKAGE, h.init_entries())

    with pytest.raises(InvalidCheckpointSignature):
        h.machine.run(entry, h.key)

    assert h.registry.load_publish(PACKAGE).state == PublishState.FAILED
    assert h.registry.load_checkpoint() is None
    assert h.registry.load_package(PACKAGE) is None


def test_second_publish_extends_chain(h):
    first = h.publish(h.init_entries())
    d = h.content.store([b"widgets 1.1.0"])
    h.clock.advance(30)

    second = h.publish([Release("1.1.0", d)])

    assert second.envelope.contents.prev == first.record_id
    state = h.registry.load_package(PACKAGE)
    assert [r.version for r in state.released_versions()] == ["1.0.0", "1.1.0"]
    assert h.registry.load_checkpoint().length == 3


def test_pending_polls_back_off(h):
    h.api.pending_polls = 3

    entry = h.publish(h.init_entries())

    assert entry.state == PublishState.COMMITTED
    assert h.api.status_calls == 4
    # delays 1 + 2 + 4
    assert h.clock.monotonic() == START_TIME + 7


def test_rejected_on_status_clears_entry(h):
    h.api.reject_on_status = "malware detected"

    entry = h.publish(h.init_entries())

    assert entry.state == PublishState.REJECTED
    assert entry.reason == "malware detected"
    assert h.registry.load_publish(PACKAGE) is None
    assert h.registry.load_package(PACKAGE) is None
    assert h.registry.load_checkpoint() is None


def test_rejected_on_submit(h):
    h.api.reject_on_submit = "namespace reserved"

    entry = h.publish(h.init_entries())

    assert entry.state == PublishState.REJECTED
    assert entry.reason == "namespace reserved"
    assert h.registry.load_publish(PACKAGE) is None


def test_tampered_inclusion_proof_fails_then_resumes(h):
    """A bad proof never folds the record; once the proof is good, resume commits it."""
    h.api.tamper_inclusion = True

    with pytest.raises(IncorrectProof):
        h.publish(h.init_entries())

    failed = h.registry.load_publish(PACKAGE)
    assert failed.state == PublishState.FAILED
    assert failed.record_id is not None
    assert h.registry.load_package(PACKAGE) is None
    assert h.registry.load_checkpoint() is None

    h.api.tamper_inclusion = False
    entry = h.machine.run(failed, h.key)

    assert entry.state == PublishState.COMMITTED
    assert h.registry.load_package(PACKAGE).head == failed.record_id
    assert h.api.uploads == [digest(ARCHIVE)]


def test_timeout_then_resume_without_reupload(h):
    h.api.never_include = True

    with pytest.raises(PublishTimeout) as exc:
        h.publish(h.init_entries())

    assert exc.value.waited == 10.0
    failed = h.registry.load_publish(PACKAGE)
    assert failed.state == PublishState.FAILED
    assert h.api.status_calls == 5

    h.api.never_include = False
    entry = h.machine.run(failed, h.key)

    assert entry.state == PublishState.COMMITTED
    assert h.api.uploads == [digest(ARCHIVE)]


def test_transient_submit_failures_are_retried(h):
    h.api.transient_submit_failures = 2

    entry = h.publish(h.init_entries())

    assert entry.state == PublishState.COMMITTED
    # two transient failures, one missing-content answer, one accepted submit
    assert h.api.submit_calls == 4
    assert h.registry.load_package(PACKAGE).head == entry.record_id


def test_transient_status_failures_are_retried(h):
    h.api.transient_status_failures = 2

    entry = h.publish(h.init_entries())

    assert entry.state == PublishState.COMMITTED
    assert h.api.status_calls == 3


def test_exhausted_retries_fail_the_publish(h):
    h.api.transient_submit_failures = 10

    with pytest.raises(PublishFailed):
        h.publish(h.init_entries())

    failed = h.registry.load_publish(PACKAGE)
    assert failed.state == PublishState.FAILED
    assert "registry unavailable" in failed.error
    assert h.api.submit_calls == 3
    with pytest.raises(PublishInProgress):
        h.machine.stage(PACKAGE, h.init_entries())


def test_resubmit_uses_the_same_signed_record(h):
    """Retrying never re-signs, so the record id is stable across attempts."""
    h.api.transient_submit_failures = 10

    with pytest.raises(PublishFailed):
        h.publish(h.init_entries())
    failed = h.registry.load_publish(PACKAGE)

    h.api.transient_submit_failures = 0
    h.clock.advance(100)
    entry = h.machine.run(failed, h.key)

    assert entry.envelope == failed.envelope
    assert entry.state == PublishState.COMMITTED


def test_missing_local_content_then_resume(h):
    entries = h.init_entries(store=False)

    with pytest.raises(ContentNotFound):
        h.publish(entries)

    failed = h.registry.load_publish(PACKAGE)
    assert failed.state == PublishState.FAILED
    assert failed.missing == (digest(ARCHIVE),)

    h.content.store([ARCHIVE])
    resumed = failed.resumed()
    assert resumed.state == PublishState.CONTENT_UPLOADING

    entry = h.machine.run(failed, h.key)
    assert entry.state == PublishState.COMMITTED


class ForgetfulRegistry(FakeRegistry):
    def upload_content(self, digest_, chunks):
        """Accept the upload but never keep it."""
        self.uploads.append(digest_)


def test_content_still_missing_after_upload():
    h = Harness(api=ForgetfulRegistry())

    with pytest.raises(PackageMissingContent):
        h.publish(h.init_entries())

    assert h.registry.load_publish(PACKAGE).state == PublishState.FAILED


def test_publish_entry_persists_progress():
    entry = PublishEntry(
        package_id=PACKAGE,
        entries=(Release("1.0.0", digest(ARCHIVE)),),
        content={digest(ARCHIVE): None},
        state=PublishState.CONTENT_UPLOADING,
        missing=(digest(ARCHIVE),),
        uploaded=(digest(ARCHIVE),),
        attempts=2,
    )

    assert PublishEntry.from_dict(entry.to_dict()) == entry


def test_resumed_picks_reentry_state():
    entry = PublishEntry(package_id=PACKAGE, entries=(Release("1.0.0", digest(ARCHIVE)),))
    failed = entry.transition(PublishState.FAILED, error="boom")

    assert failed.resumed().state == PublishState.STAGED
    assert failed.resumed().error is None
    assert entry.resumed() is entry


def test_backoff_delays():
    backoff = Backoff(initial=0.5, maximum=3.0, jitter=0)

    assert [backoff.delay(n) for n in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]
    assert backoff.delay(10_000) == 3.0
    jittered = Backoff(initial=0.5, maximum=3.0, jitter=0.25)
    assert jittered.delay(0, rand=lambda lo, hi: hi) == 0.75
