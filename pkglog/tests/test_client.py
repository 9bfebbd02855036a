"""
End-to-end tests for the client facade against FakeRegistry.
"""

import tempfile

import pytest

from pkglog.client import Client
from pkglog.config import ClientConfig
from pkglog.core.clock import DeterministicClock
from pkglog.core.digest import digest
from pkglog.core.errors import (
    CannotInitializePackage,
    ContentDigestMismatch,
    ContentNotFound,
    Fork,
    InvalidCheckpointSignature,
    NotPublishing,
    OperatorValidationFailed,
    PackageDoesNotExist,
    PackageValidationFailed,
    PackageVersionDoesNotExist,
    PublishRejected,
    PublishTimeout,
    Rollback,
)
from pkglog.core.ids import LogId, PackageId
from pkglog.core.signer import SigningKey
from pkglog.log import Grant, Init, Permission, Release, StatusKind, Yank
from pkglog.publish import Backoff, PublishState
from pkglog.storage import MemoryContentStorage, MemoryRegistryStorage
from pkglog.tests.fakes import START_TIME, FakeRegistry, init_record, package_log, signed_record

PACKAGE = PackageId.parse("acme:widgets")
ARCHIVE = b"widgets-1.0.0.tar.gz bytes"


def make_client(api, **config):
    settings = dict(poll_initial_delay=1.0, poll_max_delay=4.0, poll_timeout=10.0, max_attempts=3)
    settings.update(config)
    return Client(
        api,
        MemoryContentStorage(),
        MemoryRegistryStorage(),
        config=ClientConfig(**settings),
        clock=api.clock,
        backoff=Backoff(initial=1.0, maximum=4.0, jitter=0),
    )


@pytest.fixture
def api():
    return FakeRegistry(DeterministicClock(float(START_TIME)))


@pytest.fixture
def client(api):
    return make_client(api)


@pytest.fixture
def owner():
    return SigningKey.generate()


def publish_directly(api, key, package, entries_after_init=()):
    """Another client publishes a package without going through ours."""
    log_id = package_log(package)
    head = api.append(log_id, init_record(key)).envelope.record_id
    for i, entries in enumerate(entries_after_init):
        record = signed_record(key, entries, prev=head, timestamp=START_TIME + i + 1)
        head = api.append(log_id, record).envelope.record_id
    return head


def test_init_then_release_scenario(api, client, owner):
    """Release content the registry is missing: upload, include at length 5, fold."""
    client.publish(PACKAGE, owner, [Init(owner.public_key_string())])
    assert client.registry.load_checkpoint().length == 2

    other = SigningKey.generate()
    publish_directly(api, other, "acme:gadgets")
    publish_directly(api, other, "acme:gizmos")

    d = client.content.store([ARCHIVE])
    state = client.publish(PACKAGE, owner, [Release("1.0.0", d)])

    assert api.uploads == [d]
    assert state.release("1.0.0").content == d
    assert state.status.kind == StatusKind.VALID
    assert client.registry.load_checkpoint().length == 5
    assert client.registry.load_publish(PACKAGE) is None
    assert client.registry.load_operator().head is not None


def test_rejected_while_polling_leaves_state_unchanged(api, client, owner):
    client.publish(PACKAGE, owner, [Init(owner.public_key_string())])
    before = client.registry.load_package(PACKAGE)
    api.reject_on_status = "version already published"
    d = client.content.store([ARCHIVE])

    with pytest.raises(PublishRejected) as exc:
        client.publish(PACKAGE, owner, [Release("1.0.0", d)])

    assert exc.value.reason == "version already published"
    assert client.registry.load_package(PACKAGE) == before
    assert client.registry.load_publish(PACKAGE) is None


def test_upsert_fetches_records_from_other_publishers(api, client, owner):
    d = digest(ARCHIVE)
    publish_directly(api, owner, "acme:widgets", [[Release("1.0.0", d)], [Release("1.1.0", d)]])

    [state] = client.upsert(["acme:widgets"])

    assert [r.version for r in state.released_versions()] == ["1.0.0", "1.1.0"]
    assert client.tracked_packages() == [PACKAGE]
    assert client.registry.load_checkpoint().length == 4


def test_update_follows_paginated_responses(api, client, owner):
    d = digest(ARCHIVE)
    releases = [[Release(f"1.{i}.0", d)] for i in range(5)]
    publish_directly(api, owner, "acme:widgets", releases)
    api.page_size = 2

    [state] = client.upsert([PACKAGE])

    assert len(state.records) == 6
    assert state.find_latest_release().version == "1.4.0"


def test_update_picks_up_new_records(api, client, owner):
    d = digest(ARCHIVE)
    head = publish_directly(api, owner, "acme:widgets", [[Release("1.0.0", d)]])
    client.upsert([PACKAGE])

    yank = signed_record(owner, [Yank("1.0.0")], prev=head, timestamp=START_TIME + 10)
    api.append(package_log("acme:widgets"), yank)
    client.update()

    state = client.package(PACKAGE)
    assert state.release("1.0.0").yanked
    assert state.find_latest_release() is None


def test_upsert_of_unknown_package(client):
    with pytest.raises(PackageDoesNotExist):
        client.upsert(["acme:nothing-here"])


def test_rollback_is_detected(api, client, owner):
    publish_directly(api, owner, "acme:widgets")
    client.update()
    assert client.registry.load_checkpoint().length == 2

    api.checkpoint_length = 1
    with pytest.raises(Rollback):
        client.update()
    assert client.registry.load_checkpoint().length == 2


def test_fork_is_detected(api, client):
    client.update()
    client.api = FakeRegistry(api.clock)

    with pytest.raises(Fork):
        client.update()


def test_checkpoint_signed_by_unknown_key(api, client, owner):
    client.update()
    api.operator_key = SigningKey.generate()
    publish_directly(api, owner, "acme:widgets")

    with pytest.raises(InvalidCheckpointSignature):
        client.update()
    assert client.registry.load_checkpoint().length == 1


def test_unsigned_checkpoints_allowed_when_disabled(api, owner):
    client = make_client(api, verify_checkpoint_signatures=False)
    api.operator_key = SigningKey.generate()
    publish_directly(api, owner, "acme:widgets")

    client.upsert([PACKAGE])

    assert client.registry.load_checkpoint().length == 2


def test_operator_grant_extends_commit_keys(api, client):
    client.update()
    committer = SigningKey.generate()
    operator_head = api.logs[LogId.operator_log()][-1].envelope.record_id
    grant = signed_record(
        api.operator_key,
        [Grant(committer.public_key_string(), (Permission.COMMIT,))],
        prev=operator_head,
        timestamp=START_TIME + 1,
    )
    api.append(LogId.operator_log(), grant)
    api.operator_key = committer

    client.update()

    assert client.registry.load_checkpoint().length == 2
    assert client.registry.load_operator().key_has_permission(committer.key_id(), Permission.COMMIT)


def test_invalid_operator_record(api, client):
    client.update()
    intruder = SigningKey.generate()
    operator_head = api.logs[LogId.operator_log()][-1].envelope.record_id
    api.append(
        LogId.operator_log(),
        signed_record(
            intruder,
            [Grant(intruder.public_key_string(), (Permission.COMMIT,))],
            prev=operator_head,
            timestamp=START_TIME + 1,
        ),
    )

    with pytest.raises(OperatorValidationFailed):
        client.update()

    assert client.registry.load_operator().status.kind == StatusKind.INVALID
    assert client.registry.load_checkpoint().length == 1


def test_unauthorized_release_is_rejected(api, client, owner):
    intruder = SigningKey.generate()
    head = publish_directly(api, owner, "acme:widgets")
    api.append(
        package_log("acme:widgets"),
        signed_record(
            intruder, [Release("6.6.6", digest(b"evil"))], prev=head, timestamp=START_TIME + 1
        ),
    )

    with pytest.raises(PackageValidationFailed):
        client.upsert([PACKAGE])

    state = client.registry.load_package(PACKAGE)
    assert state.head == head
    assert state.status.kind == StatusKind.INVALID
    assert state.release("6.6.6") is None
    assert client.registry.load_checkpoint().length == 3


def test_concurrent_init_maps_to_cannot_initialize(api, client, owner):
    client.stage(PACKAGE, [Init(owner.public_key_string())])
    publish_directly(api, SigningKey.generate(), "acme:widgets")

    with pytest.raises(CannotInitializePackage):
        client.publish(PACKAGE, owner)

    failed = client.abandon(PACKAGE)
    assert failed.state == PublishState.FAILED
    assert client.registry.load_publish(PACKAGE) is None


def test_resume_after_timeout(api, client, owner):
    api.never_include = True
    client.stage(PACKAGE, [Init(owner.public_key_string())])

    with pytest.raises(PublishTimeout):
        client.publish(PACKAGE, owner)

    api.never_include = False
    state = client.resume(PACKAGE)
    assert state.is_initialized


def test_resume_commits_against_checkpoint_older_than_known(api, client, owner):
    """The record's inclusion checkpoint predates the one an update trusted."""
    api.report_sequenced_checkpoint = True
    api.never_include = True
    client.stage(PACKAGE, [Init(owner.public_key_string())])
    with pytest.raises(PublishTimeout):
        client.publish(PACKAGE, owner)

    api.never_include = False
    api.sequence_submitted()
    publish_directly(api, SigningKey.generate(), "acme:gadgets")
    client.update()
    assert client.registry.load_checkpoint().length == 3

    state = client.resume(PACKAGE)

    assert state.is_initialized
    assert client.registry.load_checkpoint().length == 3
    assert client.registry.load_publish(PACKAGE) is None


def test_resume_after_update_folded_the_record(api, client, owner):
    api.report_sequenced_checkpoint = True
    api.never_include = True
    client.stage(PACKAGE, [Init(owner.public_key_string())])
    with pytest.raises(PublishTimeout):
        client.publish(PACKAGE, owner)

    api.never_include = False
    api.sequence_submitted()
    publish_directly(api, SigningKey.generate(), "acme:gadgets")
    client.upsert([PACKAGE])

    state = client.resume(PACKAGE)

    assert len(state.records) == 1
    assert state.status.kind != StatusKind.INVALID
    assert client.registry.load_publish(PACKAGE) is None


def test_commit_follows_operator_key_rotation(api, client, owner):
    client.publish(PACKAGE, owner, [Init(owner.public_key_string())])
    d = client.content.store([ARCHIVE])
    client.stage(PACKAGE, [Release("1.0.0", d)])

    rotated = SigningKey.generate()
    operator_head = api.logs[LogId.operator_log()][-1].envelope.record_id
    grant = signed_record(
        api.operator_key,
        [Grant(rotated.public_key_string(), (Permission.COMMIT,))],
        prev=operator_head,
        timestamp=START_TIME + 1,
    )
    api.append(LogId.operator_log(), grant)
    api.operator_key = rotated

    state = client.publish(PACKAGE, owner)

    assert state.release("1.0.0").content == d
    assert client.registry.load_checkpoint().length == 4
    assert client.registry.load_operator().key_has_permission(rotated.key_id(), Permission.COMMIT)


def test_commit_rejects_checkpoint_signed_without_commit(api, client, owner):
    client.publish(PACKAGE, owner, [Init(owner.public_key_string())])
    d = client.content.store([ARCHIVE])
    client.stage(PACKAGE, [Release("1.0.0", d)])
    api.operator_key = SigningKey.generate()

    with pytest.raises(InvalidCheckpointSignature):
        client.publish(PACKAGE, owner)

    assert client.registry.load_publish(PACKAGE).state == PublishState.FAILED
    assert client.registry.load_checkpoint().length == 2
    assert client.package(PACKAGE).release("1.0.0") is None


def test_first_publish_checks_checkpoint_signature(api, client, owner):
    api.operator_key = SigningKey.generate()

    with pytest.raises(InvalidCheckpointSignature):
        client.publish(PACKAGE, owner, [Init(owner.public_key_string())])

    assert client.registry.load_publish(PACKAGE) is None
    assert client.registry.load_checkpoint() is None


def test_nothing_in_flight(client):
    with pytest.raises(NotPublishing):
        client.resume(PACKAGE)
    with pytest.raises(NotPublishing):
        client.abandon(PACKAGE)
    with pytest.raises(NotPublishing):
        client.publish(PACKAGE, SigningKey.generate())


def test_download(api, client, owner):
    d = client.content.store([ARCHIVE])
    client.publish(PACKAGE, owner, [Init(owner.public_key_string()), Release("1.0.0", d)])

    reader = make_client(api)
    download = reader.download("acme:widgets")

    assert download.version == "1.0.0"
    assert download.digest == d
    assert reader.content.load(d) == ARCHIVE
    assert download.location == f"memory://{d}"


def test_download_requirement_miss(api, client, owner):
    d = client.content.store([ARCHIVE])
    client.publish(PACKAGE, owner, [Init(owner.public_key_string()), Release("1.0.0", d)])

    with pytest.raises(PackageVersionDoesNotExist) as exc:
        make_client(api).download(PACKAGE, ">=2")
    assert exc.value.version == ">=2"


def test_download_detects_corrupted_content(api, client, owner):
    d = client.content.store([ARCHIVE])
    client.publish(PACKAGE, owner, [Init(owner.public_key_string()), Release("1.0.0", d)])
    api.content[d] = b"something else entirely"

    reader = make_client(api)
    with pytest.raises(ContentDigestMismatch):
        reader.download(PACKAGE)
    assert not reader.content.has(d)


def test_download_missing_registry_content(api, client, owner):
    d = client.content.store([ARCHIVE])
    client.publish(PACKAGE, owner, [Init(owner.public_key_string()), Release("1.0.0", d)])
    del api.content[d]

    with pytest.raises(ContentNotFound):
        make_client(api).download(PACKAGE)


def test_client_from_config_uses_file_storage(api, owner):
    publish_directly(api, owner, "acme:widgets", [[Release("1.0.0", digest(ARCHIVE))]])

    with tempfile.TemporaryDirectory() as tmpdir:
        client = Client.from_config(api, ClientConfig(storage_dir=tmpdir))
        client.upsert([PACKAGE])

        reopened = Client.from_config(api, ClientConfig(storage_dir=tmpdir))
        assert reopened.tracked_packages() == [PACKAGE]
        assert reopened.registry.load_checkpoint().length == 3
