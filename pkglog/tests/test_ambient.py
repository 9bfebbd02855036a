"""
Tests for configuration, structured logging and metrics.
"""

import io
import json
import logging

import pytest
from prometheus_client import CollectorRegistry

from pkglog import metrics
from pkglog.config import ClientConfig
from pkglog.core.clock import DeterministicClock
from pkglog.core.ids import PackageId
from pkglog.core.signer import SigningKey
from pkglog.logging_config import get_logger, setup_logging
from pkglog.log import Init
from pkglog.publish import Backoff, PublishMachine
from pkglog.storage import MemoryContentStorage, MemoryRegistryStorage
from pkglog.tests.fakes import START_TIME, FakeRegistry


@pytest.fixture
def pkglog_logger():
    pkg_logger = logging.getLogger("pkglog")
    saved = (pkg_logger.handlers[:], pkg_logger.level, pkg_logger.propagate)
    yield pkg_logger
    pkg_logger.handlers[:] = saved[0]
    pkg_logger.setLevel(saved[1])
    pkg_logger.propagate = saved[2]


def test_config_defaults():
    config = ClientConfig()

    assert config.poll_timeout == 60.0
    assert config.max_attempts == 5
    assert config.verify_checkpoint_signatures


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("PKGLOG_STORAGE_DIR", "/var/lib/pkglog")
    monkeypatch.setenv("PKGLOG_POLL_INITIAL_DELAY", "0.5")
    monkeypatch.setenv("PKGLOG_POLL_MAX_DELAY", "2")
    monkeypatch.setenv("PKGLOG_POLL_TIMEOUT", "30")
    monkeypatch.setenv("PKGLOG_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("PKGLOG_VERIFY_CHECKPOINT_SIGNATURES", "no")

    config = ClientConfig.from_env()

    assert config.storage_dir == "/var/lib/pkglog"
    assert config.poll_initial_delay == 0.5
    assert config.poll_max_delay == 2.0
    assert config.poll_timeout == 30.0
    assert config.max_attempts == 7
    assert not config.verify_checkpoint_signatures


@pytest.mark.parametrize(
    "kwargs",
    [
        {"poll_initial_delay": 0},
        {"poll_initial_delay": 2.0, "poll_max_delay": 1.0},
        {"poll_timeout": -1},
        {"max_attempts": 0},
    ],
)
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        ClientConfig(**kwargs)


def test_json_logging_carries_trace_id(pkglog_logger):
    stream = io.StringIO()
    setup_logging(level="DEBUG", fmt="json", stream=stream)

    get_logger("pkglog.publish", trace_id="acme:widgets").info("staged %d operation(s)", 2)
    logging.getLogger("pkglog.client").warning("no adapter")

    first, second = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert first["message"] == "staged 2 operation(s)"
    assert first["trace_id"] == "acme:widgets"
    assert first["logger"] == "pkglog.publish"
    assert first["level"] == "INFO"
    assert "timestamp" in first
    assert second["trace_id"] == "N/A"


def test_text_logging_and_level(pkglog_logger):
    stream = io.StringIO()
    setup_logging(level="WARNING", fmt="text", stream=stream)

    get_logger("pkglog.client").info("hidden")
    get_logger("pkglog.client", trace_id="acme:widgets").error("shown")

    output = stream.getvalue()
    assert "hidden" not in output
    assert "shown [trace_id=acme:widgets]" in output
    assert not pkglog_logger.propagate


def test_metrics_are_noops_until_initialized():
    metrics.reset_metrics()

    metrics.track_publish_transition("staged")
    metrics.track_proof_failure()
    with metrics.track_update_duration():
        pass


def test_publish_metrics():
    registry = CollectorRegistry()
    metrics.reset_metrics()
    metrics.init_metrics(registry)
    try:
        clock = DeterministicClock(float(START_TIME))
        api = FakeRegistry(clock)
        api.pending_polls = 1
        machine = PublishMachine(
            api,
            MemoryContentStorage(),
            MemoryRegistryStorage(),
            clock=clock,
            backoff=Backoff(initial=1.0, maximum=1.0, jitter=0),
        )
        key = SigningKey.generate()
        package = PackageId.parse("acme:widgets")

        entry = machine.stage(package, [Init(key.public_key_string())])
        machine.run(entry, key)

        def sample(name, **labels):
            return registry.get_sample_value(name, labels)

        assert sample("pkglog_publish_transitions_total", state="staged") == 1
        assert sample("pkglog_publish_transitions_total", state="committed") == 1
        assert sample("pkglog_status_polls_total") == 2
        assert sample("pkglog_records_folded_total", kind="package") == 1
    finally:
        metrics.reset_metrics()
