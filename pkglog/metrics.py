"""
Prometheus metrics for pkglog clients.

Metrics are registered lazily by init_metrics(). Until then every helper
is a no-op, so library users who never call it pay nothing.

Usage:
    from pkglog.metrics import init_metrics, track_publish_transition

    init_metrics()
    track_publish_transition("submitted")
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

PUBLISH_TRANSITIONS: Optional[Counter] = None
PUBLISH_RETRIES: Optional[Counter] = None
PROOF_FAILURES: Optional[Counter] = None
STATUS_POLLS: Optional[Counter] = None
RECORDS_FOLDED: Optional[Counter] = None
CHECKPOINT_REJECTIONS: Optional[Counter] = None
UPDATE_DURATION: Optional[Histogram] = None

_metrics_initialized = False
_metrics_lock = threading.Lock()


def init_metrics(registry: Optional[CollectorRegistry] = None) -> None:
    """
    Register pkglog metrics (call once at startup).

    Args:
        registry: Prometheus registry (default: the global REGISTRY)
    """
    global PUBLISH_TRANSITIONS, PUBLISH_RETRIES, PROOF_FAILURES, STATUS_POLLS, RECORDS_FOLDED
    global CHECKPOINT_REJECTIONS, UPDATE_DURATION, _metrics_initialized

    with _metrics_lock:
        if _metrics_initialized:
            return

        kwargs = {"registry": registry} if registry is not None else {}

        PUBLISH_TRANSITIONS = Counter(
            "pkglog_publish_transitions_total",
            "Publish state machine transitions",
            labelnames=["state"],
            **kwargs,
        )
        PUBLISH_RETRIES = Counter(
            "pkglog_publish_retries_total",
            "Transient registry failures retried during publish",
            labelnames=["state"],
            **kwargs,
        )
        PROOF_FAILURES = Counter(
            "pkglog_proof_failures_total",
            "Inclusion or consistency proofs that failed verification",
            **kwargs,
        )
        STATUS_POLLS = Counter(
            "pkglog_status_polls_total",
            "Record status polls while awaiting inclusion",
            **kwargs,
        )
        RECORDS_FOLDED = Counter(
            "pkglog_records_folded_total",
            "Verified records folded into local log state",
            labelnames=["kind"],
            **kwargs,
        )
        CHECKPOINT_REJECTIONS = Counter(
            "pkglog_checkpoint_rejections_total",
            "Registry checkpoints rejected by the tracker",
            labelnames=["reason"],
            **kwargs,
        )
        UPDATE_DURATION = Histogram(
            "pkglog_update_duration_seconds",
            "Duration of client update (fetch and verify) operations in seconds",
            buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0),
            **kwargs,
        )

        _metrics_initialized = True
        logger.info("Prometheus metrics initialized")


def reset_metrics() -> None:
    """Forget registered metrics (tests register into throwaway registries)."""
    global PUBLISH_TRANSITIONS, PUBLISH_RETRIES, PROOF_FAILURES, STATUS_POLLS, RECORDS_FOLDED
    global CHECKPOINT_REJECTIONS, UPDATE_DURATION, _metrics_initialized

    with _metrics_lock:
        PUBLISH_TRANSITIONS = None
        PUBLISH_RETRIES = None
        PROOF_FAILURES = None
        STATUS_POLLS = None
        RECORDS_FOLDED = None
        CHECKPOINT_REJECTIONS = None
        UPDATE_DURATION = None
        _metrics_initialized = False


def track_publish_transition(state: str) -> None:
    if PUBLISH_TRANSITIONS is not None:
        PUBLISH_TRANSITIONS.labels(state=state).inc()


def track_publish_retry(state: str) -> None:
    if PUBLISH_RETRIES is not None:
        PUBLISH_RETRIES.labels(state=state).inc()


def track_proof_failure() -> None:
    if PROOF_FAILURES is not None:
        PROOF_FAILURES.inc()


def track_status_poll() -> None:
    if STATUS_POLLS is not None:
        STATUS_POLLS.inc()


def track_records_folded(kind: str, count: int = 1) -> None:
    if RECORDS_FOLDED is not None and count:
        RECORDS_FOLDED.labels(kind=kind).inc(count)


def track_checkpoint_rejection(reason: str) -> None:
    """
    Args:
        reason: Error class name (Rollback, Fork, MissingProof, ...)
    """
    if CHECKPOINT_REJECTIONS is not None:
        CHECKPOINT_REJECTIONS.labels(reason=reason).inc()


@contextmanager
def track_update_duration() -> Generator[None, None, None]:
    if UPDATE_DURATION is None:
        yield
        return

    with UPDATE_DURATION.time():
        yield
