"""
Package and operator logs.

This module provides:
- Record model: entries, records, signed envelopes, log leaves
- LogState: validated view of one log, built by fold()
- Replay: rebuild a state from stored records
"""

from .records import (
    PROTOCOL_VERSION,
    LogKind,
    Permission,
    Init,
    Grant,
    Revoke,
    Release,
    Yank,
    Entry,
    Record,
    RecordEnvelope,
    PublishedRecord,
    LogLeaf,
)
from .state import LogState, LogStatus, StatusKind, ReleaseInfo, fold
from .replay import ReplayResult, replay

__all__ = [
    "PROTOCOL_VERSION",
    "LogKind",
    "Permission",
    "Init",
    "Grant",
    "Revoke",
    "Release",
    "Yank",
    "Entry",
    "Record",
    "RecordEnvelope",
    "PublishedRecord",
    "LogLeaf",
    "LogState",
    "LogStatus",
    "StatusKind",
    "ReleaseInfo",
    "fold",
    "ReplayResult",
    "replay",
]
