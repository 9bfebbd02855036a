"""
Request/response models exchanged with a registry.

These are transport independent: any RegistryApi implementation (HTTP,
RPC, in-process) produces and consumes the same values.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from ..checkpoint.model import SignedCheckpoint
from ..core.ids import LogId, RecordId
from ..log.records import PublishedRecord
from ..verify.proof import InclusionProof


@dataclass(frozen=True)
class FetchLogsRequest:
    """
    Ask for records newer than the given heads.

    Fields:
        log_length: Checkpoint length the response must be consistent with
        operator: Operator head record id (None = from the beginning)
        packages: log id -> head record id (None = from the beginning)
    """
    log_length: int
    operator: Optional[RecordId] = None
    packages: Dict[LogId, Optional[RecordId]] = field(default_factory=dict)


@dataclass(frozen=True)
class FetchLogsResponse:
    """
    Records newer than the requested heads, oldest first per log.

    `more` is True when the registry truncated the response and the client
    should fetch again from the new heads.
    """
    operator: Tuple[PublishedRecord, ...] = ()
    packages: Dict[LogId, Tuple[PublishedRecord, ...]] = field(default_factory=dict)
    more: bool = False

    def all_records(self) -> List[Tuple[LogId, PublishedRecord]]:
        out = [(LogId.operator_log(), r) for r in self.operator]
        for log_id, records in self.packages.items():
            out.extend((log_id, r) for r in records)
        return out


@dataclass(frozen=True)
class Pending:
    """Record accepted for processing but not yet in a checkpoint."""
    pass


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class Included:
    """
    Record is part of the registry tree.

    Fields:
        checkpoint: Checkpoint the proof targets
        proof: Inclusion proof for the single record leaf
    """
    checkpoint: SignedCheckpoint
    proof: InclusionProof


RecordStatus = Union[Pending, Rejected, Included]
