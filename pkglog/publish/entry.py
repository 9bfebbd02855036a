"""
Publish entry: the persisted, resumable state of one in-flight publish.

State flow:
    IDLE -> STAGED -> CONTENT_UPLOADING -> SUBMITTED -> AWAITING_INCLUSION -> COMMITTED
    any in-flight state -> REJECTED | FAILED
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..core.digest import Digest
from ..core.ids import LogId, PackageId, RecordId
from ..log.records import Entry, Init, RecordEnvelope, Release, entry_from_dict


class PublishState(str, Enum):
    IDLE = "idle"
    STAGED = "staged"
    CONTENT_UPLOADING = "content_uploading"
    SUBMITTED = "submitted"
    AWAITING_INCLUSION = "awaiting_inclusion"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def in_flight(self) -> bool:
        return self in IN_FLIGHT

    @property
    def terminal(self) -> bool:
        return self in TERMINAL


IN_FLIGHT = frozenset({
    PublishState.STAGED,
    PublishState.CONTENT_UPLOADING,
    PublishState.SUBMITTED,
    PublishState.AWAITING_INCLUSION,
})

TERMINAL = frozenset({
    PublishState.COMMITTED,
    PublishState.REJECTED,
    PublishState.FAILED,
})


@dataclass(frozen=True)
class PublishEntry:
    """
    Staged record for one package log.

    Fields:
        package_id: Package being published
        entries: Operations to publish
        content: content digest -> local location (None until stored locally)
        state: Current publish state
        envelope: Signed record, fixed once built so retries resubmit it as-is
        record_id: Registry-assigned record id after submission
        missing: Digests the registry reported as missing
        uploaded: Digests uploaded so far
        attempts: Transient failures in the current state
        polls: Status polls since submission
        error: Last error message (FAILED)
        reason: Registry rejection reason (REJECTED)
    """
    package_id: PackageId
    entries: Tuple[Entry, ...]
    content: Dict[Digest, Optional[str]] = field(default_factory=dict)
    state: PublishState = PublishState.STAGED
    envelope: Optional[RecordEnvelope] = None
    record_id: Optional[RecordId] = None
    missing: Tuple[Digest, ...] = ()
    uploaded: Tuple[Digest, ...] = ()
    attempts: int = 0
    polls: int = 0
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def log_id(self) -> LogId:
        return LogId.package_log(self.package_id)

    @property
    def is_init(self) -> bool:
        return any(isinstance(e, Init) for e in self.entries)

    def content_digests(self) -> Tuple[Digest, ...]:
        seen = []
        for e in self.entries:
            if isinstance(e, Release) and e.content not in seen:
                seen.append(e.content)
        return tuple(seen)

    def transition(self, state: PublishState, **changes: Any) -> "PublishEntry":
        """New entry in state; attempts reset on every state change."""
        if state != self.state:
            changes.setdefault("attempts", 0)
        return replace(self, state=state, **changes)

    def resumed(self) -> "PublishEntry":
        """
        Re-enter the workflow where a failed entry left off.

        A submitted record goes back to polling, a record waiting on content
        goes back to uploading (already uploaded digests are skipped), and
        anything else is resubmitted from the staged envelope.
        """
        if self.state != PublishState.FAILED:
            return self
        if self.record_id is not None:
            state = PublishState.AWAITING_INCLUSION
        elif self.envelope is not None and self.missing:
            state = PublishState.CONTENT_UPLOADING
        else:
            state = PublishState.STAGED
        return self.transition(state, error=None, polls=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": str(self.package_id),
            "entries": [e.to_dict() for e in self.entries],
            "content": {str(k): v for k, v in self.content.items()},
            "state": self.state.value,
            "envelope": self.envelope.to_dict() if self.envelope else None,
            "record_id": str(self.record_id) if self.record_id else None,
            "missing": [str(d) for d in self.missing],
            "uploaded": [str(d) for d in self.uploaded],
            "attempts": self.attempts,
            "polls": self.polls,
            "error": self.error,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishEntry":
        envelope = data.get("envelope")
        record_id = data.get("record_id")
        return cls(
            package_id=PackageId.parse(data["package_id"]),
            entries=tuple(entry_from_dict(e) for e in data.get("entries", [])),
            content={Digest.parse(k): v for k, v in data.get("content", {}).items()},
            state=PublishState(data.get("state", PublishState.STAGED.value)),
            envelope=RecordEnvelope.from_dict(envelope) if envelope else None,
            record_id=RecordId.parse(record_id) if record_id else None,
            missing=tuple(Digest.parse(d) for d in data.get("missing", [])),
            uploaded=tuple(Digest.parse(d) for d in data.get("uploaded", [])),
            attempts=data.get("attempts", 0),
            polls=data.get("polls", 0),
            error=data.get("error"),
            reason=data.get("reason"),
        )
