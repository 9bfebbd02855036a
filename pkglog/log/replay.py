"""
Replay: rebuild a log state from its records.

Replay applies fold() to each record in chain order. Same records always
produce the same state.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from ..core.errors import EmptyLog
from .state import LogState, fold
from .records import RecordEnvelope


@dataclass(frozen=True)
class ReplayResult:
    """
    Result of replay operation.

    Fields:
        state: State after applying records
        applied: Number of records applied
    """
    state: LogState
    applied: int


def replay(
    initial: LogState,
    envelopes: Iterable[RecordEnvelope],
    to_record: Optional[int] = None,
) -> ReplayResult:
    """
    Fold records onto an empty state.

    Args:
        initial: Empty state naming the log (LogState.for_package / for_operator)
        envelopes: Records in chain order
        to_record: Stop after this many records (None = all)

    Returns:
        ReplayResult with final state and count

    Raises:
        EmptyLog: If there is nothing to validate
        ValidationError: If any record fails to fold
    """
    if not initial.is_empty:
        raise ValueError("replay must start from an empty log state")

    st = initial
    count = 0
    for envelope in envelopes:
        if to_record is not None and count >= to_record:
            break
        st = fold(st, envelope)
        count += 1

    if count == 0:
        raise EmptyLog()

    return ReplayResult(state=st, applied=count)
