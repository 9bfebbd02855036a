"""
Clock sources.

Record timestamps and checkpoint receipt times come from a Clock so that
tests can run the publish workflow without depending on wall time.
"""

import time
from dataclasses import dataclass


class SystemClock:
    """Wall-clock time source (integer seconds for records)."""

    def now(self) -> int:
        return int(time.time())

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


@dataclass
class DeterministicClock:
    """
    Manually driven time source.

    In tests: advance() moves time forward; sleep() can be handed to the
    publish machine so that backoff delays advance the clock instead of
    blocking.
    """
    current: float = 0.0

    def now(self) -> int:
        return int(self.current)

    def monotonic(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)
