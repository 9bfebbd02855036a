"""
Bounded exponential backoff with jitter.
"""

import random
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class Backoff:
    """
    delay(attempt) = min(initial * 2**attempt, maximum) + jitter

    Jitter is uniform in [0, jitter] and is applied after the cap, so the
    ceiling is maximum + jitter.
    """
    initial: float = 0.1
    maximum: float = 5.0
    jitter: float = 0.2

    def delay(self, attempt: int, rand: Callable[[float, float], float] = random.uniform) -> float:
        base = min(self.initial * (2 ** min(attempt, 32)), self.maximum)
        if self.jitter <= 0:
            return base
        return base + rand(0, self.jitter)
