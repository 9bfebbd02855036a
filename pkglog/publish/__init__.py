"""
Publish workflow: staged entries and the state machine that drives them.
"""

from .backoff import Backoff
from .entry import PublishEntry, PublishState, IN_FLIGHT, TERMINAL
from .machine import PublishMachine

__all__ = [
    "Backoff",
    "PublishEntry",
    "PublishState",
    "IN_FLIGHT",
    "TERMINAL",
    "PublishMachine",
]
