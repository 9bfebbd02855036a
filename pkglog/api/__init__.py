"""
Registry communication contract.
"""

from .client import RegistryApi
from .models import (
    FetchLogsRequest,
    FetchLogsResponse,
    Pending,
    Rejected,
    Included,
    RecordStatus,
)

__all__ = [
    "RegistryApi",
    "FetchLogsRequest",
    "FetchLogsResponse",
    "Pending",
    "Rejected",
    "Included",
    "RecordStatus",
]
