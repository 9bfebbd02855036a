"""
RegistryApi abstract interface.

Defines the contract between the client core and whatever transport talks
to the registry. Implementations raise the ApiError family from
pkglog.core.errors:
- LogNotFoundError for unknown logs
- MissingContentError when release content must be uploaded first
- RecordRejectedError when the registry refuses a record outright
- TransientApiError for failures worth retrying
"""

from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Sequence

from ..checkpoint.model import SignedCheckpoint
from ..core.digest import Digest
from ..core.ids import LogId, RecordId
from ..log.records import LogLeaf, RecordEnvelope
from ..verify.proof import ConsistencyProof, InclusionProof
from .models import FetchLogsRequest, FetchLogsResponse, RecordStatus


class RegistryApi(ABC):
    """
    Abstract registry communication capability.

    Every call may block on the network; none of them verifies anything.
    Verification is the client's job.
    """

    @abstractmethod
    def latest_checkpoint(self) -> SignedCheckpoint:
        """Return the registry's most recent signed checkpoint."""
        ...

    @abstractmethod
    def fetch_logs(self, request: FetchLogsRequest) -> FetchLogsResponse:
        """
        Fetch records newer than the requested heads.

        Raises:
            LogNotFoundError: If a requested package log does not exist
        """
        ...

    @abstractmethod
    def prove_inclusion(
        self, checkpoint: SignedCheckpoint, leaves: Sequence[LogLeaf]
    ) -> InclusionProof:
        """Return an inclusion proof for leaves (in tree order) at checkpoint."""
        ...

    @abstractmethod
    def prove_consistency(self, old_length: int, new_length: int) -> ConsistencyProof:
        """Return a consistency proof between two tree lengths."""
        ...

    @abstractmethod
    def submit_record(self, log_id: LogId, envelope: RecordEnvelope) -> RecordId:
        """
        Submit a signed record for inclusion.

        Returns:
            Registry-assigned record id

        Raises:
            MissingContentError: If release content has not been uploaded
            RecordRejectedError: If the registry refuses the record
        """
        ...

    @abstractmethod
    def record_status(self, log_id: LogId, record_id: RecordId) -> RecordStatus:
        """Return Pending, Rejected(reason) or Included(checkpoint, proof)."""
        ...

    @abstractmethod
    def upload_content(self, digest: Digest, chunks: Iterable[bytes]) -> None:
        """Upload content bytes for digest."""
        ...

    @abstractmethod
    def download_content(self, digest: Digest) -> Iterator[bytes]:
        """
        Stream content bytes for digest.

        Raises:
            ContentNotFoundApiError: If the registry has no such content
        """
        ...
