"""
Log synchronization against a trusted checkpoint.

Fetches records newer than the local heads up to a checkpoint's length,
proves every one of them is in that checkpoint's tree, and folds the
operator log. Client updates and publish commits share this path so that
a checkpoint is never trusted before the operator records it covers.
"""

from typing import TYPE_CHECKING, Dict, List, Tuple

from . import metrics
from .api.client import RegistryApi
from .api.models import FetchLogsRequest, FetchLogsResponse
from .checkpoint.model import SignedCheckpoint
from .core.errors import (
    BundleFailure,
    LogNotFoundError,
    OperatorValidationFailed,
    PackageDoesNotExist,
    ProofError,
    ValidationError,
)
from .core.ids import LogId
from .log.records import LogLeaf, PublishedRecord
from .log.state import LogState
from .verify.proof import verify_inclusion

if TYPE_CHECKING:
    from .storage.store import RegistryStorage


def fetch_records(
    api: RegistryApi,
    checkpoint: SignedCheckpoint,
    operator: LogState,
    packages: Dict[LogId, LogState],
) -> FetchLogsResponse:
    """
    Fetch every record after the local heads up to checkpoint.length.

    Pages are followed until the registry stops truncating; the result is
    a single response holding all of them, oldest first per log.

    Raises:
        PackageDoesNotExist: The registry has no log for a requested package
    """
    operator_records: List[PublishedRecord] = []
    package_records: Dict[LogId, List[PublishedRecord]] = {lid: [] for lid in packages}
    operator_head = operator.head
    heads = {lid: state.head for lid, state in packages.items()}

    while True:
        request = FetchLogsRequest(
            log_length=checkpoint.length,
            operator=operator_head,
            packages=dict(heads),
        )
        try:
            response = api.fetch_logs(request)
        except LogNotFoundError as ex:
            state = packages.get(ex.log_id)
            if state is not None:
                raise PackageDoesNotExist(state.package_id) from ex
            raise

        operator_records.extend(response.operator)
        if response.operator:
            operator_head = response.operator[-1].envelope.record_id
        for lid, records in response.packages.items():
            if lid not in package_records or not records:
                continue
            package_records[lid].extend(records)
            heads[lid] = records[-1].envelope.record_id

        if not response.more:
            return FetchLogsResponse(
                operator=tuple(operator_records),
                packages={lid: tuple(r) for lid, r in package_records.items()},
            )


def verify_records_included(
    api: RegistryApi,
    checkpoint: SignedCheckpoint,
    fetched: FetchLogsResponse,
) -> None:
    """
    Prove every fetched record is a leaf of checkpoint's tree, at the
    registry index it claims.

    Raises:
        BundleFailure: A record's claimed index disagrees with the proof
        IncorrectProof: The batch proof does not reach checkpoint.root
    """
    published = fetched.all_records()
    if not published:
        return

    published.sort(key=lambda item: item[1].registry_index)
    leaves = [LogLeaf(lid, r.envelope.record_id) for lid, r in published]
    try:
        proof = api.prove_inclusion(checkpoint, leaves)
        for (_, record), entry in zip(published, proof.entries):
            if record.registry_index != entry.index:
                raise BundleFailure(
                    f"record {record.envelope.record_id} claims index "
                    f"{record.registry_index}, proof places it at {entry.index}"
                )
        verify_inclusion(leaves, checkpoint, proof)
    except ProofError:
        metrics.track_proof_failure()
        raise


def fold_operator(
    registry: "RegistryStorage",
    operator: LogState,
    records: Tuple[PublishedRecord, ...],
) -> LogState:
    """
    Fold verified operator records onto operator.

    The folded state is returned, not stored. On a validation failure the
    rejected state is stored before raising.

    Raises:
        OperatorValidationFailed: A record does not validate
    """
    for record in records:
        try:
            operator = operator.fold(record.envelope)
        except ValidationError as ex:
            registry.store_operator(operator.rejected(str(ex)))
            raise OperatorValidationFailed(ex, record.envelope.record_id) from ex
    metrics.track_records_folded("operator", len(records))
    return operator
