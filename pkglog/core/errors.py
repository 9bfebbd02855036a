"""
Exception types for the registry client.

One closed family per subsystem:
- ProofError: Merkle inclusion/consistency verification failures
- CheckpointError: rollback/fork/signature problems with registry checkpoints
- ValidationError: a record could not be folded into a log
- ApiError: registry communication failures (some retryable)
- ClientError: caller-facing publish/download workflow errors
- StorageError: local storage failures
"""

from typing import Iterable, List, Optional


class PkglogError(Exception):
    """Base class for all client errors."""
    pass


# ----------------------------------------------------------------------
# Proofs
# ----------------------------------------------------------------------


class ProofError(PkglogError):
    """Raised when a Merkle proof does not verify."""
    pass


class IncorrectProof(ProofError):
    """Recomputed root does not match the checkpoint root."""

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.index = index


class BundleFailure(ProofError):
    """Proof shape is structurally invalid for the claimed tree length."""
    pass


# ----------------------------------------------------------------------
# Checkpoints
# ----------------------------------------------------------------------


class CheckpointError(PkglogError):
    """Raised when a registry checkpoint breaks trust in the log."""
    pass


class Rollback(CheckpointError):
    def __init__(self, known_length: int, candidate_length: int) -> None:
        super().__init__(
            f"checkpoint rollback: known length {known_length}, "
            f"candidate length {candidate_length}"
        )
        self.known_length = known_length
        self.candidate_length = candidate_length


class Fork(CheckpointError):
    def __init__(self, length: int, known_root: str, candidate_root: str) -> None:
        super().__init__(
            f"checkpoint fork at length {length}: known root {known_root}, "
            f"candidate root {candidate_root}"
        )
        self.length = length
        self.known_root = known_root
        self.candidate_root = candidate_root


class MissingProof(CheckpointError):
    def __init__(self, known_length: int, candidate_length: int) -> None:
        super().__init__(
            f"consistency proof required from length {known_length} "
            f"to length {candidate_length}"
        )
        self.known_length = known_length
        self.candidate_length = candidate_length


class InvalidCheckpointSignature(CheckpointError):
    """Checkpoint is not signed by a key holding the commit permission."""
    pass


# ----------------------------------------------------------------------
# Log validation
# ----------------------------------------------------------------------


class ValidationError(PkglogError):
    """Raised when a record cannot be folded into a log state."""
    pass


class ForkedChain(ValidationError):
    def __init__(self, expected: Optional[str], found: Optional[str]) -> None:
        super().__init__(
            f"record does not extend the log head: expected previous "
            f"`{expected or 'none'}`, found `{found or 'none'}`"
        )
        self.expected = expected
        self.found = found


class Unauthorized(ValidationError):
    def __init__(self, key_id: str, permission: str) -> None:
        super().__init__(f"key `{key_id}` does not have permission `{permission}`")
        self.key_id = key_id
        self.permission = permission


class EmptyLog(ValidationError):
    def __init__(self) -> None:
        super().__init__("log is empty and cannot be validated")


class InvalidSignature(ValidationError):
    def __init__(self, key_id: str) -> None:
        super().__init__(f"record signature by key `{key_id}` is invalid")
        self.key_id = key_id


class UnknownKey(ValidationError):
    def __init__(self, key_id: str) -> None:
        super().__init__(f"record signed by unknown key `{key_id}`")
        self.key_id = key_id


class FirstEntryIsNotInit(ValidationError):
    def __init__(self) -> None:
        super().__init__("the first entry of a log must be an init entry")


class InitialEntryAfterBeginning(ValidationError):
    def __init__(self) -> None:
        super().__init__("init entry found after the beginning of the log")


class TimestampLowerThanPrevious(ValidationError):
    def __init__(self, previous: int, found: int) -> None:
        super().__init__(
            f"record timestamp {found} is lower than previous timestamp {previous}"
        )
        self.previous = previous
        self.found = found


class ProtocolVersionNotAllowed(ValidationError):
    def __init__(self, version: int) -> None:
        super().__init__(f"protocol version {version} is not allowed")
        self.version = version


class ConflictingRelease(ValidationError):
    def __init__(self, version: str, existing: str, found: str) -> None:
        super().__init__(
            f"version `{version}` already released with content `{existing}`, "
            f"found `{found}`"
        )
        self.version = version
        self.existing = existing
        self.found = found


class YankOfUnreleased(ValidationError):
    def __init__(self, version: str) -> None:
        super().__init__(f"cannot yank unreleased version `{version}`")
        self.version = version


class PermissionNotHeld(ValidationError):
    def __init__(self, key_id: str, permission: str) -> None:
        super().__init__(
            f"cannot revoke `{permission}` from key `{key_id}`: permission not held"
        )
        self.key_id = key_id
        self.permission = permission


# ----------------------------------------------------------------------
# Registry API
# ----------------------------------------------------------------------


class ApiError(PkglogError):
    """Raised by registry communication implementations."""
    pass


class TransientApiError(ApiError):
    """Network or registry-side failure that may succeed on retry."""
    pass


class LogNotFoundError(ApiError):
    def __init__(self, log_id) -> None:
        super().__init__(f"log `{log_id}` was not found")
        self.log_id = log_id


class AlreadyExistsError(ApiError):
    def __init__(self, log_id) -> None:
        super().__init__(f"log `{log_id}` already exists")
        self.log_id = log_id


class MissingContentError(ApiError):
    """Registry requires content to be uploaded before accepting a record."""

    def __init__(self, digests: Iterable) -> None:
        self.digests: List = list(digests)
        super().__init__(
            "registry is missing content: " + ", ".join(str(d) for d in self.digests)
        )


class RecordRejectedError(ApiError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"record rejected: {reason}")
        self.reason = reason


class ContentNotFoundApiError(ApiError):
    def __init__(self, digest) -> None:
        super().__init__(f"content `{digest}` was not found on the registry")
        self.digest = digest


# ----------------------------------------------------------------------
# Client workflow
# ----------------------------------------------------------------------


class ClientError(PkglogError):
    """Caller-facing workflow error."""
    pass


class CannotInitializePackage(ClientError):
    def __init__(self, package_id) -> None:
        super().__init__(f"package `{package_id}` already exists and cannot be initialized")
        self.package_id = package_id


class MustInitializePackage(ClientError):
    def __init__(self, package_id) -> None:
        super().__init__(f"package `{package_id}` must be initialized before publishing")
        self.package_id = package_id


class NothingToPublish(ClientError):
    def __init__(self, package_id) -> None:
        super().__init__(f"package `{package_id}` has no records to publish")
        self.package_id = package_id


class NotPublishing(ClientError):
    def __init__(self, package_id=None) -> None:
        if package_id is None:
            super().__init__("there is no publish operation in progress")
        else:
            super().__init__(
                f"there is no publish operation in progress for package `{package_id}`"
            )
        self.package_id = package_id


class PublishInProgress(ClientError):
    def __init__(self, package_id, state: str) -> None:
        super().__init__(
            f"a publish of package `{package_id}` is already in progress (state: {state})"
        )
        self.package_id = package_id
        self.state = state


class ContentNotFound(ClientError):
    def __init__(self, digest, package_id=None) -> None:
        super().__init__(f"content with digest `{digest}` was not found in client storage")
        self.digest = digest
        self.package_id = package_id


class PackageMissingContent(ClientError):
    def __init__(self, package_id, digests: Iterable = ()) -> None:
        self.digests: List = list(digests)
        super().__init__(
            f"package `{package_id}` is still missing content after all content was uploaded"
        )
        self.package_id = package_id


class PublishRejected(ClientError):
    def __init__(self, package_id, record_id, reason: str) -> None:
        super().__init__(
            f"the publishing of package `{package_id}` was rejected due to: {reason}"
        )
        self.package_id = package_id
        self.record_id = record_id
        self.reason = reason


class PublishFailed(ClientError):
    def __init__(self, package_id, record_id, cause: Exception) -> None:
        super().__init__(f"the publishing of package `{package_id}` failed: {cause}")
        self.package_id = package_id
        self.record_id = record_id
        self.cause = cause


class PublishTimeout(ClientError):
    def __init__(self, package_id, record_id, waited: float) -> None:
        super().__init__(
            f"timed out after {waited:.1f}s waiting for record `{record_id}` "
            f"of package `{package_id}` to be included"
        )
        self.package_id = package_id
        self.record_id = record_id
        self.waited = waited


class PackageDoesNotExist(ClientError):
    def __init__(self, package_id) -> None:
        super().__init__(f"package `{package_id}` does not exist")
        self.package_id = package_id


class PackageVersionDoesNotExist(ClientError):
    def __init__(self, package_id, version: str) -> None:
        super().__init__(f"version `{version}` of package `{package_id}` does not exist")
        self.package_id = package_id
        self.version = version


class PackageLogEmpty(ClientError):
    def __init__(self, package_id) -> None:
        super().__init__(f"package `{package_id}` log is empty and cannot be validated")
        self.package_id = package_id


class PackageValidationFailed(ClientError):
    def __init__(self, package_id, inner: ValidationError, record_id=None) -> None:
        super().__init__(f"package `{package_id}` failed validation: {inner}")
        self.package_id = package_id
        self.inner = inner
        self.record_id = record_id


class OperatorValidationFailed(ClientError):
    def __init__(self, inner: ValidationError, record_id=None) -> None:
        super().__init__(f"operator failed validation: {inner}")
        self.inner = inner
        self.record_id = record_id


class ContentDigestMismatch(ClientError):
    def __init__(self, expected, found) -> None:
        super().__init__(f"downloaded content digest `{found}` does not match `{expected}`")
        self.expected = expected
        self.found = found


# ----------------------------------------------------------------------
# Storage
# ----------------------------------------------------------------------


class StorageError(PkglogError):
    """Raised when local storage operations fail."""
    pass
