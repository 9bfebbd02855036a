"""
S3-backed content storage.

One object per digest: {prefix}/{algorithm}/{hex}. Objects are written with
If-None-Match so a concurrent writer of the same content never overwrites
an existing object (identical bytes either way).
"""

import os
from typing import Iterable, Iterator, Optional

try:
    import boto3
    from botocore.exceptions import BotoCoreError, ClientError
except ImportError:
    boto3 = None  # type: ignore
    BotoCoreError = Exception  # type: ignore
    ClientError = Exception  # type: ignore

from ..core.digest import Digest, digest
from ..core.errors import StorageError
from .store import ContentStorage

_NOT_FOUND = ("404", "NoSuchKey", "NotFound")
_PRECONDITION = ("PreconditionFailed", "412")


def _error_code(e: Exception) -> str:
    return getattr(e, "response", {}).get("Error", {}).get("Code", "")


class S3ContentStorage(ContentStorage):
    """
    Content-addressed objects in an S3 bucket.

    Guarantees:
    - Bytes are hashed before upload; a mismatch with expected_digest
      never reaches the bucket
    - Existing objects are never overwritten
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "content",
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
    ) -> None:
        """
        Initialize S3 content storage.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix for content objects (default: "content")
            endpoint_url: S3 endpoint URL (for MinIO, localstack, etc.)
            region: AWS region (default: us-east-1)

        Raises:
            StorageError: If boto3 is not installed or the bucket is not accessible
        """
        if boto3 is None:
            raise StorageError("boto3 not installed (pip install pkglog[s3])")

        self.bucket = bucket
        self.prefix = prefix.rstrip("/")

        try:
            self.s3_client = boto3.client("s3", endpoint_url=endpoint_url, region_name=region)
        except Exception as e:
            raise StorageError(f"Failed to create S3 client: {e}") from e

        if os.getenv("PKGLOG_S3_SKIP_BUCKET_CHECK", "").lower() != "true":
            try:
                self.s3_client.head_bucket(Bucket=bucket)
            except ClientError as e:
                raise StorageError(
                    f"Bucket '{bucket}' not accessible (code: {_error_code(e) or 'Unknown'})"
                ) from e

    def _key(self, digest: Digest) -> str:
        return f"{self.prefix}/{digest.algorithm}/{digest.hex}"

    def has(self, digest: Digest) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=self._key(digest))
            return True
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND:
                return False
            raise StorageError(f"Failed to check content {digest}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to check content {digest}: {e}") from e

    def load(self, digest: Digest) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=self._key(digest))
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND:
                return None
            raise StorageError(f"Failed to read content {digest}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read content {digest}: {e}") from e

    def stream(self, digest: Digest) -> Optional[Iterator[bytes]]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=self._key(digest))
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND:
                return None
            raise StorageError(f"Failed to read content {digest}: {e}") from e
        return response["Body"].iter_chunks()

    def store(self, chunks: Iterable[bytes], expected_digest: Optional[Digest] = None) -> Digest:
        data = b"".join(chunks)
        actual = digest(data)
        if expected_digest is not None and actual != expected_digest:
            raise StorageError(
                f"content digest mismatch: expected {expected_digest}, got {actual}"
            )
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=self._key(actual),
                Body=data,
                ContentType="application/octet-stream",
                IfNoneMatch="*",
            )
        except ClientError as e:
            # Same key means same bytes
            if _error_code(e) not in _PRECONDITION:
                raise StorageError(f"Failed to store content {actual}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to store content {actual}: {e}") from e
        return actual

    def content_location(self, digest: Digest) -> Optional[str]:
        if not self.has(digest):
            return None
        return f"s3://{self.bucket}/{self._key(digest)}"
