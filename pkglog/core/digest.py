"""
Content addressing.

A Digest is an algorithm-tagged hash value. It identifies package content,
log records and Merkle tree nodes. Text form: "sha256:<hex>".
"""

import hashlib
from dataclasses import dataclass
from typing import Iterable

SHA256 = "sha256"

_DIGEST_SIZES = {SHA256: 32}


@dataclass(frozen=True)
class Digest:
    """
    Immutable algorithm-tagged hash value.

    Fields:
        algorithm: Hash algorithm tag (currently only "sha256")
        value: Raw digest bytes
    """
    algorithm: str
    value: bytes

    def __post_init__(self) -> None:
        size = _DIGEST_SIZES.get(self.algorithm)
        if size is None:
            raise ValueError(f"unsupported hash algorithm: {self.algorithm}")
        if len(self.value) != size:
            raise ValueError(
                f"invalid {self.algorithm} digest length: expected {size}, got {len(self.value)}"
            )

    @property
    def hex(self) -> str:
        return self.value.hex()

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.value.hex()}"

    @classmethod
    def parse(cls, text: str) -> "Digest":
        """
        Parse digest from its "algorithm:hex" text form.

        Raises:
            ValueError: If the tag is unknown or the hex is malformed
        """
        algorithm, sep, hex_value = text.partition(":")
        if not sep:
            raise ValueError(f"digest is missing algorithm tag: {text!r}")
        try:
            value = bytes.fromhex(hex_value)
        except ValueError as ex:
            raise ValueError(f"invalid digest hex: {text!r}") from ex
        return cls(algorithm=algorithm, value=value)


def digest(data: bytes, algorithm: str = SHA256) -> Digest:
    """Hash bytes into a Digest."""
    if algorithm != SHA256:
        raise ValueError(f"unsupported hash algorithm: {algorithm}")
    return Digest(algorithm, hashlib.sha256(data).digest())


def digest_chunks(chunks: Iterable[bytes], algorithm: str = SHA256) -> Digest:
    """Hash a stream of byte chunks without joining them in memory."""
    if algorithm != SHA256:
        raise ValueError(f"unsupported hash algorithm: {algorithm}")
    h = hashlib.sha256()
    for chunk in chunks:
        h.update(chunk)
    return Digest(algorithm, h.digest())
