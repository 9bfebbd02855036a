"""
Ed25519 signing capability for records and checkpoints.

The client never generates or stores keys on its own behalf; callers hand in
a SigningKey. Key text form: "ed25519:<base64 raw public key>". Key id: the
digest of that text.
"""

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .canonical import canonical_json_bytes
from .digest import digest

KEY_ALGORITHM = "ed25519"


def _public_key_string(public_key: Ed25519PublicKey) -> str:
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return f"{KEY_ALGORITHM}:{base64.b64encode(raw).decode('ascii')}"


def key_id_for(public_key: str) -> str:
    """Key id for a public key string ("sha256:<hex>")."""
    return str(digest(public_key.encode("utf-8")))


class SigningKey:
    """
    Ed25519 signing key wrapper.

    Provides:
    - Key generation (tests, tooling)
    - Key loading/saving as PEM
    - Signing of canonicalized payloads
    - Public key and key id derivation
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self.private_key = private_key
        self.public_key = private_key.public_key()

    @classmethod
    def generate(cls) -> "SigningKey":
        """Generate new Ed25519 keypair."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def load_from_file(cls, path: str) -> "SigningKey":
        """
        Load private key from PEM file.

        Raises:
            FileNotFoundError: If key file doesn't exist
            ValueError: If key format is invalid
        """
        with open(path, "rb") as f:
            private_key = serialization.load_pem_private_key(f.read(), password=None)

        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError("Key file is not Ed25519 private key")

        return cls(private_key)

    def save_to_file(self, path: str) -> None:
        """Save private key to PEM file."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        private_pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        with open(path, "wb") as f:
            f.write(private_pem)

    def sign(self, payload: dict) -> bytes:
        """Sign canonical bytes of payload."""
        return self.private_key.sign(canonical_json_bytes(payload))

    def sign_base64(self, payload: dict) -> str:
        """Sign payload and return base64-encoded signature."""
        return base64.b64encode(self.sign(payload)).decode("ascii")

    def public_key_string(self) -> str:
        return _public_key_string(self.public_key)

    def key_id(self) -> str:
        return key_id_for(self.public_key_string())


class VerifyingKey:
    """
    Ed25519 verifying key (public key only).

    Used for record and checkpoint signature verification.
    """

    def __init__(self, public_key: Ed25519PublicKey):
        self.public_key = public_key

    @classmethod
    def from_string(cls, text: str) -> "VerifyingKey":
        """
        Parse "ed25519:<base64>" public key text.

        Raises:
            ValueError: If the algorithm is not ed25519 or the key is malformed
        """
        algorithm, sep, encoded = text.partition(":")
        if not sep or algorithm != KEY_ALGORITHM:
            raise ValueError(f"unsupported public key: {text!r}")
        try:
            raw = base64.b64decode(encoded, validate=True)
            return cls(Ed25519PublicKey.from_public_bytes(raw))
        except ValueError as ex:
            raise ValueError(f"malformed public key: {text!r}") from ex

    @classmethod
    def from_signing_key(cls, signing_key: SigningKey) -> "VerifyingKey":
        return cls(signing_key.public_key)

    def verify(self, payload: dict, signature: bytes) -> bool:
        """Return True if signature is valid for the canonical payload bytes."""
        try:
            self.public_key.verify(signature, canonical_json_bytes(payload))
            return True
        except InvalidSignature:
            return False

    def verify_base64(self, payload: dict, signature_b64: Optional[str]) -> bool:
        """Verify base64-encoded signature on payload."""
        if not signature_b64:
            return False
        try:
            signature_bytes = base64.b64decode(signature_b64, validate=True)
        except ValueError:
            return False
        return self.verify(payload, signature_bytes)

    def public_key_string(self) -> str:
        return _public_key_string(self.public_key)

    def key_id(self) -> str:
        return key_id_for(self.public_key_string())
