"""
Client configuration.

Environment Variables:
    PKGLOG_STORAGE_DIR: Root directory for file storage - default: ~/.pkglog
    PKGLOG_POLL_INITIAL_DELAY: First status poll delay in seconds - default: 0.1
    PKGLOG_POLL_MAX_DELAY: Backoff ceiling in seconds - default: 5
    PKGLOG_POLL_TIMEOUT: Give up waiting for inclusion after this many seconds - default: 60
    PKGLOG_MAX_ATTEMPTS: Transient failures tolerated per publish step - default: 5
    PKGLOG_VERIFY_CHECKPOINT_SIGNATURES: Require operator-signed checkpoints (1/0) - default: 1
"""

import os
from dataclasses import dataclass


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ClientConfig:
    storage_dir: str = os.path.join(os.path.expanduser("~"), ".pkglog")
    poll_initial_delay: float = 0.1
    poll_max_delay: float = 5.0
    poll_timeout: float = 60.0
    max_attempts: int = 5
    verify_checkpoint_signatures: bool = True

    def __post_init__(self) -> None:
        if self.poll_initial_delay <= 0:
            raise ValueError("poll_initial_delay must be > 0")
        if self.poll_max_delay < self.poll_initial_delay:
            raise ValueError("poll_max_delay must be >= poll_initial_delay")
        if self.poll_timeout <= 0:
            raise ValueError("poll_timeout must be > 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @staticmethod
    def from_env() -> "ClientConfig":
        defaults = ClientConfig()
        return ClientConfig(
            storage_dir=os.getenv("PKGLOG_STORAGE_DIR", defaults.storage_dir),
            poll_initial_delay=float(
                os.getenv("PKGLOG_POLL_INITIAL_DELAY", str(defaults.poll_initial_delay))
            ),
            poll_max_delay=float(os.getenv("PKGLOG_POLL_MAX_DELAY", str(defaults.poll_max_delay))),
            poll_timeout=float(os.getenv("PKGLOG_POLL_TIMEOUT", str(defaults.poll_timeout))),
            max_attempts=int(os.getenv("PKGLOG_MAX_ATTEMPTS", str(defaults.max_attempts))),
            verify_checkpoint_signatures=_env_bool(
                "PKGLOG_VERIFY_CHECKPOINT_SIGNATURES", defaults.verify_checkpoint_signatures
            ),
        )
