"""Runtime configuration for the biometric auth core, read from BIOAUTH_* env vars."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from crypto_utils import DEFAULT_KDF_ITERATIONS, DEFAULT_KDF_SALT

logger = logging.getLogger(__name__)

# Development fallback only; deployments provision BIOAUTH_ENCRYPTION_SECRET.
DEV_ENCRYPTION_SECRET = "biometric_auth_encryption"
MIN_SECRET_LENGTH = 32


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw_value = env.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw_value!r}") from exc


@dataclass
class Settings:
    origin: str = "https://localhost"
    rp_name: Optional[str] = None
    encryption_secret: str = DEV_ENCRYPTION_SECRET
    kdf_salt: bytes = DEFAULT_KDF_SALT
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    session_duration: int = 3600  # seconds
    storage_dir: str = "."
    log_level: str = "WARNING"

    @property
    def session_duration_ms(self) -> int:
        return self.session_duration * 1000

    @property
    def store_path(self) -> str:
        return os.path.join(self.storage_dir, "biometric_auth_store.json")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment; unset variables keep their defaults."""
        env = os.environ if env is None else env
        defaults = cls()
        salt = env.get("BIOAUTH_KDF_SALT")
        return cls(
            origin=env.get("BIOAUTH_ORIGIN", defaults.origin),
            rp_name=env.get("BIOAUTH_RP_NAME") or None,
            encryption_secret=env.get("BIOAUTH_ENCRYPTION_SECRET", defaults.encryption_secret),
            kdf_salt=salt.encode("utf-8") if salt else defaults.kdf_salt,
            kdf_iterations=_env_int(env, "BIOAUTH_KDF_ITERATIONS", defaults.kdf_iterations),
            session_duration=_env_int(env, "BIOAUTH_SESSION_DURATION", defaults.session_duration),
            storage_dir=env.get("BIOAUTH_STORAGE_DIR", defaults.storage_dir),
            log_level=env.get("BIOAUTH_LOG_LEVEL", defaults.log_level).upper(),
        )

    def validate(self) -> "Settings":
        if self.session_duration <= 0:
            raise ValueError("Session duration must be positive")
        if self.kdf_iterations <= 0:
            raise ValueError("KDF iterations must be positive")
        if self.encryption_secret == DEV_ENCRYPTION_SECRET:
            logger.warning(
                "Using the built-in development encryption secret; "
                "set BIOAUTH_ENCRYPTION_SECRET before storing real sessions"
            )
        elif len(self.encryption_secret) < MIN_SECRET_LENGTH:
            logger.warning(
                "Encryption secret should be at least %d characters for security",
                MIN_SECRET_LENGTH,
            )
        return self
