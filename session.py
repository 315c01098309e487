"""
session.py
==========
Encrypted session state and encrypted per-credential payloads.

SessionManager keeps at most one session per store: a random token, an
absolute expiry (epoch milliseconds) and free-form metadata, sealed with the
shared EnvelopeCipher under a fixed key. Reads re-check the expiry every time;
an expired, corrupt or tampered session is deleted and reported as "no
session", never raised.

CredentialBlobManager stores arbitrary JSON payloads per credential id with
the same envelope format. Blobs never expire.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from crypto_utils import EnvelopeCipher, RandomSource
from errors import SessionInvalid
from vault_store import KeyValueStore

logger = logging.getLogger(__name__)

# A Clock returns the current time in epoch milliseconds.
Clock = Callable[[], int]

SESSION_KEY = "biometric_auth_session"
BLOB_PREFIX = "biometric_credential_"
TOKEN_BYTES = 32
DEFAULT_SESSION_DURATION_MS = 3600 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionRecord:
    token: str
    expires_at: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> bytes:
        return json.dumps(
            {"token": self.token, "expiresAt": self.expires_at, "metadata": self.metadata}
        ).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "SessionRecord":
        try:
            data = json.loads(raw.decode("utf-8"))
            return cls(
                token=str(data["token"]),
                expires_at=int(data["expiresAt"]),
                metadata=dict(data.get("metadata") or {}),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise SessionInvalid("Session payload is malformed") from exc

    def is_expired(self, at_ms: int) -> bool:
        return at_ms >= self.expires_at


class SessionManager:
    """
    Issues, persists and expires the current session.

    The store should be session-scoped (e.g. a MemoryStore) so session data
    does not outlive the logical session window.
    """

    def __init__(
        self,
        store: KeyValueStore,
        envelope: EnvelopeCipher,
        random: Optional[RandomSource] = None,
        clock: Optional[Clock] = None,
        session_key: str = SESSION_KEY,
        default_duration_ms: int = DEFAULT_SESSION_DURATION_MS,
    ) -> None:
        self._store = store
        self._envelope = envelope
        self._random = random or os.urandom
        self._clock = clock or now_ms
        self._session_key = session_key
        self.default_duration_ms = default_duration_ms

    def issue_token(self) -> str:
        """Fresh 256-bit token as lowercase hex."""
        return self._random(TOKEN_BYTES).hex()

    def persist(self, record: SessionRecord) -> None:
        """
        Seal and write ``record`` under the session key.

        Raises ValueError when ``record.expires_at`` is not in the future.
        """
        if record.is_expired(self._clock()):
            raise ValueError("Session expiry must be in the future")
        self._store.set(self._session_key, self._envelope.seal(record.to_json()))

    def start(
        self, duration_ms: Optional[int] = None, metadata: Optional[Dict[str, Any]] = None
    ) -> SessionRecord:
        """Issue a token, persist a new session lasting ``duration_ms`` and return it."""
        duration = self.default_duration_ms if duration_ms is None else duration_ms
        if duration <= 0:
            raise ValueError("Session duration must be positive")
        record = SessionRecord(
            token=self.issue_token(),
            expires_at=self._clock() + duration,
            metadata=dict(metadata or {}),
        )
        self.persist(record)
        logger.debug("Session started, expires at %d", record.expires_at)
        return record

    def current(self) -> Optional[SessionRecord]:
        """
        Return the live session or None.

        Step-by-step:
        1. No stored envelope -> None
        2. Open the envelope; any verification or parse failure -> purge, None
        3. Expired -> purge, None
        """
        raw = self._store.get(self._session_key)
        if raw is None:
            return None
        try:
            record = SessionRecord.from_json(self._envelope.open(raw))
        except SessionInvalid as exc:
            logger.warning("Discarding unreadable session: %s", exc)
            self.clear()
            return None
        if record.is_expired(self._clock()):
            logger.info("Session expired, clearing it")
            self.clear()
            return None
        return record

    def is_valid(self) -> bool:
        return self.current() is not None

    def extend(self, duration_ms: int) -> bool:
        """
        Move the expiry of the live session to now + ``duration_ms``.

        Returns False when there is no live session, whatever the duration;
        a non-positive duration for a live session raises ValueError.
        """
        record = self.current()
        if record is None:
            return False
        if duration_ms <= 0:
            raise ValueError("Session duration must be positive")
        record.expires_at = self._clock() + duration_ms
        self.persist(record)
        return True

    def clear(self) -> None:
        self._store.delete(self._session_key)


class CredentialBlobManager:
    """JSON payloads stored per credential id, encrypted by default."""

    def __init__(
        self, store: KeyValueStore, envelope: EnvelopeCipher, prefix: str = BLOB_PREFIX
    ) -> None:
        self._store = store
        self._envelope = envelope
        self._prefix = prefix

    def _key(self, credential_id: str) -> str:
        return f"{self._prefix}{credential_id}"

    def _encrypting(self, requested: bool) -> bool:
        # Degraded envelopes are plain base64, so store plain JSON instead.
        return requested and not self._envelope.degraded

    def store(self, credential_id: str, payload: Any, encrypt: bool = True) -> None:
        data = json.dumps(payload)
        if self._encrypting(encrypt):
            data = self._envelope.seal(data.encode("utf-8"))
        self._store.set(self._key(credential_id), data)

    def get(self, credential_id: str, decrypt: bool = True) -> Optional[Any]:
        """
        Load a payload. Missing, undecryptable and unparsable entries all read
        as None so callers cannot tell a tampered entry from an absent one.
        """
        raw = self._store.get(self._key(credential_id))
        if raw is None:
            return None
        try:
            if self._encrypting(decrypt):
                return json.loads(self._envelope.open(raw).decode("utf-8"))
            return json.loads(raw)
        except (SessionInvalid, ValueError) as exc:
            logger.warning("Failed to read credential payload: %s", exc)
            return None

    def delete(self, credential_id: str) -> None:
        self._store.delete(self._key(credential_id))

    def list_ids(self) -> List[str]:
        return [
            key[len(self._prefix):] for key in self._store.keys() if key.startswith(self._prefix)
        ]

    def clear_all(self) -> None:
        for credential_id in self.list_ids():
            self.delete(credential_id)
