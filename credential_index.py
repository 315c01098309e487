"""
credential_index.py
===================
Per-user lists of registered credential ids.

Each scope (a user id, or "default" when none is given) owns one store entry
holding a JSON list of id strings in registration order. Ids are opaque,
non-secret handles, so nothing here is encrypted.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from vault_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "biometric_auth_cred_"
DEFAULT_SCOPE = "default"


class CredentialIndex:
    """Ordered, duplicate-free credential id lists keyed by scope."""

    def __init__(self, store: KeyValueStore, prefix: str = DEFAULT_PREFIX) -> None:
        self._store = store
        self._prefix = prefix

    def _key(self, scope: Optional[str]) -> str:
        return f"{self._prefix}{scope or DEFAULT_SCOPE}"

    def store(self, credential_id: str, scope: Optional[str] = None) -> None:
        """Append ``credential_id`` to the scope's list unless it is already there."""
        ids = self.list(scope)
        if credential_id in ids:
            return
        ids.append(credential_id)
        self._store.set(self._key(scope), json.dumps(ids))
        logger.debug("Recorded credential for scope %s (%d total)", scope or DEFAULT_SCOPE, len(ids))

    def list(self, scope: Optional[str] = None) -> List[str]:
        raw = self._store.get(self._key(scope))
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except ValueError:
            logger.warning("Credential index for scope %s is not valid JSON", scope or DEFAULT_SCOPE)
            return []
        if not isinstance(ids, list):
            return []
        return [str(item) for item in ids]

    def scopes(self) -> List[str]:
        return [key[len(self._prefix):] for key in self._store.keys() if key.startswith(self._prefix)]

    def clear(self, scope: Optional[str] = None) -> None:
        """Drop one scope's list, or every scope's list when ``scope`` is None."""
        if scope is not None:
            self._store.delete(self._key(scope))
            return
        for key in self._store.keys():
            if key.startswith(self._prefix):
                self._store.delete(key)
