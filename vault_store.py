"""
vault_store.py
==============
Key-value persistence for credential indices, encrypted blobs and sessions.

Every manager in the auth core talks to a ``KeyValueStore`` of string keys to
string values. Two implementations ship here:
- MemoryStore: process-lifetime dict, the default session-scoped store
- JsonFileStore: a pretty-printed JSON file, the default durable store

Any failure of the underlying medium surfaces as StorageFailure; callers must
not continue as if a write succeeded.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, List, Optional, Protocol

from errors import StorageFailure

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...


class MemoryStore:
    """Dict-backed store; data lives only as long as the instance."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class JsonFileStore:
    """
    Store backed by a single JSON object on disk.

    The file is re-read on every access so two instances pointing at the same
    path see each other's writes (last writer wins). Files are human-readable
    with indent=2 and sort_keys=True.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, str]:
        """
        Read the whole file.

        Step-by-step:
        1. Missing file -> empty dict (fresh install)
        2. Otherwise parse JSON; unreadable or malformed -> StorageFailure
        """
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageFailure(f"Cannot read store {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageFailure(f"Store {self.path} does not contain a JSON object")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
        except OSError as exc:
            raise StorageFailure(f"Cannot write store {self.path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def keys(self) -> List[str]:
        return list(self._load())
