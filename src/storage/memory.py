"""In-memory keyed store for tests and single-process use."""

from __future__ import annotations

import threading

from errors import StorageError
from storage.interface import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store guarded by a lock."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        """Return the blob stored under ``key`` or None when absent."""
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""
        if not isinstance(value, str):
            raise StorageError("stored values must be serialized strings", key=key)
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        """Remove ``key`` and return whether it existed."""
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        """Return all stored keys."""
        with self._lock:
            return list(self._data)
