"""Interface for the keyed durable store holding serialized buckets."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Durable mapping from storage key to a serialized blob.

    Implementations raise ``errors.StorageError`` when the underlying
    medium rejects a read or write.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the blob stored under ``key`` or None when absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous blob."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key`` and return whether it existed."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all stored keys."""
