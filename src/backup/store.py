"""Bounded, newest-first backup list persisted through the keyed store."""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from backup.domain import Backup, BackupStatistics, BackupStatus, BackupType
from errors import BackupNotFound, StorageError, ValidationError
from storage.interface import KeyValueStore
from time_utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "medical_pro_backups"
DEFAULT_MAX_BACKUPS = 50


class BackupStore:
    """Append/read/evict over the capacity-bounded backup list.

    Appends prepend and drop the oldest tail entries beyond capacity.
    Time-based cleanup spares ``full`` backups; capacity eviction does not.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        *,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        storage_key: str = DEFAULT_STORAGE_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_backups < 1:
            raise ValueError("max_backups must be >= 1.")
        self._backend = backend
        self._max_backups = max_backups
        self._storage_key = storage_key
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def max_backups(self) -> int:
        return self._max_backups

    def all(self) -> list[Backup]:
        """Return every stored backup, newest first."""
        with self._lock:
            return self._load()

    def get(self, backup_id: str) -> Backup | None:
        """Return the backup with ``backup_id`` or ``None``."""
        for backup in self.all():
            if backup.id == backup_id:
                return backup
        return None

    def append(self, backup: Backup) -> list[Backup]:
        """Store ``backup`` as the newest entry and return evicted backups."""
        with self._lock:
            backups = [item for item in self._load() if item.id != backup.id]
            backups.insert(0, backup)
            evicted = backups[self._max_backups :]
            del backups[self._max_backups :]
            self._persist(backups)
        for item in evicted:
            logger.info("Evicted backup %s (%s) over capacity.", item.id, item.backup_type.value)
        return evicted

    def delete(self, backup_id: str) -> bool:
        """Remove a backup and return whether it existed."""
        with self._lock:
            backups = self._load()
            kept = [item for item in backups if item.id != backup_id]
            if len(kept) == len(backups):
                return False
            self._persist(kept)
        return True

    def update_status(self, backup_id: str, status: BackupStatus) -> Backup:
        """Move a stored backup to ``status`` and return the updated record.

        Raises ``BackupNotFound`` for unknown ids and ``ValidationError`` for
        transitions the state machine forbids.
        """
        with self._lock:
            backups = self._load()
            for index, item in enumerate(backups):
                if item.id != backup_id:
                    continue
                try:
                    updated = item.with_status(status)
                except ValueError as exc:
                    raise ValidationError(str(exc)) from exc
                backups[index] = updated
                self._persist(backups)
                return updated
        raise BackupNotFound(backup_id)

    def cleanup_older_than(self, retention_days: int, now: datetime | None = None) -> list[Backup]:
        """Remove non-full backups older than ``retention_days``; return them."""
        if retention_days < 0:
            raise ValidationError("retention_days must be >= 0.")
        cutoff = parse_timestamp(now or self._clock()) - timedelta(days=retention_days)
        with self._lock:
            backups = self._load()
            kept: list[Backup] = []
            removed: list[Backup] = []
            for item in backups:
                if item.timestamp > cutoff or item.backup_type == BackupType.FULL:
                    kept.append(item)
                else:
                    removed.append(item)
            if removed:
                self._persist(kept)
        return removed

    def statistics(self) -> BackupStatistics:
        """Summarize stored backups by count, size, type and outcome."""
        backups = self.all()
        if not backups:
            return BackupStatistics()
        by_type = Counter(item.backup_type.value for item in backups)
        return BackupStatistics(
            total_backups=len(backups),
            total_size=sum(item.size for item in backups),
            backups_by_type=dict(by_type),
            oldest_backup=min(backups, key=lambda item: item.timestamp),
            newest_backup=max(backups, key=lambda item: item.timestamp),
            successful_backups=sum(1 for item in backups if item.status == BackupStatus.COMPLETED),
            failed_backups=sum(1 for item in backups if item.status == BackupStatus.FAILED),
        )

    def _load(self) -> list[Backup]:
        raw = self._backend.get(self._storage_key)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(
                f"backup list under {self._storage_key} is not valid JSON", key=self._storage_key
            ) from exc
        if not isinstance(records, list):
            raise StorageError(
                f"backup list under {self._storage_key} is not a list", key=self._storage_key
            )
        backups: list[Backup] = []
        for record in records:
            try:
                backups.append(Backup.model_validate(record))
            except PydanticValidationError:
                logger.warning("Skipping malformed backup record id=%s", _record_id(record))
        return backups

    def _persist(self, backups: list[Backup]) -> None:
        payload = json.dumps([item.to_record() for item in backups], ensure_ascii=False)
        self._backend.set(self._storage_key, payload)


def _record_id(record: object) -> str:
    if isinstance(record, dict):
        return str(record.get("id", "<missing>"))
    return "<not a mapping>"
