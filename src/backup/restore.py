"""Integrity-checked, per-bucket write-back of a stored backup."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable

from backup.checksum import recompute_checksum
from backup.collector import decode_bucket, is_empty_contents
from backup.domain import Backup, BackupStatus, RestoreOptions, RestoreReport
from audit.store import AuditLogStore
from backup.store import BackupStore
from errors import (
    BackupNotFound,
    BucketError,
    CorruptedBackupError,
    IntegrityError,
    StorageError,
    ValidationError,
)
from storage.buckets import DEFAULT_KEY_PREFIX, storage_key_for
from storage.interface import KeyValueStore
from time_utils import utc_now

logger = logging.getLogger(__name__)

NOT_OVERWRITTEN_REASON = "(existing data not overwritten)"


class RestoreEngine:
    """Verify a backup and write its buckets back into the keyed store.

    A checksum mismatch blocks the whole restore before any write. Once
    verified, each bucket is written independently: a failing bucket is
    reported in the result and the remaining buckets are still processed.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        store: BackupStore,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], datetime] = utc_now,
        audit_store: AuditLogStore | None = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._audit_store = audit_store
        self._key_prefix = key_prefix
        self._clock = clock

    def load_verified(self, backup_id: str) -> Backup:
        """Return the stored backup after checking its checksum.

        Raises ``BackupNotFound`` when absent and ``CorruptedBackupError``
        on mismatch, after marking the stored record ``corrupted``.
        """
        backup = self._store.get(backup_id)
        if backup is None:
            raise BackupNotFound(backup_id)
        if backup.status == BackupStatus.FAILED:
            raise IntegrityError(f"backup {backup_id} did not complete and cannot be restored")
        actual = recompute_checksum(backup.payload, backup.checksum)
        if not backup.checksum or actual != backup.checksum:
            self._mark_corrupted(backup)
            raise CorruptedBackupError(backup_id, backup.checksum, actual)
        return backup

    def restore(self, backup_id: str, options: RestoreOptions | None = None) -> RestoreReport:
        """Verify and apply backup ``backup_id`` according to ``options``."""
        return self.apply(self.load_verified(backup_id), options)

    def apply(self, backup: Backup, options: RestoreOptions | None = None) -> RestoreReport:
        """Write the buckets of an already verified ``backup``."""
        options = options or RestoreOptions()
        backup_id = backup.id
        start_time = self._clock()
        excluded = set(options.exclude_buckets)
        restored: list[str] = []
        skipped: list[str] = []
        errors: list[BucketError] = []

        for bucket, contents in backup.payload.items():
            if bucket in excluded:
                skipped.append(bucket)
                continue
            try:
                if self._write_bucket(bucket, contents, options.overwrite_existing):
                    restored.append(bucket)
                else:
                    skipped.append(f"{bucket} {NOT_OVERWRITTEN_REASON}")
            except Exception as exc:
                logger.exception("Failed to restore bucket %s from backup %s.", bucket, backup_id)
                errors.append(BucketError(bucket=bucket, error=str(exc)))

        report = RestoreReport(
            backup_id=backup_id,
            start_time=start_time,
            end_time=self._clock(),
            restored_buckets=restored,
            skipped_buckets=skipped,
            errors=errors,
        )
        logger.info(
            "Restore of %s finished: restored=%s skipped=%s errors=%s",
            backup_id,
            len(restored),
            len(skipped),
            len(errors),
        )
        return report

    def _write_bucket(self, bucket: str, contents: object, overwrite: bool) -> bool:
        key = storage_key_for(bucket, self._key_prefix)
        if self._audit_store is not None and key == self._audit_store.storage_key:
            # Written under the audit store lock.
            return self._audit_store.restore_records(contents, overwrite=overwrite)
        if not overwrite and not self._destination_empty(key):
            return False
        self._backend.set(key, json.dumps(contents, ensure_ascii=False))
        return True

    def _destination_empty(self, key: str) -> bool:
        raw = self._backend.get(key)
        try:
            return is_empty_contents(decode_bucket(raw))
        except json.JSONDecodeError:
            # Undecodable data is still existing data.
            return False

    def _mark_corrupted(self, backup: Backup) -> None:
        if not backup.status.can_transition_to(BackupStatus.CORRUPTED):
            return
        try:
            self._store.update_status(backup.id, BackupStatus.CORRUPTED)
        except (BackupNotFound, StorageError, ValidationError):
            logger.exception("Could not mark backup %s as corrupted.", backup.id)
        logger.warning("Backup %s failed checksum verification.", backup.id)
