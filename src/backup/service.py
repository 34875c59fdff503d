"""Backup workflows: creation, restore, export/import and retention."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from audit.events import AuditEventType
from audit.service import AuditLogService
from backup.checksum import compute_checksum, payload_size, verify_checksum
from backup.collector import SnapshotCollector
from backup.domain import (
    DEFAULT_CREATOR,
    Backup,
    BackupMetadata,
    BackupStatistics,
    BackupStatus,
    BackupType,
    RestoreOptions,
    RestoreReport,
)
from backup.portable import (
    DirectoryExportSink,
    ExportedFile,
    ExportFormat,
    ExportSink,
    decode_backup_record,
    encode_backup,
    export_filename,
    resolve_format,
)
from backup.restore import RestoreEngine
from backup.store import BackupStore
from config import Settings
from errors import (
    BackupCreationError,
    BackupNotFound,
    ComplianceError,
    MalformedBackupError,
    StorageError,
)
from logging_config import log_context
from storage.buckets import AUDIT_LOG_BUCKET, DEFAULT_KEY_PREFIX, bucket_names
from storage.interface import KeyValueStore
from time_utils import to_local, utc_now

logger = logging.getLogger(__name__)

PRE_RESTORE_DESCRIPTION = "Automatic backup before restore"


class BackupService:
    """Entry point for the backup subsystem.

    One re-entrant lock serializes creation, restore, deletion, import and
    cleanup, so a snapshot never reads a bucket that a restore is halfway
    through writing.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        audit: AuditLogService,
        *,
        store: BackupStore | None = None,
        export_sink: ExportSink | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        schema_version: str = "2.0.0",
        platform_info: str | None = None,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utc_now,
        creator_provider: Callable[[], str] | None = None,
    ) -> None:
        self._audit = audit
        self._clock = clock
        self._store = store or BackupStore(backend, clock=clock)
        self._collector = SnapshotCollector(backend)
        self._restore_engine = RestoreEngine(
            backend,
            self._store,
            key_prefix=key_prefix,
            clock=clock,
            audit_store=audit.store,
        )
        self._export_sink = export_sink or DirectoryExportSink(Path("data/exports"))
        self._schema_version = schema_version
        self._platform_info = platform_info
        self._retention_days = retention_days
        self._creator_provider = creator_provider or (lambda: DEFAULT_CREATOR)
        self._lock = threading.RLock()

    @classmethod
    def from_settings(
        cls,
        backend: KeyValueStore,
        audit: AuditLogService,
        app_settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
        export_sink: ExportSink | None = None,
    ) -> "BackupService":
        """Build a service whose limits and defaults follow ``app_settings``."""
        store = BackupStore(
            backend,
            max_backups=app_settings.backup.max_backups,
            storage_key=app_settings.backup.storage_key,
            clock=clock,
        )
        return cls(
            backend,
            audit,
            store=store,
            export_sink=export_sink or DirectoryExportSink(app_settings.backup.export_dir),
            key_prefix=app_settings.storage.key_prefix,
            schema_version=app_settings.backup.schema_version,
            platform_info=app_settings.backup.platform_info,
            retention_days=app_settings.backup.retention_days,
            clock=clock,
        )

    @property
    def store(self) -> BackupStore:
        """Return the underlying backup store."""
        return self._store

    # Creation

    def create_full_backup(self, description: str = "", include_audit_log: bool = True) -> Backup:
        """Snapshot every non-empty bucket, optionally without the audit log."""
        include = None if include_audit_log else _without_audit_log
        label = description or f"Full backup of {self._local_date_label()}"
        return self._create(BackupType.FULL, label, include, {"includeAuditLog": include_audit_log})

    def create_partial_backup(self, buckets: Iterable[str], description: str = "") -> Backup:
        """Snapshot only the named buckets."""
        requested = list(dict.fromkeys(buckets))
        unknown = sorted(set(requested) - set(bucket_names()))
        if unknown:
            logger.warning("Ignoring unknown buckets in partial backup: %s", ", ".join(unknown))
        selected = set(requested)
        label = description or f"Partial backup ({', '.join(requested)})"
        return self._create(
            BackupType.PARTIAL,
            label,
            lambda name: name in selected,
            {"requestedBuckets": requested},
        )

    def _create(
        self,
        backup_type: BackupType,
        description: str,
        include: Callable[[str], bool] | None,
        audit_details: dict[str, Any],
    ) -> Backup:
        backup_id = str(uuid4())
        record = Backup(
            id=backup_id,
            backup_type=backup_type,
            status=BackupStatus.PENDING,
            timestamp=self._clock(),
            description=description,
            metadata=BackupMetadata(
                schema_version=self._schema_version,
                platform_info=self._platform_info,
                created_by=self._creator_provider(),
            ),
        )
        with self._lock, log_context(operation="backup_create", backup_id=backup_id):
            record = record.with_status(BackupStatus.IN_PROGRESS)
            try:
                payload = self._collector.collect(include)
                completed = record.with_status(
                    BackupStatus.COMPLETED,
                    payload=payload,
                    size=payload_size(payload),
                    checksum=compute_checksum(payload),
                    metadata=record.metadata.model_copy(
                        update={"included_buckets": list(payload)}
                    ),
                )
                self._store.append(completed)
            except (BackupCreationError, StorageError, TypeError, ValueError) as exc:
                self._record_failed_creation(record, exc)
                if isinstance(exc, BackupCreationError) and exc.backup_id is None:
                    exc.backup_id = backup_id
                if isinstance(exc, ComplianceError):
                    raise
                raise BackupCreationError(str(exc), backup_id=backup_id) from exc

            logger.info(
                "Created %s backup %s (%s bytes, buckets: %s).",
                backup_type.value,
                backup_id,
                completed.size,
                ", ".join(completed.metadata.included_buckets) or "<none>",
            )
            self._audit.log_event(
                AuditEventType.BACKUP_CREATED,
                {
                    "backupId": backup_id,
                    "backupType": backup_type.value,
                    "description": description,
                    "includedBuckets": completed.metadata.included_buckets,
                    "size": completed.size,
                    **audit_details,
                },
            )
            return completed

    def _record_failed_creation(self, record: Backup, exc: Exception) -> None:
        logger.exception("Backup %s creation failed.", record.id)
        failed = record.with_status(BackupStatus.FAILED, error=str(exc))
        try:
            self._store.append(failed)
        except StorageError:
            logger.exception("Could not persist failed backup record %s.", record.id)
        self._audit.log_event(
            AuditEventType.SYSTEM_ERROR,
            {
                "errorType": "backup_creation_failed",
                "errorMessage": str(exc),
                "backupId": record.id,
                "context": "backup_creation",
            },
        )

    # Queries

    def get_all_backups(self) -> list[Backup]:
        """Return every stored backup, newest first."""
        return self._store.all()

    def get_backup_by_id(self, backup_id: str) -> Backup | None:
        """Return the backup with ``backup_id`` or ``None``."""
        return self._store.get(backup_id)

    def get_backup_statistics(self) -> BackupStatistics:
        """Summarize the backup store."""
        return self._store.statistics()

    def verify_backup(self, backup_id: str) -> bool:
        """Check a stored backup's checksum, marking it ``corrupted`` on mismatch."""
        with self._lock:
            backup = self._store.get(backup_id)
            if backup is None:
                raise BackupNotFound(backup_id)
            if verify_checksum(backup.payload, backup.checksum):
                return True
            logger.warning("Backup %s failed checksum verification.", backup_id)
            if backup.status.can_transition_to(BackupStatus.CORRUPTED):
                self._store.update_status(backup_id, BackupStatus.CORRUPTED)
            return False

    # Maintenance

    def delete_backup(self, backup_id: str) -> bool:
        """Delete a backup; returns False when it did not exist."""
        with self._lock:
            removed = self._store.delete(backup_id)
        if removed:
            self._audit.log_event(
                AuditEventType.BACKUP_DELETED,
                {"backupId": backup_id, "context": "backup_management"},
            )
        return removed

    def cleanup_old_backups(self, retention_days: int | None = None) -> int:
        """Remove non-full backups older than the retention window."""
        days = self._retention_days if retention_days is None else retention_days
        with self._lock:
            removed = self._store.cleanup_older_than(days, now=self._clock())
        if removed:
            logger.info("Removed %s backups older than %s days.", len(removed), days)
            self._audit.log_event(
                AuditEventType.BACKUP_CLEANUP,
                {
                    "removedBackups": len(removed),
                    "removedIds": [item.id for item in removed],
                    "retentionDays": days,
                    "context": "backup_maintenance",
                },
            )
        return len(removed)

    # Restore

    def restore_from_backup(
        self, backup_id: str, options: RestoreOptions | None = None
    ) -> RestoreReport:
        """Restore ``backup_id`` and return the per-bucket report.

        The target is loaded and verified before the pre-restore snapshot is
        taken, so the snapshot cannot evict it. A missing backup, a checksum
        mismatch or a snapshot failure aborts before any bucket is written
        and is re-raised.
        """
        options = options or RestoreOptions()
        with self._lock, log_context(operation="backup_restore", backup_id=backup_id):
            try:
                backup = self._restore_engine.load_verified(backup_id)
                if options.snapshot_before_restore:
                    self.create_full_backup(PRE_RESTORE_DESCRIPTION)
                report = self._restore_engine.apply(backup, options)
            except ComplianceError as exc:
                logger.error("Restore of backup %s aborted: %s", backup_id, exc)
                self._audit.log_event(
                    AuditEventType.SYSTEM_ERROR,
                    {
                        "errorType": "backup_restoration_failed",
                        "errorMessage": str(exc),
                        "backupId": backup_id,
                        "context": "backup_restoration",
                    },
                )
                raise

            self._audit.log_event(
                AuditEventType.BACKUP_RESTORED,
                {
                    "backupId": backup_id,
                    "restoreOptions": options.to_dict(),
                    "restoredBuckets": report.restored_buckets,
                    "skippedBuckets": report.skipped_buckets,
                    "errorCount": len(report.errors),
                    "success": report.success,
                },
            )
            return report

    # Portability

    def export_backup(self, backup_id: str, fmt: ExportFormat | str = ExportFormat.JSON) -> ExportedFile:
        """Write a backup to the export sink and return the written file."""
        resolved = resolve_format(fmt)
        backup = self._store.get(backup_id)
        if backup is None:
            raise BackupNotFound(backup_id)
        content = encode_backup(backup, resolved)
        filename = export_filename(backup, resolved, self._clock().date())
        location = self._export_sink.write(filename, content, resolved.mime_type)
        exported = ExportedFile(
            filename=filename,
            size=len(content),
            mime_type=resolved.mime_type,
            location=location,
        )
        self._audit.log_event(
            AuditEventType.DATA_EXPORT,
            {
                "dataType": "backup",
                "backupId": backup_id,
                "format": resolved.value,
                "size": exported.size,
                "fileName": filename,
            },
        )
        return exported

    def import_backup(self, content: str | bytes, filename: str | None = None) -> Backup:
        """Parse a portable backup file and store it under a fresh id.

        Raises ``MalformedBackupError`` before any write when the file cannot
        be parsed or lacks a required field. A file whose checksum does not
        match its payload is stored with status ``corrupted`` unless its
        recorded status cannot move there, so a ``failed`` record stays
        ``failed``.
        """
        record = decode_backup_record(content, filename)
        try:
            parsed = Backup.model_validate(record)
        except PydanticValidationError as exc:
            raise MalformedBackupError(f"backup file has invalid fields: {exc}") from exc

        original_id = parsed.id
        changes: dict[str, Any] = {
            "id": str(uuid4()),
            "imported": True,
            "imported_at": self._clock(),
            "metadata": parsed.metadata.model_copy(update={"original_id": original_id}),
        }
        if not verify_checksum(parsed.payload, parsed.checksum):
            logger.warning("Imported backup %s does not match its checksum.", original_id)
            if parsed.status.can_transition_to(BackupStatus.CORRUPTED):
                changes["status"] = BackupStatus.CORRUPTED
        imported = parsed.model_copy(update=changes)

        with self._lock:
            self._store.append(imported)
        self._audit.log_event(
            AuditEventType.DATA_IMPORT,
            {
                "dataType": "backup",
                "backupId": imported.id,
                "originalId": original_id,
                "fileName": filename,
                "size": len(content),
                "status": imported.status.value,
            },
        )
        return imported

    def _local_date_label(self) -> str:
        return to_local(self._clock()).date().isoformat()


def _without_audit_log(name: str) -> bool:
    return name != AUDIT_LOG_BUCKET
