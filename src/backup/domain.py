"""Backup records, status state machine and restore reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import BucketError, PartialFailureError
from time_utils import isoformat, to_utc

DEFAULT_CREATOR = "system"


class BackupType(str, Enum):
    """Scope of a backup."""

    FULL = "full"
    PARTIAL = "partial"
    CONFIGURATION = "configuration"
    USER_DATA = "user_data"
    MEDICAL_DATA = "medical_data"
    AUDIT_LOGS = "audit_logs"


class BackupStatus(str, Enum):
    """Lifecycle state of a backup.

    ``completed``, ``failed`` and ``corrupted`` are terminal except that a
    completed backup may later be found ``corrupted``.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CORRUPTED = "corrupted"

    def can_transition_to(self, target: "BackupStatus") -> bool:
        """Return True when ``self -> target`` is a legal transition."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[BackupStatus, frozenset[BackupStatus]] = {
    BackupStatus.PENDING: frozenset(
        {BackupStatus.IN_PROGRESS, BackupStatus.FAILED, BackupStatus.CORRUPTED}
    ),
    BackupStatus.IN_PROGRESS: frozenset(
        {BackupStatus.COMPLETED, BackupStatus.FAILED, BackupStatus.CORRUPTED}
    ),
    BackupStatus.COMPLETED: frozenset({BackupStatus.CORRUPTED}),
    BackupStatus.FAILED: frozenset(),
    BackupStatus.CORRUPTED: frozenset(),
}


class BackupMetadata(BaseModel):
    """Provenance recorded with each backup.

    Field aliases match the portable file format so exported files stay
    readable by older installations.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    schema_version: str = Field(default="2.0.0", alias="version")
    platform_info: str | None = Field(default=None, alias="platform")
    created_by: str = Field(default=DEFAULT_CREATOR, alias="createdBy")
    included_buckets: list[str] = Field(default_factory=list, alias="dataTypes")
    original_id: str | None = Field(default=None, alias="originalId")


class Backup(BaseModel):
    """A checksummed snapshot of one or more application data buckets."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    backup_type: BackupType = Field(alias="type")
    status: BackupStatus = BackupStatus.COMPLETED
    timestamp: datetime
    description: str = ""
    size: int = 0
    checksum: str = ""
    payload: dict[str, Any] = Field(default_factory=dict, alias="data")
    metadata: BackupMetadata = Field(default_factory=BackupMetadata)
    imported: bool = False
    imported_at: datetime | None = Field(default=None, alias="importedAt")
    error: str | None = None

    @field_validator("timestamp", "imported_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        """Store timestamps as aware UTC."""
        if value is None:
            return None
        return to_utc(value)

    def with_status(self, status: BackupStatus, **changes: Any) -> "Backup":
        """Return a copy moved to ``status``; illegal transitions raise ValueError."""
        if not self.status.can_transition_to(status):
            raise ValueError(
                f"backup {self.id}: illegal status transition "
                f"{self.status.value} -> {status.value}"
            )
        return self.model_copy(update={"status": status, **changes})

    def to_record(self) -> dict[str, Any]:
        """Return the JSON-ready representation used for storage and export."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def summary(self) -> dict[str, Any]:
        """Return the record without its payload, for listings."""
        record = self.to_record()
        record.pop("data", None)
        return record


@dataclass(frozen=True)
class RestoreOptions:
    """Caller choices for a restore run."""

    overwrite_existing: bool = True
    exclude_buckets: tuple[str, ...] = ()
    snapshot_before_restore: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "overwriteExisting": self.overwrite_existing,
            "excludeBuckets": list(self.exclude_buckets),
            "snapshotBeforeRestore": self.snapshot_before_restore,
        }


@dataclass(frozen=True)
class RestoreReport:
    """Outcome of one restore attempt; returned to the caller, never stored."""

    backup_id: str
    start_time: datetime
    end_time: datetime
    restored_buckets: list[str] = field(default_factory=list)
    skipped_buckets: list[str] = field(default_factory=list)
    errors: list[BucketError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True when no bucket failed to restore."""
        return not self.errors

    def partial_failure(self) -> PartialFailureError | None:
        """Return an error describing failed buckets, if any."""
        if not self.errors:
            return None
        return PartialFailureError(self.backup_id, list(self.errors))

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the report."""
        return {
            "backupId": self.backup_id,
            "startTime": isoformat(self.start_time),
            "endTime": isoformat(self.end_time),
            "restoredBuckets": list(self.restored_buckets),
            "skippedBuckets": list(self.skipped_buckets),
            "errors": [{"bucket": item.bucket, "error": item.error} for item in self.errors],
            "success": self.success,
        }


@dataclass(frozen=True)
class BackupStatistics:
    """Aggregate view over the backup store."""

    total_backups: int = 0
    total_size: int = 0
    backups_by_type: dict[str, int] = field(default_factory=dict)
    oldest_backup: Backup | None = None
    newest_backup: Backup | None = None
    successful_backups: int = 0
    failed_backups: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; oldest/newest are payload-free summaries."""
        return {
            "totalBackups": self.total_backups,
            "totalSize": self.total_size,
            "backupsByType": dict(self.backups_by_type),
            "oldestBackup": self.oldest_backup.summary() if self.oldest_backup else None,
            "newestBackup": self.newest_backup.summary() if self.newest_backup else None,
            "successfulBackups": self.successful_backups,
            "failedBackups": self.failed_backups,
        }


def format_size(size: int) -> str:
    """Render a byte count with a binary unit, e.g. ``1.5 KB``."""
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"
