"""Snapshot backups of application buckets: creation, restore and export."""

from backup.checksum import compute_checksum, verify_checksum
from backup.collector import SnapshotCollector
from backup.domain import (
    Backup,
    BackupMetadata,
    BackupStatistics,
    BackupStatus,
    BackupType,
    RestoreOptions,
    RestoreReport,
)
from backup.portable import DirectoryExportSink, ExportedFile, ExportFormat, ExportSink
from backup.restore import RestoreEngine
from backup.service import BackupService
from backup.store import BackupStore

__all__ = [
    "Backup",
    "BackupMetadata",
    "BackupService",
    "BackupStatistics",
    "BackupStatus",
    "BackupStore",
    "BackupType",
    "DirectoryExportSink",
    "ExportFormat",
    "ExportSink",
    "ExportedFile",
    "RestoreEngine",
    "RestoreOptions",
    "RestoreReport",
    "SnapshotCollector",
    "compute_checksum",
    "verify_checksum",
]
