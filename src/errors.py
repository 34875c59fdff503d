"""Error types for the compliance audit and backup subsystem."""

from __future__ import annotations

from dataclasses import dataclass


class ComplianceError(Exception):
    """Base class for audit and backup failures surfaced to callers."""


class ValidationError(ComplianceError, ValueError):
    """Raised when input to an append or import operation is malformed."""


class MalformedBackupError(ValidationError):
    """Raised when a portable backup file cannot be parsed or lacks fields."""

    def __init__(self, message: str, missing_fields: tuple[str, ...] = ()) -> None:
        """Initialize the error with the list of missing top-level fields."""
        super().__init__(message)
        self.missing_fields = missing_fields


class NotFoundError(ComplianceError, KeyError):
    """Raised when a referenced entity does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class BackupNotFound(NotFoundError):
    """Raised when a backup cannot be located by id."""

    def __init__(self, backup_id: str) -> None:
        """Initialize the error with the missing backup identifier."""
        super().__init__(f"backup not found: {backup_id}")
        self.backup_id = backup_id


class IntegrityError(ComplianceError):
    """Raised when stored data fails integrity verification."""


class CorruptedBackupError(IntegrityError):
    """Raised when a backup checksum does not match its payload."""

    def __init__(self, backup_id: str, expected: str, actual: str) -> None:
        """Initialize the error with both checksums for operator diagnosis."""
        super().__init__(
            f"backup {backup_id} is corrupted: expected checksum {expected}, got {actual}"
        )
        self.backup_id = backup_id
        self.expected = expected
        self.actual = actual


class StorageError(ComplianceError):
    """Raised when the keyed bucket store rejects a read or write."""

    def __init__(self, message: str, key: str | None = None) -> None:
        """Initialize the error with the storage key involved, if any."""
        super().__init__(message)
        self.key = key


class BackupCreationError(ComplianceError):
    """Raised when collecting or serializing a backup payload fails."""

    def __init__(self, message: str, backup_id: str | None = None) -> None:
        """Initialize the error with the id of the failed backup record."""
        super().__init__(message)
        self.backup_id = backup_id


@dataclass(frozen=True)
class BucketError:
    """One bucket that failed to restore."""

    bucket: str
    error: str


class PartialFailureError(ComplianceError):
    """Describes per-bucket restore failures.

    Restore reports these rather than raising them; callers that want an
    exception for a non-successful report can raise this explicitly.
    """

    def __init__(self, backup_id: str, failures: list[BucketError]) -> None:
        """Initialize the error with the failing buckets."""
        names = ", ".join(item.bucket for item in failures)
        super().__init__(f"restore of backup {backup_id} failed for: {names}")
        self.backup_id = backup_id
        self.failures = failures
