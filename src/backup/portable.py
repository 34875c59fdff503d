"""Portable backup files: encoding, naming, sinks and parsing."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any

from backup.domain import Backup
from errors import MalformedBackupError, StorageError, ValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "type", "timestamp", "data", "checksum")
FILENAME_PREFIX = "medical_pro_backup"


class ExportFormat(str, Enum):
    """Portable backup encodings."""

    JSON = "json"
    COMPRESSED = "compressed"

    @property
    def extension(self) -> str:
        return "json" if self is ExportFormat.JSON else "backup"

    @property
    def mime_type(self) -> str:
        return "application/json" if self is ExportFormat.JSON else "application/octet-stream"


@dataclass(frozen=True)
class ExportedFile:
    """Result of writing one backup file through an ``ExportSink``."""

    filename: str
    size: int
    mime_type: str
    location: str


class ExportSink(ABC):
    """Destination for exported backup files."""

    @abstractmethod
    def write(self, filename: str, content: bytes, mime_type: str) -> str:
        """Persist ``content`` under ``filename`` and return its location."""


class DirectoryExportSink(ExportSink):
    """Writes exported files into a local directory, creating it on demand."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def write(self, filename: str, content: bytes, mime_type: str) -> str:
        target = self._directory / filename
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise StorageError(f"could not write export file {target}: {exc}") from exc
        logger.info("Wrote %s (%s, %s bytes).", target, mime_type, len(content))
        return str(target)


def resolve_format(fmt: ExportFormat | str) -> ExportFormat:
    """Return the ``ExportFormat`` for ``fmt``; unknown formats raise ``ValidationError``."""
    try:
        return ExportFormat(getattr(fmt, "value", fmt))
    except ValueError as exc:
        raise ValidationError(f"unsupported backup export format: {fmt}") from exc


def encode_backup(backup: Backup, fmt: ExportFormat) -> bytes:
    """Serialize the whole backup record in ``fmt``."""
    if fmt is ExportFormat.JSON:
        return json.dumps(backup.to_record(), indent=2, ensure_ascii=False).encode("utf-8")
    compact = json.dumps(backup.to_record(), ensure_ascii=False).encode("utf-8")
    return base64.b64encode(compact)


def export_filename(backup: Backup, fmt: ExportFormat, export_date: date) -> str:
    """Return ``medical_pro_backup_<id8>_<YYYY-MM-DD>.<ext>``."""
    return f"{FILENAME_PREFIX}_{backup.id[:8]}_{export_date.isoformat()}.{fmt.extension}"


def _looks_like_json(text: str) -> bool:
    return text.lstrip().startswith("{")


def decode_backup_record(content: str | bytes, filename: str | None = None) -> dict[str, Any]:
    """Parse a portable file into a record with every required field.

    ``.backup`` files are base64, ``.json`` files plain JSON; otherwise
    the encoding is detected from the content. Raises
    ``MalformedBackupError`` for unparseable files or missing fields.
    """
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedBackupError("backup file is not UTF-8 text") from exc
    else:
        text = content

    if filename and filename.endswith(".backup"):
        compressed = True
    elif filename and filename.endswith(".json"):
        compressed = False
    else:
        compressed = not _looks_like_json(text)

    try:
        if compressed:
            text = base64.b64decode("".join(text.split()), validate=True).decode("utf-8")
        record = json.loads(text)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedBackupError(f"backup file could not be parsed: {exc}") from exc

    if not isinstance(record, dict):
        raise MalformedBackupError("backup file must contain a JSON object")
    missing = tuple(name for name in REQUIRED_FIELDS if name not in record)
    if missing:
        raise MalformedBackupError(
            f"backup file is missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )
    return record
