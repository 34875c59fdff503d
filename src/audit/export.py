"""Serialize audit events to tabular (CSV) or structured (JSON) text."""

from __future__ import annotations

import csv
import io
import json
from enum import Enum
from typing import Iterable

from audit.events import AuditEvent
from errors import ValidationError

CSV_HEADERS = ("Timestamp", "Event Type", "Category", "Severity", "User", "Role", "Details")


class LogExportFormat(str, Enum):
    """Supported audit log export formats."""

    CSV = "csv"
    JSON = "json"


def export_logs(events: Iterable[AuditEvent], fmt: LogExportFormat | str = "json") -> str:
    """Render ``events`` in ``fmt``; unknown formats raise ``ValidationError``."""
    try:
        resolved = LogExportFormat(getattr(fmt, "value", fmt))
    except ValueError as exc:
        raise ValidationError(f"unsupported export format: {fmt}") from exc
    if resolved == LogExportFormat.CSV:
        return _to_csv(events)
    return _to_json(events)


def _to_csv(events: Iterable[AuditEvent]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for event in events:
        record = event.to_record()
        writer.writerow(
            [
                record["timestamp"],
                event.event_type,
                event.category.value,
                event.severity.value,
                event.actor.user_name,
                event.actor.user_role,
                json.dumps(event.details, ensure_ascii=False, sort_keys=True),
            ]
        )
    return buffer.getvalue()


def _to_json(events: Iterable[AuditEvent]) -> str:
    return json.dumps([event.to_record() for event in events], indent=2, ensure_ascii=False)
