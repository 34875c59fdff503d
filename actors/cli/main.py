"""Compliance audit and backup operator CLI implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
import sys
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import typer

from audit import AuditLogService, AuditSearchCriteria, LogExportFormat, StatisticsPeriod
from backup import BackupService, ExportFormat, RestoreOptions
from backup.domain import format_size
from config import Settings, settings
from errors import ComplianceError, StorageError
from logging_config import configure_logging
from storage import build_key_value_store
from time_utils import parse_timestamp

SUCCESS_EXIT_CODE = 0
DOMAIN_ERROR_EXIT_CODE = 3
STORAGE_ERROR_EXIT_CODE = 4


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options."""

    as_json: bool
    settings: Settings


@dataclass(frozen=True)
class CliServices:
    """Audit and backup services sharing one keyed store."""

    audit: AuditLogService
    backups: BackupService


def build_services(app_settings: Settings) -> CliServices:
    """Wire services against the configured store backend."""
    backend = build_key_value_store(app_settings)
    audit = AuditLogService.from_settings(backend, app_settings)
    backups = BackupService.from_settings(backend, audit, app_settings)
    return CliServices(audit=audit, backups=backups)


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""

    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date, Path)):
        return str(value)
    if hasattr(value, "to_dict"):
        return _serialize(value.to_dict())
    if hasattr(value, "to_record"):
        return _serialize(value.to_record())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    if hasattr(value, "model_dump"):
        return _serialize(value.model_dump(mode="json", by_alias=True))
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""

    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    rendered = _render_human(data)
    if rendered is not None:
        typer.echo(rendered)
        return
    if data is None:
        typer.echo("ok")
        return
    typer.echo(str(data))


def _emit_error(exc: Exception, as_json: bool) -> None:
    """Render domain and storage errors to stderr."""

    if as_json:
        typer.echo(json.dumps({"error": str(exc), "type": type(exc).__name__}), err=True)
        return
    typer.echo(f"error: {exc}", err=True)


def _render_human(data: Any) -> str | None:
    """Return human-oriented rendering for recognized response shapes."""
    if isinstance(data, dict):
        if _looks_like_restore_report(data):
            return _render_restore_report(data)
        if _looks_like_backup(data):
            return _render_backup_list([data])
    if isinstance(data, list):
        if len(data) > 0 and all(isinstance(item, dict) and _looks_like_backup(item) for item in data):
            return _render_backup_list(data)
        if len(data) > 0 and all(isinstance(item, dict) and _looks_like_alert(item) for item in data):
            return _render_alerts(data)
        if len(data) > 0 and all(isinstance(item, dict) and _looks_like_event(item) for item in data):
            return _render_events(data)
        if len(data) == 0:
            return "No entries found."
    if isinstance(data, (dict, list)):
        return json.dumps(data, indent=2, sort_keys=True)
    return None


def _looks_like_backup(value: dict[str, Any]) -> bool:
    """Return True for backup summary payloads."""
    return "id" in value and "type" in value and "status" in value and "checksum" in value


def _looks_like_restore_report(value: dict[str, Any]) -> bool:
    """Return True for restore report payloads."""
    return "restoredBuckets" in value and "skippedBuckets" in value


def _looks_like_alert(value: dict[str, Any]) -> bool:
    """Return True for suspicious-activity alerts."""
    return "type" in value and "message" in value and "evidence" in value


def _looks_like_event(value: dict[str, Any]) -> bool:
    """Return True for audit event records."""
    return "eventType" in value and "timestamp" in value


def _render_backup_list(items: list[dict[str, Any]]) -> str:
    """Render backup summaries one per line."""
    lines: list[str] = []
    for item in items:
        size = item.get("size", 0)
        line = (
            f"- {item.get('id')} [{item.get('type')}] {item.get('status')} "
            f"{item.get('timestamp')} {format_size(size if isinstance(size, int) else 0)}"
        )
        description = str(item.get("description", "")).strip()
        if description != "":
            line = f"{line} {description}"
        if item.get("imported"):
            line = f"{line} (imported)"
        lines.append(line)
    return "\n".join(lines)


def _render_restore_report(data: dict[str, Any]) -> str:
    """Render a restore report for human scanning."""
    status = "succeeded" if data.get("success") else "completed with errors"
    lines = [f"Restore of {data.get('backupId')} {status}"]
    lines.append(f"Restored: {', '.join(data.get('restoredBuckets', [])) or '-'}")
    lines.append(f"Skipped: {', '.join(data.get('skippedBuckets', [])) or '-'}")
    for error in data.get("errors", []):
        if isinstance(error, dict):
            lines.append(f"  error {error.get('bucket')}: {error.get('error')}")
    return "\n".join(lines)


def _render_alerts(items: list[dict[str, Any]]) -> str:
    """Render suspicious-activity alerts."""
    return "\n".join(
        f"- [{item.get('severity')}] {item.get('type')}: {item.get('message')}" for item in items
    )


def _render_events(items: list[dict[str, Any]]) -> str:
    """Render audit events newest first."""
    lines: list[str] = []
    for item in items:
        actor = item.get("actor", {})
        user = actor.get("userName", "") if isinstance(actor, dict) else ""
        lines.append(
            f"{item.get('timestamp')} {item.get('severity', ''):<8} "
            f"{item.get('eventType')} {user}".rstrip()
        )
    return "\n".join(lines)


def _run_command(cfg: CliConfig, invoke: Callable[[CliServices], Any]) -> None:
    """Execute one service call and map outputs/errors to process semantics."""
    try:
        result = invoke(build_services(cfg.settings))
    except StorageError as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=STORAGE_ERROR_EXIT_CODE) from exc
    except ComplianceError as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE) from exc

    _emit_output(result, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""

    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


app = typer.Typer(no_args_is_help=True, help="Clinic compliance audit and backup CLI")


@app.callback()
def main(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    log_level: str = typer.Option(
        settings.log_level,
        envvar="COMPLIANCE_LOG_LEVEL",
        help="Log level for diagnostics written to stderr",
    ),
) -> None:
    """Store global options for all commands."""

    configure_logging(level=log_level, json_output=settings.log_json, stream=sys.stderr)
    ctx.obj = CliConfig(as_json=as_json, settings=settings)


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    period: StatisticsPeriod = typer.Option(
        StatisticsPeriod.WEEK, help="Trailing period", case_sensitive=False
    ),
) -> None:
    """Show audit statistics for a trailing period."""
    cfg = _require_config(ctx)
    _run_command(cfg, lambda services: services.audit.get_statistics(period.value))


@app.command("alerts")
def alerts_command(ctx: typer.Context) -> None:
    """Run suspicious-activity detection over the recent window."""
    cfg = _require_config(ctx)
    _run_command(cfg, lambda services: services.audit.detect_suspicious_activity())


def _parse_date_option(value: str | None, option: str) -> datetime | None:
    """Parse an ISO-8601 date option, rejecting bad input as a usage error."""

    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise typer.BadParameter(f"invalid ISO-8601 date: {value}", param_hint=option) from exc


def _search_criteria(
    event_type: str | None,
    category: str | None,
    severity: str | None,
    user_id: str | None,
    start_date: str | None,
    end_date: str | None,
    term: str | None,
) -> AuditSearchCriteria:
    return AuditSearchCriteria(
        event_type=event_type,
        category=category,
        severity=severity,
        user_id=user_id,
        start_date=_parse_date_option(start_date, "--start-date"),
        end_date=_parse_date_option(end_date, "--end-date"),
        search_term=term,
    )


@app.command("search")
def search_command(
    ctx: typer.Context,
    event_type: str | None = typer.Option(None, help="Exact event type"),
    category: str | None = typer.Option(None, help="Event category"),
    severity: str | None = typer.Option(None, help="Event severity"),
    user_id: str | None = typer.Option(None, help="Actor user id"),
    start_date: str | None = typer.Option(None, help="Inclusive ISO-8601 lower bound"),
    end_date: str | None = typer.Option(None, help="Inclusive ISO-8601 upper bound"),
    term: str | None = typer.Option(None, help="Free-text search term"),
) -> None:
    """Search the audit log."""
    cfg = _require_config(ctx)
    criteria = _search_criteria(
        event_type, category, severity, user_id, start_date, end_date, term
    )
    _run_command(cfg, lambda services: services.audit.search_logs(criteria))


@app.command("export-logs")
def export_logs_command(
    ctx: typer.Context,
    fmt: LogExportFormat = typer.Option(LogExportFormat.JSON, "--format", help="Export format"),
    event_type: str | None = typer.Option(None, help="Exact event type"),
    category: str | None = typer.Option(None, help="Event category"),
    severity: str | None = typer.Option(None, help="Event severity"),
    user_id: str | None = typer.Option(None, help="Actor user id"),
    start_date: str | None = typer.Option(None, help="Inclusive ISO-8601 lower bound"),
    end_date: str | None = typer.Option(None, help="Inclusive ISO-8601 upper bound"),
    term: str | None = typer.Option(None, help="Free-text search term"),
) -> None:
    """Print matching audit events as CSV or JSON."""
    cfg = _require_config(ctx)
    criteria = _search_criteria(
        event_type, category, severity, user_id, start_date, end_date, term
    )
    _run_command(cfg, lambda services: services.audit.export_logs(fmt.value, criteria))


@app.command("cleanup-logs")
def cleanup_logs_command(
    ctx: typer.Context,
    days: int | None = typer.Option(None, min=0, help="Retention window in days"),
) -> None:
    """Drop audit events older than the retention window."""
    cfg = _require_config(ctx)
    _run_command(
        cfg, lambda services: {"removed": services.audit.cleanup_old_logs(days)}
    )


@app.command("backup-create")
def backup_create_command(
    ctx: typer.Context,
    description: str = typer.Option("", help="Backup description"),
    no_audit_log: bool = typer.Option(False, "--no-audit-log", help="Leave the audit log out"),
) -> None:
    """Create a full backup."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services: services.backups.create_full_backup(
            description, include_audit_log=not no_audit_log
        ).summary(),
    )


@app.command("backup-partial")
def backup_partial_command(
    ctx: typer.Context,
    buckets: list[str] = typer.Argument(..., help="Bucket names to include"),
    description: str = typer.Option("", help="Backup description"),
) -> None:
    """Create a backup of the named buckets only."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services: services.backups.create_partial_backup(buckets, description).summary(),
    )


@app.command("backup-list")
def backup_list_command(ctx: typer.Context) -> None:
    """List stored backups, newest first."""
    cfg = _require_config(ctx)
    _run_command(
        cfg, lambda services: [item.summary() for item in services.backups.get_all_backups()]
    )


@app.command("backup-stats")
def backup_stats_command(ctx: typer.Context) -> None:
    """Summarize the backup store."""
    cfg = _require_config(ctx)
    _run_command(cfg, lambda services: services.backups.get_backup_statistics())


@app.command("backup-verify")
def backup_verify_command(
    ctx: typer.Context, backup_id: str = typer.Argument(..., help="Backup id")
) -> None:
    """Verify a backup checksum."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services: {"backupId": backup_id, "valid": services.backups.verify_backup(backup_id)},
    )


@app.command("backup-restore")
def backup_restore_command(
    ctx: typer.Context,
    backup_id: str = typer.Argument(..., help="Backup id"),
    no_overwrite: bool = typer.Option(
        False, "--no-overwrite", help="Keep buckets that already hold data"
    ),
    exclude: list[str] = typer.Option([], "--exclude", help="Bucket to leave untouched"),
    no_snapshot: bool = typer.Option(
        False, "--no-snapshot", help="Skip the safety backup taken before restoring"
    ),
) -> None:
    """Restore buckets from a backup."""
    cfg = _require_config(ctx)
    options = RestoreOptions(
        overwrite_existing=not no_overwrite,
        exclude_buckets=tuple(exclude),
        snapshot_before_restore=not no_snapshot,
    )
    _run_command(
        cfg, lambda services: services.backups.restore_from_backup(backup_id, options)
    )


@app.command("backup-export")
def backup_export_command(
    ctx: typer.Context,
    backup_id: str = typer.Argument(..., help="Backup id"),
    fmt: ExportFormat = typer.Option(ExportFormat.JSON, "--format", help="File format"),
) -> None:
    """Write a backup to the export directory."""
    cfg = _require_config(ctx)
    _run_command(cfg, lambda services: services.backups.export_backup(backup_id, fmt.value))


@app.command("backup-import")
def backup_import_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup file"),
) -> None:
    """Import a portable backup file."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services: services.backups.import_backup(
            path.read_bytes(), filename=path.name
        ).summary(),
    )


@app.command("backup-cleanup")
def backup_cleanup_command(
    ctx: typer.Context,
    days: int | None = typer.Option(None, min=0, help="Retention window in days"),
) -> None:
    """Remove old non-full backups."""
    cfg = _require_config(ctx)
    _run_command(
        cfg, lambda services: {"removed": services.backups.cleanup_old_backups(days)}
    )


@app.command("backup-delete")
def backup_delete_command(
    ctx: typer.Context, backup_id: str = typer.Argument(..., help="Backup id")
) -> None:
    """Delete a backup."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services: {"backupId": backup_id, "deleted": services.backups.delete_backup(backup_id)},
    )


if __name__ == "__main__":
    app()
