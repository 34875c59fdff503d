"""Configuration management for the compliance audit and backup subsystem."""

from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "compliance.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/clinic-compliance/compliance.yml").expanduser(),
    Path("/config/compliance.yml"),
]
_USER_SECRETS_PATHS = [
    Path("~/.config/clinic-compliance/secrets.yml").expanduser(),
    Path("/config/secrets.yml"),
]


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _merge(target: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge nested mappings, letting incoming values win."""
    for key, value in incoming.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            _merge(existing, value)
        else:
            target[key] = value
    return target


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            _merge(merged, _load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "COMPLIANCE_LOG_LEVEL": ("log_level", "str"),
        "COMPLIANCE_LOG_JSON": ("log_json", "bool"),
        "COMPLIANCE_STORAGE_BACKEND": ("storage.backend", "str"),
        "COMPLIANCE_DATABASE_URL": ("storage.url", "str"),
        "COMPLIANCE_AUDIT_MAX_EVENTS": ("audit.max_events", "int"),
        "COMPLIANCE_AUDIT_RETENTION_DAYS": ("audit.retention_days", "int"),
        "COMPLIANCE_BACKUP_MAX_BACKUPS": ("backup.max_backups", "int"),
        "COMPLIANCE_BACKUP_RETENTION_DAYS": ("backup.retention_days", "int"),
        "COMPLIANCE_EXPORT_DIR": ("backup.export_dir", "str"),
        "USER_TIMEZONE": ("user.timezone", "str"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class StorageConfig(BaseModel):
    """Keyed bucket store backend selection."""

    backend: str = "sqlalchemy"
    url: str = "sqlite:///data/compliance.db"
    key_prefix: str = "medical_pro_"

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        """Ensure the storage backend is supported."""
        normalized = value.strip().lower()
        if normalized not in {"memory", "sqlalchemy"}:
            raise ValueError("storage.backend must be memory or sqlalchemy.")
        return normalized


class AuditConfig(BaseModel):
    """Audit log capacity and retention settings."""

    max_events: int = 10000
    retention_days: int = 365
    storage_key: str = "medical_pro_audit_logs"

    @field_validator("max_events")
    @classmethod
    def validate_max_events(cls, value: int) -> int:
        """Ensure the audit log capacity is positive."""
        if value < 1:
            raise ValueError("audit.max_events must be >= 1.")
        return value

    @field_validator("retention_days")
    @classmethod
    def validate_retention_days(cls, value: int) -> int:
        """Ensure audit retention days is non-negative."""
        if value < 0:
            raise ValueError("audit.retention_days must be >= 0.")
        return value


class AnomalyConfig(BaseModel):
    """Thresholds for suspicious-activity heuristics."""

    window_minutes: int = 60
    failed_login_threshold: int = 5
    distinct_patient_threshold: int = 20
    off_hours_threshold: int = 10
    work_day_start_hour: int = 7
    work_day_end_hour: int = 22

    @field_validator(
        "window_minutes",
        "failed_login_threshold",
        "distinct_patient_threshold",
        "off_hours_threshold",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure window and threshold values are positive."""
        if value < 1:
            raise ValueError("anomaly windows and thresholds must be >= 1.")
        return value

    @model_validator(mode="after")
    def validate_work_day(self) -> "AnomalyConfig":
        """Ensure the working-hours range is a valid hour span."""
        if not 0 <= self.work_day_start_hour <= 23 or not 0 <= self.work_day_end_hour <= 23:
            raise ValueError("anomaly work day hours must be between 0 and 23.")
        if self.work_day_start_hour > self.work_day_end_hour:
            raise ValueError("anomaly.work_day_start_hour must not exceed work_day_end_hour.")
        return self


class BackupConfig(BaseModel):
    """Backup store capacity, retention and export settings."""

    max_backups: int = 50
    retention_days: int = 30
    schema_version: str = "2.0.0"
    storage_key: str = "medical_pro_backups"
    export_dir: str = "data/exports"
    platform_info: str = Field(default_factory=platform.platform)

    @field_validator("max_backups")
    @classmethod
    def validate_max_backups(cls, value: int) -> int:
        """Ensure the backup store capacity is positive."""
        if value < 1:
            raise ValueError("backup.max_backups must be >= 1.")
        return value

    @field_validator("retention_days")
    @classmethod
    def validate_retention_days(cls, value: int) -> int:
        """Ensure backup retention days is non-negative."""
        if value < 0:
            raise ValueError("backup.retention_days must be >= 0.")
        return value


class UserConfig(BaseModel):
    """Local presentation settings."""

    timezone: str = "Europe/Paris"

    @model_validator(mode="after")
    def validate_timezone(self) -> "UserConfig":
        """Ensure the configured timezone is valid."""
        try:
            ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {self.timezone}") from exc
        return self


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_SECRETS_PATHS),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Keyed bucket store
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Audit log
    audit: AuditConfig = Field(default_factory=AuditConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)

    # Backups
    backup: BackupConfig = Field(default_factory=BackupConfig)

    # User Context
    user: UserConfig = Field(default_factory=UserConfig)


# Global settings instance
settings = Settings()
