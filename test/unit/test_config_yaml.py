"""Unit tests for YAML configuration loading."""

import pytest
from pydantic import ValidationError

import config as config_module

_ENV_KEYS = [
    "COMPLIANCE_LOG_LEVEL",
    "COMPLIANCE_LOG_JSON",
    "COMPLIANCE_STORAGE_BACKEND",
    "COMPLIANCE_DATABASE_URL",
    "COMPLIANCE_AUDIT_MAX_EVENTS",
    "COMPLIANCE_AUDIT_RETENTION_DAYS",
    "COMPLIANCE_BACKUP_MAX_BACKUPS",
    "COMPLIANCE_BACKUP_RETENTION_DAYS",
    "COMPLIANCE_EXPORT_DIR",
    "USER_TIMEZONE",
]


def _clear_env(monkeypatch, keys):
    """Clear environment variables for config tests."""
    for key in keys:
        monkeypatch.delenv(key, raising=False)


def _use_paths(monkeypatch, default, user=None, secrets=None):
    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", default)
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", user or [])
    monkeypatch.setattr(config_module, "_USER_SECRETS_PATHS", secrets or [])


def test_yaml_precedence(monkeypatch, tmp_path):
    """Environment variables override secrets, user, and default YAML."""
    defaults = tmp_path / "defaults.yml"
    user_cfg = tmp_path / "user.yml"
    secrets = tmp_path / "secrets.yml"

    defaults.write_text(
        "\n".join(
            [
                "audit:",
                "  max_events: 100",
                "  retention_days: 30",
                "backup:",
                "  max_backups: 5",
                "  retention_days: 7",
                "user:",
                "  timezone: Europe/Paris",
            ]
        ),
        encoding="utf-8",
    )
    user_cfg.write_text(
        "\n".join(
            [
                "audit:",
                "  max_events: 200",
                "backup:",
                "  max_backups: 6",
                "user:",
                "  timezone: Europe/London",
            ]
        ),
        encoding="utf-8",
    )
    secrets.write_text(
        "\n".join(
            [
                "storage:",
                "  url: sqlite:///secret.db",
                "backup:",
                "  max_backups: 7",
            ]
        ),
        encoding="utf-8",
    )

    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("COMPLIANCE_AUDIT_MAX_EVENTS", "400")
    monkeypatch.setenv("USER_TIMEZONE", "America/New_York")
    _use_paths(monkeypatch, defaults, [user_cfg], [secrets])

    settings = config_module.Settings()

    assert settings.audit.max_events == 400
    assert settings.audit.retention_days == 30
    assert settings.backup.max_backups == 7
    assert settings.backup.retention_days == 7
    assert settings.storage.url == "sqlite:///secret.db"
    assert settings.user.timezone == "America/New_York"


def test_missing_yaml_files(monkeypatch, tmp_path):
    """Missing YAML files fall back to defaults and environment settings."""
    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("COMPLIANCE_STORAGE_BACKEND", "SQLAlchemy")
    monkeypatch.setenv("COMPLIANCE_LOG_JSON", "yes")
    _use_paths(
        monkeypatch,
        tmp_path / "missing-default.yml",
        [tmp_path / "missing-user.yml"],
        [tmp_path / "missing-secrets.yml"],
    )

    settings = config_module.Settings()

    assert settings.storage.backend == "sqlalchemy"
    assert settings.log_json is True
    assert settings.audit.max_events == 10000
    assert settings.backup.max_backups == 50
    assert settings.anomaly.failed_login_threshold == 5


def test_shipped_defaults_load(monkeypatch):
    """The bundled compliance.yml parses into settings."""
    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", [])
    monkeypatch.setattr(config_module, "_USER_SECRETS_PATHS", [])

    settings = config_module.Settings()

    assert settings.audit.storage_key == "medical_pro_audit_logs"
    assert settings.backup.storage_key == "medical_pro_backups"
    assert settings.anomaly.work_day_end_hour == 22
    assert settings.storage.backend == "sqlalchemy"


def test_model_default_backend_persists(monkeypatch, tmp_path):
    """Without YAML or environment the store backend is SQLAlchemy."""
    _clear_env(monkeypatch, _ENV_KEYS)
    _use_paths(monkeypatch, tmp_path / "missing-default.yml")

    settings = config_module.Settings()

    assert settings.storage.backend == "sqlalchemy"
    assert settings.storage.url == "sqlite:///data/compliance.db"


def test_env_values_are_parsed_by_kind(monkeypatch, tmp_path):
    """Integer and boolean variables are converted; others stay strings."""
    _clear_env(monkeypatch, _ENV_KEYS)
    monkeypatch.setenv("COMPLIANCE_BACKUP_RETENTION_DAYS", "14")
    monkeypatch.setenv("COMPLIANCE_LOG_JSON", "off")
    monkeypatch.setenv("COMPLIANCE_EXPORT_DIR", "/srv/exports")
    _use_paths(monkeypatch, tmp_path / "missing-default.yml")

    settings = config_module.Settings()

    assert settings.backup.retention_days == 14
    assert settings.log_json is False
    assert settings.backup.export_dir == "/srv/exports"
    assert config_module._parse_env_value("[1]", "json") == "[1]"


def test_non_mapping_yaml_raises(monkeypatch, tmp_path):
    """Non-mapping YAML raises a validation error."""
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("- just\n- a\n- list\n", encoding="utf-8")
    _use_paths(monkeypatch, defaults)

    with pytest.raises(ValueError, match="Config file must contain a mapping"):
        config_module.Settings()


@pytest.mark.parametrize(
    "yaml_text",
    [
        "audit:\n  max_events: 0\n",
        "backup:\n  retention_days: -1\n",
        "storage:\n  backend: redis\n",
        "anomaly:\n  work_day_start_hour: 23\n  work_day_end_hour: 7\n",
        "user:\n  timezone: Mars/Olympus\n",
    ],
)
def test_invalid_values_are_rejected(monkeypatch, tmp_path, yaml_text):
    """Out-of-range values fail validation."""
    defaults = tmp_path / "defaults.yml"
    defaults.write_text(yaml_text, encoding="utf-8")
    _clear_env(monkeypatch, _ENV_KEYS)
    _use_paths(monkeypatch, defaults)

    with pytest.raises(ValidationError):
        config_module.Settings()
