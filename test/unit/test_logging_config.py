"""Unit tests for logging configuration and bound context."""

import io
import json
import logging

import pytest

from logging_config import configure_logging, get_context, log_context


@pytest.fixture
def restore_root_logging():
    """Restore root handlers after a test reconfigures logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_log_context_is_scoped() -> None:
    """Context bound in a block is removed afterwards."""
    with log_context(operation="backup_restore", backup_id="b1", ignored=None):
        assert get_context() == {"operation": "backup_restore", "backup_id": "b1"}
        with log_context(bucket="patients"):
            assert get_context()["bucket"] == "patients"
        assert "bucket" not in get_context()
    assert get_context() == {}


def test_json_output_includes_context(restore_root_logging) -> None:
    """JSON log lines carry the bound context fields."""
    stream = io.StringIO()
    configure_logging(level="info", json_output=True, stream=stream)

    with log_context(backup_id="b1"):
        logging.getLogger("backup.service").info("Created backup")

    payload = json.loads(stream.getvalue().strip())
    assert payload["message"] == "Created backup"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "backup.service"
    assert payload["backup_id"] == "b1"


def test_plain_output_appends_context(restore_root_logging) -> None:
    """Plain log lines end with sorted key=value context."""
    stream = io.StringIO()
    configure_logging(level="DEBUG", stream=stream)

    with log_context(operation="backup_create", backup_id="b2"):
        logging.getLogger("backup.service").warning("Slow snapshot")

    line = stream.getvalue().strip()
    assert "WARNING backup.service Slow snapshot" in line
    assert line.endswith("backup_id=b2 operation=backup_create")


def test_reconfiguring_replaces_handlers(restore_root_logging) -> None:
    """Repeated configuration keeps a single root handler."""
    configure_logging(stream=io.StringIO())
    configure_logging(stream=io.StringIO())

    assert len(logging.getLogger().handlers) == 1
