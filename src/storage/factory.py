"""Build the configured keyed store backend."""

from __future__ import annotations

import logging
from pathlib import Path

from config import Settings
from storage.interface import KeyValueStore
from storage.memory import InMemoryKeyValueStore
from storage.sqlalchemy_store import SqlAlchemyKeyValueStore

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url == "sqlite:///:memory:":
        return
    Path(url[len(prefix) :]).expanduser().parent.mkdir(parents=True, exist_ok=True)


def build_key_value_store(settings: Settings) -> KeyValueStore:
    """Return the store selected by ``storage.backend``."""
    if settings.storage.backend == "sqlalchemy":
        _ensure_sqlite_directory(settings.storage.url)
        logger.info("Using SQLAlchemy bucket store.")
        return SqlAlchemyKeyValueStore.from_url(settings.storage.url)
    logger.info("Using in-memory bucket store.")
    return InMemoryKeyValueStore()
