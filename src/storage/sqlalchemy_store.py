"""SQLAlchemy-backed keyed store persisting buckets as table rows."""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from errors import StorageError
from models import Base, StorageBucket
from storage.interface import KeyValueStore

logger = logging.getLogger(__name__)


class SqlAlchemyKeyValueStore(KeyValueStore):
    """Persist each key as one ``storage_buckets`` row.

    Every call runs in its own session and commits before returning, so a
    successful ``set`` is durable once it returns.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, url: str) -> "SqlAlchemyKeyValueStore":
        """Create the engine and table for ``url`` and return a store."""
        engine = create_engine(url, pool_pre_ping=True)
        Base.metadata.create_all(engine)
        return cls(sessionmaker(bind=engine))

    def get(self, key: str) -> str | None:
        """Return the blob stored under ``key`` or None when absent."""
        try:
            with closing(self._session_factory()) as session:
                row = session.get(StorageBucket, key)
                return None if row is None else row.value
        except SQLAlchemyError as exc:
            logger.exception("Failed to read bucket key=%s.", key)
            raise StorageError(f"failed to read {key}: {exc}", key=key) from exc

    def set(self, key: str, value: str) -> None:
        """Insert or replace the row for ``key``."""
        if not isinstance(value, str):
            raise StorageError("stored values must be serialized strings", key=key)
        try:
            with closing(self._session_factory()) as session:
                row = session.get(StorageBucket, key)
                if row is None:
                    session.add(StorageBucket(name=key, value=value))
                else:
                    row.value = value
                    row.updated_at = datetime.now(timezone.utc)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to write bucket key=%s.", key)
            raise StorageError(f"failed to write {key}: {exc}", key=key) from exc

    def delete(self, key: str) -> bool:
        """Delete the row for ``key`` and return whether it existed."""
        try:
            with closing(self._session_factory()) as session:
                row = session.get(StorageBucket, key)
                if row is None:
                    return False
                session.delete(row)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            logger.exception("Failed to delete bucket key=%s.", key)
            raise StorageError(f"failed to delete {key}: {exc}", key=key) from exc

    def keys(self) -> list[str]:
        """Return all stored keys in name order."""
        try:
            with closing(self._session_factory()) as session:
                rows = session.query(StorageBucket.name).order_by(StorageBucket.name).all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list bucket keys.")
            raise StorageError(f"failed to list keys: {exc}") from exc
        return [row[0] for row in rows]
