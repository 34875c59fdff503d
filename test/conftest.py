"""Pytest configuration for the compliance test suite."""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest


def _ensure_test_env() -> None:
    """Seed required environment variables for tests."""
    os.environ.setdefault("COMPLIANCE_STORAGE_BACKEND", "memory")
    os.environ.setdefault("USER_TIMEZONE", "UTC")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from models import Base  # noqa: E402
from storage.memory import InMemoryKeyValueStore  # noqa: E402


class FrozenClock:
    """Callable clock returning a settable aware UTC instant."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward by ``timedelta(**delta)``."""
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
    """Provide an empty in-memory keyed store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def frozen_clock() -> FrozenClock:
    """Provide a clock frozen at 2025-03-10 12:00 UTC."""
    return FrozenClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file."""
    db_path = tmp_path / "compliance.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()
