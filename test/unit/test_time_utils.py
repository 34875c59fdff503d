"""Unit tests for timezone conversion helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from config import settings
from time_utils import (
    get_local_timezone,
    isoformat,
    parse_timestamp,
    subtract_months,
    to_local,
    to_utc,
)


def test_get_local_timezone_uses_settings(monkeypatch) -> None:
    """Local timezone resolves from settings."""
    monkeypatch.setattr(settings.user, "timezone", "UTC", raising=False)
    tz = get_local_timezone()
    assert tz.key == "UTC"


def test_get_local_timezone_rejects_unknown_names() -> None:
    """Unknown zone names raise ValueError."""
    with pytest.raises(ValueError, match="Invalid timezone"):
        get_local_timezone("Mars/Olympus")


def test_to_utc_treats_naive_values_as_utc() -> None:
    """to_utc attaches UTC to naive datetimes."""
    converted = to_utc(datetime(2025, 1, 15, 12, 0, 0))

    assert converted.tzinfo == timezone.utc
    assert converted.hour == 12


def test_to_local_converts_from_utc(monkeypatch) -> None:
    """to_local converts aware UTC times to local timezone."""
    monkeypatch.setattr(settings.user, "timezone", "America/New_York", raising=False)
    utc_time = datetime(2025, 1, 15, 17, 0, 0, tzinfo=timezone.utc)
    converted = to_local(utc_time)

    assert converted.hour == 12
    assert converted.tzinfo is not None


def test_parse_and_render_iso_timestamps() -> None:
    """ISO strings with a Z suffix round-trip at millisecond precision."""
    parsed = parse_timestamp("2025-03-10T12:00:00.250Z")

    assert parsed == datetime(2025, 3, 10, 12, 0, 0, 250000, tzinfo=timezone.utc)
    assert isoformat(parsed) == "2025-03-10T12:00:00.250Z"


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (datetime(2025, 3, 31), 1, datetime(2025, 2, 28)),
        (datetime(2024, 3, 31), 1, datetime(2024, 2, 29)),
        (datetime(2025, 1, 15), 1, datetime(2024, 12, 15)),
        (datetime(2025, 6, 30), 12, datetime(2024, 6, 30)),
    ],
)
def test_subtract_months_clamps_day(start, months, expected) -> None:
    """Month arithmetic clamps to the last valid day."""
    assert subtract_months(start, months) == expected
