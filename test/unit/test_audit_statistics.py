"""Unit tests for audit statistics and suspicious-activity heuristics."""

import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from audit.events import Actor, AuditEvent, AuditSeverity
from audit.statistics import (
    AlertType,
    AnomalyThresholds,
    StatisticsPeriod,
    compute_statistics,
    detect_suspicious_activity,
    period_start,
)
from config import AnomalyConfig

UTC = ZoneInfo("UTC")
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _event(event_type: str, minutes_ago: float = 1, *, user: str = "u1",
           name: str = "Alice", details: dict | None = None,
           at: datetime | None = None) -> AuditEvent:
    return AuditEvent(
        timestamp=at or NOW - timedelta(minutes=minutes_ago),
        event_type=event_type,
        actor=Actor(user_id=user, user_name=name),
        details=details or {},
    )


def test_repeated_failed_logins_raise_one_alert(caplog) -> None:
    """Five failures for one user inside the window yield a single alert."""
    events = [
        _event("login_failed", minutes_ago=index * 5, user="anonymous",
               details={"attemptedUserId": "bob"})
        for index in range(5)
    ]
    caplog.set_level(logging.WARNING)

    alerts = detect_suspicious_activity(events, NOW, AnomalyThresholds(), UTC)

    assert len(alerts) == 1
    assert alerts[0].type == AlertType.MULTIPLE_FAILED_LOGINS
    assert alerts[0].severity == AuditSeverity.HIGH
    assert alerts[0].evidence == {"user_id": "bob", "count": 5}
    assert "multiple_failed_logins" in caplog.text


def test_failed_logins_below_threshold_do_not_alert() -> None:
    """Four failures stay under the default threshold."""
    events = [
        _event("login_failed", details={"attemptedUserId": "bob"}) for _ in range(4)
    ]

    assert detect_suspicious_activity(events, NOW, AnomalyThresholds(), UTC) == []


def test_failed_logins_outside_window_are_ignored() -> None:
    """Failures older than the window do not count."""
    events = [
        _event("login_failed", minutes_ago=61 + index, details={"attemptedUserId": "bob"})
        for index in range(6)
    ]

    assert detect_suspicious_activity(events, NOW, AnomalyThresholds(), UTC) == []


def test_failed_logins_group_per_user() -> None:
    """Failures for different users are counted separately."""
    events = [
        _event("login_failed", details={"attemptedUserId": "bob"}) for _ in range(3)
    ] + [
        _event("login_failed", details={"attemptedUserId": "carol"}) for _ in range(3)
    ]

    assert detect_suspicious_activity(events, NOW, AnomalyThresholds(), UTC) == []


def test_excessive_patient_access_counts_breadth_not_volume() -> None:
    """Many views of one patient do not alert; many distinct patients do."""
    repeated = [
        _event("patient_viewed", details={"patientId": "P-1"}) for _ in range(50)
    ]
    broad = [
        _event("patient_viewed", user="u2", details={"patientId": f"P-{index}"})
        for index in range(20)
    ]

    assert detect_suspicious_activity(repeated, NOW, AnomalyThresholds(), UTC) == []
    alerts = detect_suspicious_activity(broad, NOW, AnomalyThresholds(), UTC)
    assert [alert.type for alert in alerts] == [AlertType.EXCESSIVE_PATIENT_ACCESS]
    assert alerts[0].evidence == {"user_id": "u2", "patient_count": 20}
    assert alerts[0].severity == AuditSeverity.MEDIUM


def test_off_hours_activity_uses_local_hour() -> None:
    """Late-night local events trigger the off-hours heuristic."""
    late = datetime(2025, 3, 10, 23, 30, tzinfo=timezone.utc)
    events = [_event("patient_updated", at=late - timedelta(minutes=index)) for index in range(10)]

    alerts = detect_suspicious_activity(events, late, AnomalyThresholds(), UTC)
    paris = detect_suspicious_activity(
        events, late, AnomalyThresholds(), ZoneInfo("Europe/Paris")
    )

    assert [alert.type for alert in alerts] == [AlertType.OFF_HOURS_ACTIVITY]
    assert alerts[0].evidence == {"event_count": 10}
    # 00:30 local in Paris is still off hours.
    assert [alert.type for alert in paris] == [AlertType.OFF_HOURS_ACTIVITY]
    assert detect_suspicious_activity(events, late, AnomalyThresholds(), ZoneInfo("America/New_York")) == []


def test_thresholds_follow_configuration() -> None:
    """Thresholds are read from the anomaly config section."""
    thresholds = AnomalyThresholds.from_config(
        AnomalyConfig(window_minutes=30, failed_login_threshold=2)
    )
    events = [_event("login_failed", details={"attemptedUserId": "bob"}) for _ in range(2)]

    assert thresholds.window == timedelta(minutes=30)
    assert [alert.type for alert in detect_suspicious_activity(events, NOW, thresholds, UTC)] == [
        AlertType.MULTIPLE_FAILED_LOGINS
    ]


@pytest.mark.parametrize(
    "hour, expected", [(6, True), (7, False), (22, False), (23, True), (0, True)]
)
def test_working_hours_are_inclusive(hour: int, expected: bool) -> None:
    """Hours 7 through 22 count as the working day."""
    assert AnomalyThresholds().is_off_hours(hour) is expected


def test_statistics_over_empty_log_are_zero() -> None:
    """No events produce zero-valued aggregates."""
    stats = compute_statistics([], "week", NOW, UTC)

    assert stats.total_events == 0
    assert stats.unique_users == 0
    assert stats.events_by_hour == [0] * 24
    assert stats.to_dict()["topUsers"] == {}


def test_statistics_aggregate_within_period() -> None:
    """Only events inside the trailing period are counted."""
    events = [
        _event("login", minutes_ago=30, user="u1", name="Alice"),
        _event("patient_deleted", minutes_ago=60, user="u1", name="Alice"),
        _event("login_failed", minutes_ago=120, user="u2", name="Bob"),
        _event("login", minutes_ago=60 * 24 * 3, user="u3", name="Carol"),
    ]

    day = compute_statistics(events, StatisticsPeriod.DAY, NOW, UTC)
    week = compute_statistics(events, "week", NOW, UTC)

    assert day.total_events == 3
    assert day.unique_users == 2
    assert day.events_by_type == {"login": 1, "patient_deleted": 1, "login_failed": 1}
    assert day.security_events == 1
    assert day.critical_events == 1
    assert day.top_users == {"Alice": 2, "Bob": 1}
    assert day.events_by_hour[11] == 2
    assert day.events_by_hour[10] == 1
    assert week.total_events == 4
    assert week.to_dict()["period"] == "week"


def test_period_bounds() -> None:
    """Month and year periods step back calendar months."""
    now = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)

    assert period_start("day", now) == now - timedelta(days=1)
    assert period_start("week", now) == now - timedelta(days=7)
    assert period_start("month", now) == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert period_start("year", now) == datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


def test_unknown_period_falls_back_to_week(caplog) -> None:
    """Unrecognized periods are treated as a week."""
    caplog.set_level(logging.WARNING)

    assert period_start("fortnight", NOW) == NOW - timedelta(days=7)
    assert "Unknown statistics period" in caplog.text
