"""Aggregate statistics and suspicious-activity heuristics over audit events."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from audit.events import AuditCategory, AuditEvent, AuditEventType, AuditSeverity
from config import AnomalyConfig
from time_utils import parse_timestamp, subtract_months, to_local

logger = logging.getLogger(__name__)

UNKNOWN_USER = "unknown"


class StatisticsPeriod(str, Enum):
    """Trailing windows supported by ``compute_statistics``."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class AlertType(str, Enum):
    """Kinds of suspicious-activity alerts."""

    MULTIPLE_FAILED_LOGINS = "multiple_failed_logins"
    EXCESSIVE_PATIENT_ACCESS = "excessive_patient_access"
    OFF_HOURS_ACTIVITY = "off_hours_activity"


@dataclass(frozen=True)
class AuditStatistics:
    """Counting aggregates over the events of one period."""

    period: str
    period_start: datetime
    total_events: int = 0
    unique_users: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    events_by_category: dict[str, int] = field(default_factory=dict)
    events_by_severity: dict[str, int] = field(default_factory=dict)
    events_by_hour: list[int] = field(default_factory=lambda: [0] * 24)
    top_users: dict[str, int] = field(default_factory=dict)
    security_events: int = 0
    critical_events: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the aggregates."""
        return {
            "period": self.period,
            "periodStart": self.period_start.isoformat(),
            "totalEvents": self.total_events,
            "uniqueUsers": self.unique_users,
            "eventsByType": dict(self.events_by_type),
            "eventsByCategory": dict(self.events_by_category),
            "eventsBySeverity": dict(self.events_by_severity),
            "eventsByHour": list(self.events_by_hour),
            "topUsers": dict(self.top_users),
            "securityEvents": self.security_events,
            "criticalEvents": self.critical_events,
        }


@dataclass(frozen=True)
class AnomalyThresholds:
    """Tunable limits for the suspicious-activity heuristics."""

    window: timedelta = timedelta(hours=1)
    failed_logins: int = 5
    distinct_patients: int = 20
    off_hours_events: int = 10
    work_day_start_hour: int = 7
    work_day_end_hour: int = 22

    @classmethod
    def from_config(cls, config: AnomalyConfig) -> "AnomalyThresholds":
        """Build thresholds from the ``anomaly`` configuration section."""
        return cls(
            window=timedelta(minutes=config.window_minutes),
            failed_logins=config.failed_login_threshold,
            distinct_patients=config.distinct_patient_threshold,
            off_hours_events=config.off_hours_threshold,
            work_day_start_hour=config.work_day_start_hour,
            work_day_end_hour=config.work_day_end_hour,
        )

    def is_off_hours(self, hour: int) -> bool:
        """Return True for a local hour outside the inclusive working range."""
        return hour < self.work_day_start_hour or hour > self.work_day_end_hour


@dataclass(frozen=True)
class SuspiciousActivityAlert:
    """A heuristic warning derived from recent audit events."""

    type: AlertType
    severity: AuditSeverity
    message: str
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the alert."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "evidence": dict(self.evidence),
        }


def period_start(period: StatisticsPeriod | str, now: datetime) -> datetime:
    """Return the inclusive lower bound of ``period`` ending at ``now``.

    Unrecognized periods fall back to a week.
    """
    try:
        resolved = StatisticsPeriod(getattr(period, "value", period))
    except ValueError:
        logger.warning("Unknown statistics period %r; using week.", period)
        resolved = StatisticsPeriod.WEEK
    if resolved == StatisticsPeriod.DAY:
        return now - timedelta(days=1)
    if resolved == StatisticsPeriod.MONTH:
        return subtract_months(now, 1)
    if resolved == StatisticsPeriod.YEAR:
        return subtract_months(now, 12)
    return now - timedelta(days=7)


def compute_statistics(
    events: Iterable[AuditEvent],
    period: StatisticsPeriod | str,
    now: datetime,
    tz: ZoneInfo,
) -> AuditStatistics:
    """Aggregate events with ``timestamp >= now - period``.

    Hour-of-day buckets use the local hour in ``tz``. Empty input yields
    zero-valued aggregates.
    """
    now = parse_timestamp(now)
    start = period_start(period, now)
    period_name = getattr(period, "value", period)

    by_type: Counter[str] = Counter()
    by_category: Counter[str] = Counter()
    by_severity: Counter[str] = Counter()
    by_user_name: Counter[str] = Counter()
    by_hour = [0] * 24
    users: set[str] = set()
    total = security = critical = 0

    for event in events:
        if event.timestamp < start:
            continue
        total += 1
        users.add(event.actor.user_id)
        by_type[event.event_type] += 1
        by_category[event.category.value] += 1
        by_severity[event.severity.value] += 1
        by_user_name[event.actor.user_name] += 1
        by_hour[to_local(event.timestamp, tz).hour] += 1
        if event.category == AuditCategory.SECURITY:
            security += 1
        if event.severity == AuditSeverity.CRITICAL:
            critical += 1

    return AuditStatistics(
        period=str(period_name),
        period_start=start,
        total_events=total,
        unique_users=len(users),
        events_by_type=dict(by_type),
        events_by_category=dict(by_category),
        events_by_severity=dict(by_severity),
        events_by_hour=by_hour,
        top_users=dict(by_user_name.most_common()),
        security_events=security,
        critical_events=critical,
    )


def _attempted_user(event: AuditEvent) -> str:
    for key in ("attemptedUserId", "userId"):
        value = event.details.get(key)
        if value:
            return str(value)
    if event.actor.user_id and event.actor.user_id != "anonymous":
        return event.actor.user_id
    return UNKNOWN_USER


def detect_suspicious_activity(
    events: Iterable[AuditEvent],
    now: datetime,
    thresholds: AnomalyThresholds,
    tz: ZoneInfo,
) -> list[SuspiciousActivityAlert]:
    """Run the three heuristics over events newer than ``now - window``."""
    now = parse_timestamp(now)
    window_start = now - thresholds.window
    recent = [event for event in events if event.timestamp > window_start]

    alerts: list[SuspiciousActivityAlert] = []

    failed_by_user: Counter[str] = Counter(
        _attempted_user(event)
        for event in recent
        if event.event_type == AuditEventType.LOGIN_FAILED.value
    )
    for user_id, count in failed_by_user.items():
        if count >= thresholds.failed_logins:
            alerts.append(
                SuspiciousActivityAlert(
                    type=AlertType.MULTIPLE_FAILED_LOGINS,
                    severity=AuditSeverity.HIGH,
                    message=f"{count} failed login attempts for user {user_id}",
                    evidence={"user_id": user_id, "count": count},
                )
            )

    patients_by_user: dict[str, set[str]] = defaultdict(set)
    for event in recent:
        if event.event_type != AuditEventType.PATIENT_VIEWED.value:
            continue
        patient_id = event.details.get("patientId")
        if patient_id is None:
            continue
        patients_by_user[event.actor.user_id].add(str(patient_id))
    for user_id, patient_ids in patients_by_user.items():
        if len(patient_ids) >= thresholds.distinct_patients:
            alerts.append(
                SuspiciousActivityAlert(
                    type=AlertType.EXCESSIVE_PATIENT_ACCESS,
                    severity=AuditSeverity.MEDIUM,
                    message=(
                        f"{len(patient_ids)} distinct patient records viewed by "
                        f"{user_id} within {_describe_window(thresholds.window)}"
                    ),
                    evidence={"user_id": user_id, "patient_count": len(patient_ids)},
                )
            )

    off_hours = sum(
        1 for event in recent if thresholds.is_off_hours(to_local(event.timestamp, tz).hour)
    )
    if off_hours >= thresholds.off_hours_events:
        alerts.append(
            SuspiciousActivityAlert(
                type=AlertType.OFF_HOURS_ACTIVITY,
                severity=AuditSeverity.MEDIUM,
                message=f"{off_hours} events outside working hours",
                evidence={"event_count": off_hours},
            )
        )

    if alerts:
        logger.warning(
            "Suspicious activity detected: %s",
            ", ".join(alert.type.value for alert in alerts),
        )
    return alerts


def _describe_window(window: timedelta) -> str:
    minutes = int(window.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return "1 hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"
