"""Unit tests for audit event classification and the event record."""

from datetime import datetime, timezone

import pytest

from audit.events import (
    AuditCategory,
    AuditEvent,
    AuditEventType,
    AuditSeverity,
    EVENT_CATEGORIES,
    EVENT_SEVERITIES,
    category_for,
    severity_for,
)


@pytest.mark.parametrize("event_type", list(AuditEventType))
def test_every_event_type_is_classified(event_type: AuditEventType) -> None:
    """Every vocabulary member maps to a category and a severity."""
    assert isinstance(category_for(event_type), AuditCategory)
    assert isinstance(severity_for(event_type), AuditSeverity)


@pytest.mark.parametrize("token", ["", "made_up_event", None, "  "])
def test_unknown_types_degrade_to_defaults(token) -> None:
    """Unrecognized tokens are under-classified, never rejected."""
    assert category_for(token) == AuditCategory.SYSTEM
    assert severity_for(token) == AuditSeverity.LOW


def test_lookup_tables_match_documented_classification() -> None:
    """Spot-check the category and severity tables."""
    assert category_for("login_failed") == AuditCategory.SECURITY
    assert severity_for("login_failed") == AuditSeverity.HIGH
    assert category_for(AuditEventType.CONSENT_GRANTED) == AuditCategory.COMPLIANCE
    assert severity_for(AuditEventType.PATIENT_DELETED) == AuditSeverity.CRITICAL
    assert severity_for(AuditEventType.PATIENT_CREATED) == AuditSeverity.MEDIUM
    assert category_for(AuditEventType.BACKUP_CREATED) == AuditCategory.SYSTEM
    assert set(EVENT_CATEGORIES) <= {item.value for item in AuditEventType}
    assert set(EVENT_SEVERITIES) <= {item.value for item in AuditEventType}


def test_event_ignores_caller_supplied_classification() -> None:
    """Category and severity are recomputed from the event type."""
    event = AuditEvent(
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
        event_type="patient_deleted",
        category="system",
        severity="low",
    )

    assert event.category == AuditCategory.PATIENT_DATA
    assert event.severity == AuditSeverity.CRITICAL


def test_stored_record_is_reclassified_on_load() -> None:
    """A tampered stored record regains its true severity."""
    record = {
        "id": "evt-1",
        "timestamp": "2025-01-01T10:00:00.000Z",
        "eventType": "user_deleted",
        "category": "system",
        "severity": "low",
        "actor": {"userId": "u1", "userName": "Ann", "userRole": "admin"},
        "sessionId": "s1",
        "details": {"userId": "u9"},
    }

    event = AuditEvent.model_validate(record)

    assert event.severity == AuditSeverity.CRITICAL
    assert event.category == AuditCategory.ADMINISTRATION
    assert event.actor.user_name == "Ann"
    assert event.timestamp == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_record_uses_camel_case_keys() -> None:
    """Persisted records use the camelCase wire names."""
    event = AuditEvent(
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
        event_type=AuditEventType.LOGIN,
    )

    record = event.to_record()

    assert record["eventType"] == "login"
    assert record["sessionId"] == "no-session"
    assert record["actor"]["userId"] == "anonymous"
    assert record["category"] == "authentication"


def test_naive_timestamps_are_treated_as_utc() -> None:
    """Naive timestamps are normalized to aware UTC."""
    event = AuditEvent(timestamp=datetime(2025, 1, 1, 8, 30), event_type="login")

    assert event.timestamp.tzinfo is not None
    assert event.timestamp.utcoffset().total_seconds() == 0


def test_searchable_text_covers_type_actor_and_details() -> None:
    """Free-text search covers the type, actor name and details."""
    event = AuditEvent(
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
        event_type="patient_viewed",
        actor={"userId": "u1", "userName": "Dr Martin"},
        details={"patientId": "P-42"},
    )

    text = event.searchable_text()

    assert "patient_viewed" in text
    assert "dr martin" in text
    assert "p-42" in text
