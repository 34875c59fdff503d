"""Audit event vocabulary, classification tables and the event record."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from time_utils import to_utc


class AuditEventType(str, Enum):
    """Closed vocabulary of audited actions."""

    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    SESSION_EXPIRED = "session_expired"

    # Patients
    PATIENT_CREATED = "patient_created"
    PATIENT_UPDATED = "patient_updated"
    PATIENT_DELETED = "patient_deleted"
    PATIENT_VIEWED = "patient_viewed"
    PATIENT_SEARCHED = "patient_searched"
    PATIENT_EXPORTED = "patient_exported"

    # Medical records
    MEDICAL_RECORD_CREATED = "medical_record_created"
    MEDICAL_RECORD_UPDATED = "medical_record_updated"
    MEDICAL_RECORD_DELETED = "medical_record_deleted"
    MEDICAL_RECORD_VIEWED = "medical_record_viewed"

    # Appointments
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_UPDATED = "appointment_updated"
    APPOINTMENT_DELETED = "appointment_deleted"
    APPOINTMENT_CANCELLED = "appointment_cancelled"

    # Consents
    CONSENT_GRANTED = "consent_granted"
    CONSENT_REVOKED = "consent_revoked"
    CONSENT_VIEWED = "consent_viewed"
    CONSENT_TEMPLATE_CREATED = "consent_template_created"
    CONSENT_TEMPLATE_UPDATED = "consent_template_updated"

    # Administration
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_ROLE_CHANGED = "user_role_changed"
    USER_PERMISSIONS_CHANGED = "user_permissions_changed"

    # Teams and delegations
    TEAM_CREATED = "team_created"
    TEAM_UPDATED = "team_updated"
    TEAM_DELETED = "team_deleted"
    DELEGATION_CREATED = "delegation_created"
    DELEGATION_APPROVED = "delegation_approved"
    DELEGATION_REVOKED = "delegation_revoked"

    # Billing
    INVOICE_CREATED = "invoice_created"
    INVOICE_UPDATED = "invoice_updated"
    INVOICE_SENT = "invoice_sent"
    QUOTE_CREATED = "quote_created"
    QUOTE_UPDATED = "quote_updated"
    QUOTE_SENT = "quote_sent"

    # Security
    PERMISSION_DENIED = "permission_denied"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DATA_EXPORT = "data_export"
    DATA_IMPORT = "data_import"

    # System
    SYSTEM_ERROR = "system_error"
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"
    BACKUP_DELETED = "backup_deleted"
    BACKUP_CLEANUP = "backup_cleanup"
    SETTINGS_CHANGED = "settings_changed"


class AuditCategory(str, Enum):
    """Coarse reporting group derived from the event type."""

    AUTHENTICATION = "authentication"
    PATIENT_DATA = "patient_data"
    MEDICAL_DATA = "medical_data"
    ADMINISTRATION = "administration"
    SECURITY = "security"
    SYSTEM = "system"
    COMPLIANCE = "compliance"


class AuditSeverity(str, Enum):
    """Criticality tier derived from the event type."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_CATEGORY = AuditCategory.SYSTEM
DEFAULT_SEVERITY = AuditSeverity.LOW

EVENT_CATEGORIES: dict[str, AuditCategory] = {
    AuditEventType.LOGIN.value: AuditCategory.AUTHENTICATION,
    AuditEventType.LOGOUT.value: AuditCategory.AUTHENTICATION,
    AuditEventType.LOGIN_FAILED.value: AuditCategory.SECURITY,
    AuditEventType.SESSION_EXPIRED.value: AuditCategory.AUTHENTICATION,
    AuditEventType.PATIENT_CREATED.value: AuditCategory.PATIENT_DATA,
    AuditEventType.PATIENT_UPDATED.value: AuditCategory.PATIENT_DATA,
    AuditEventType.PATIENT_DELETED.value: AuditCategory.PATIENT_DATA,
    AuditEventType.PATIENT_VIEWED.value: AuditCategory.PATIENT_DATA,
    AuditEventType.MEDICAL_RECORD_CREATED.value: AuditCategory.MEDICAL_DATA,
    AuditEventType.MEDICAL_RECORD_UPDATED.value: AuditCategory.MEDICAL_DATA,
    AuditEventType.MEDICAL_RECORD_DELETED.value: AuditCategory.MEDICAL_DATA,
    AuditEventType.MEDICAL_RECORD_VIEWED.value: AuditCategory.MEDICAL_DATA,
    AuditEventType.USER_CREATED.value: AuditCategory.ADMINISTRATION,
    AuditEventType.USER_UPDATED.value: AuditCategory.ADMINISTRATION,
    AuditEventType.USER_DELETED.value: AuditCategory.ADMINISTRATION,
    AuditEventType.PERMISSION_DENIED.value: AuditCategory.SECURITY,
    AuditEventType.SUSPICIOUS_ACTIVITY.value: AuditCategory.SECURITY,
    AuditEventType.CONSENT_GRANTED.value: AuditCategory.COMPLIANCE,
    AuditEventType.CONSENT_REVOKED.value: AuditCategory.COMPLIANCE,
}

EVENT_SEVERITIES: dict[str, AuditSeverity] = {
    AuditEventType.PATIENT_DELETED.value: AuditSeverity.CRITICAL,
    AuditEventType.MEDICAL_RECORD_DELETED.value: AuditSeverity.CRITICAL,
    AuditEventType.USER_DELETED.value: AuditSeverity.CRITICAL,
    AuditEventType.SYSTEM_ERROR.value: AuditSeverity.CRITICAL,
    AuditEventType.SUSPICIOUS_ACTIVITY.value: AuditSeverity.CRITICAL,
    AuditEventType.LOGIN_FAILED.value: AuditSeverity.HIGH,
    AuditEventType.PERMISSION_DENIED.value: AuditSeverity.HIGH,
    AuditEventType.USER_ROLE_CHANGED.value: AuditSeverity.HIGH,
    AuditEventType.DATA_EXPORT.value: AuditSeverity.HIGH,
    AuditEventType.PATIENT_CREATED.value: AuditSeverity.MEDIUM,
    AuditEventType.PATIENT_UPDATED.value: AuditSeverity.MEDIUM,
    AuditEventType.MEDICAL_RECORD_CREATED.value: AuditSeverity.MEDIUM,
    AuditEventType.USER_CREATED.value: AuditSeverity.MEDIUM,
    AuditEventType.BACKUP_DELETED.value: AuditSeverity.MEDIUM,
}


def _token(event_type: AuditEventType | str | None) -> str:
    if isinstance(event_type, AuditEventType):
        return event_type.value
    return str(event_type or "").strip()


def category_for(event_type: AuditEventType | str | None) -> AuditCategory:
    """Return the category for ``event_type``; unknown types map to system."""
    return EVENT_CATEGORIES.get(_token(event_type), DEFAULT_CATEGORY)


def severity_for(event_type: AuditEventType | str | None) -> AuditSeverity:
    """Return the severity for ``event_type``; unknown types map to low."""
    return EVENT_SEVERITIES.get(_token(event_type), DEFAULT_SEVERITY)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Actor(_CamelModel):
    """Identity of the principal performing an audited action."""

    user_id: str = "anonymous"
    user_name: str = "Anonymous user"
    user_role: str = "unknown"


ANONYMOUS_ACTOR = Actor()
NO_SESSION = "no-session"


class EventContext(_CamelModel):
    """Environment descriptors captured for diagnostics only."""

    locale: str | None = None
    url: str | None = None
    viewport: str | None = None
    timezone: str | None = None
    platform: str | None = None


class AuditEvent(_CamelModel):
    """Immutable audit record.

    ``category`` and ``severity`` are always recomputed from ``event_type``
    whatever the input says, including when records are loaded back from
    storage, so an actor cannot understate the severity of an action.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime
    event_type: str
    category: AuditCategory = DEFAULT_CATEGORY
    severity: AuditSeverity = DEFAULT_SEVERITY
    actor: Actor = ANONYMOUS_ACTOR
    session_id: str = NO_SESSION
    details: dict[str, Any] = Field(default_factory=dict)
    context: EventContext = Field(default_factory=EventContext)

    @model_validator(mode="before")
    @classmethod
    def derive_classification(cls, data: Any) -> Any:
        """Overwrite caller-supplied classification with the lookup tables."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        event_type = _token(data.pop("event_type", data.pop("eventType", None)))
        data["event_type"] = event_type
        for key in ("category", "severity"):
            data.pop(key, None)
        data["category"] = category_for(event_type)
        data["severity"] = severity_for(event_type)
        return data

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        """Store timestamps as aware UTC; naive values are taken as UTC."""
        return to_utc(value)

    def to_record(self) -> dict[str, Any]:
        """Return the JSON-ready representation persisted in the log."""
        return self.model_dump(mode="json", by_alias=True)

    def searchable_text(self) -> str:
        """Return the lower-cased text matched by free-text search."""
        return " ".join(
            [
                self.event_type,
                self.actor.user_name,
                json.dumps(self.details, default=str, ensure_ascii=False),
            ]
        ).lower()
