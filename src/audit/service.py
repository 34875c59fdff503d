"""Audit logging facade used by application code and the operator CLI."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from audit.events import ANONYMOUS_ACTOR, NO_SESSION, Actor, AuditEvent, AuditEventType, EventContext
from audit.export import LogExportFormat, export_logs
from audit.listeners import AuditListener
from audit.statistics import (
    AnomalyThresholds,
    AuditStatistics,
    StatisticsPeriod,
    SuspiciousActivityAlert,
    compute_statistics,
    detect_suspicious_activity,
)
from audit.store import AuditEventInput, AuditLogStore, AuditSearchCriteria
from config import Settings
from storage.interface import KeyValueStore
from time_utils import get_local_timezone, isoformat, utc_now

logger = logging.getLogger(__name__)

ActorProvider = Callable[[], Actor]
SessionProvider = Callable[[], str]

# Detail keys that name the principal explicitly, e.g. for login events
# recorded before a session exists.
_ACTOR_DETAIL_KEYS = {"userId": "user_id", "userName": "user_name", "userRole": "user_role"}

_PATIENT_ACTIONS = {
    "created": AuditEventType.PATIENT_CREATED,
    "updated": AuditEventType.PATIENT_UPDATED,
    "deleted": AuditEventType.PATIENT_DELETED,
    "viewed": AuditEventType.PATIENT_VIEWED,
}


class AuditLogService:
    """Entry point for recording and querying compliance audit events."""

    def __init__(
        self,
        store: AuditLogStore,
        *,
        thresholds: AnomalyThresholds | None = None,
        timezone: ZoneInfo | None = None,
        retention_days: int = 365,
        clock: Callable[[], datetime] = utc_now,
        actor_provider: ActorProvider | None = None,
        session_provider: SessionProvider | None = None,
        platform_info: str | None = None,
    ) -> None:
        self._store = store
        self._thresholds = thresholds or AnomalyThresholds()
        self._tz = timezone or get_local_timezone()
        self._retention_days = retention_days
        self._clock = clock
        self._actor_provider = actor_provider or (lambda: ANONYMOUS_ACTOR)
        self._session_provider = session_provider or (lambda: NO_SESSION)
        self._platform_info = platform_info

    @classmethod
    def from_settings(
        cls,
        backend: KeyValueStore,
        app_settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
        actor_provider: ActorProvider | None = None,
        session_provider: SessionProvider | None = None,
    ) -> "AuditLogService":
        """Build a service whose store and thresholds follow ``app_settings``."""
        store = AuditLogStore(
            backend,
            max_events=app_settings.audit.max_events,
            storage_key=app_settings.audit.storage_key,
            clock=clock,
        )
        return cls(
            store,
            thresholds=AnomalyThresholds.from_config(app_settings.anomaly),
            timezone=get_local_timezone(app_settings.user.timezone),
            retention_days=app_settings.audit.retention_days,
            clock=clock,
            actor_provider=actor_provider,
            session_provider=session_provider,
            platform_info=app_settings.backup.platform_info,
        )

    @property
    def store(self) -> AuditLogStore:
        """Return the underlying log store."""
        return self._store

    def add_listener(self, listener: AuditListener) -> None:
        """Register a listener called after every recorded event."""
        self._store.add_listener(listener)

    def remove_listener(self, listener: AuditListener) -> bool:
        """Unregister a listener."""
        return self._store.remove_listener(listener)

    def log_event(
        self,
        event_type: AuditEventType | str,
        details: Mapping[str, Any] | None = None,
        *,
        actor: Actor | None = None,
        session_id: str | None = None,
    ) -> AuditEvent:
        """Record an event attributed to the current actor and session.

        ``userId``, ``userName`` and ``userRole`` present in ``details``
        override the corresponding actor fields.
        """
        details = dict(details or {})
        resolved_actor = self._resolve_actor(actor, details)
        entry = AuditEventInput(
            event_type=event_type,
            details=details,
            actor=resolved_actor,
            session_id=session_id or self._session_provider(),
            context=EventContext(timezone=self._tz.key, platform=self._platform_info),
        )
        return self._store.append(entry)

    def get_all_logs(self) -> list[AuditEvent]:
        """Return every retained event, newest first."""
        return self._store.all()

    def search_logs(self, criteria: AuditSearchCriteria | None = None) -> list[AuditEvent]:
        """Return events matching every supplied predicate."""
        return self._store.search(criteria)

    def get_statistics(self, period: StatisticsPeriod | str = StatisticsPeriod.WEEK) -> AuditStatistics:
        """Aggregate events over the trailing ``period``."""
        return compute_statistics(self._store.all(), period, self._clock(), self._tz)

    def detect_suspicious_activity(self) -> list[SuspiciousActivityAlert]:
        """Run the anomaly heuristics over the trailing window."""
        return detect_suspicious_activity(
            self._store.all(), self._clock(), self._thresholds, self._tz
        )

    def export_logs(
        self,
        fmt: LogExportFormat | str = LogExportFormat.JSON,
        criteria: AuditSearchCriteria | None = None,
    ) -> str:
        """Serialize matching events as CSV or JSON text."""
        return export_logs(self._store.search(criteria), fmt)

    def cleanup_old_logs(self, retention_days: int | None = None) -> int:
        """Drop events older than the retention window and return the count."""
        days = self._retention_days if retention_days is None else retention_days
        return self._store.cleanup_older_than(days, now=self._clock())

    def log_login(self, user_id: str, user_name: str, success: bool = True) -> AuditEvent:
        """Record a successful or failed login attempt."""
        event_type = AuditEventType.LOGIN if success else AuditEventType.LOGIN_FAILED
        details: dict[str, Any] = {"userName": user_name, "success": success}
        if success:
            details["userId"] = user_id
        else:
            details["attemptedUserId"] = user_id
        return self.log_event(event_type, details)

    def log_logout(self, user_id: str, user_name: str) -> AuditEvent:
        """Record a logout."""
        return self.log_event(AuditEventType.LOGOUT, {"userId": user_id, "userName": user_name})

    def log_patient_access(self, patient_id: str, action: str = "viewed") -> AuditEvent:
        """Record a patient record lifecycle action; unknown actions count as views."""
        event_type = _PATIENT_ACTIONS.get(action, AuditEventType.PATIENT_VIEWED)
        return self.log_event(event_type, {"patientId": patient_id, "action": action})

    def log_permission_denied(self, resource: str, action: str) -> AuditEvent:
        """Record a denied authorization check."""
        return self.log_event(
            AuditEventType.PERMISSION_DENIED,
            {
                "resource": resource,
                "action": action,
                "message": f"Access denied to {resource} for action {action}",
            },
        )

    def log_system_error(self, error_type: str, details: Mapping[str, Any] | None = None) -> AuditEvent:
        """Record an internal failure of the given ``error_type``."""
        return self.log_event(
            AuditEventType.SYSTEM_ERROR, {"errorType": error_type, **dict(details or {})}
        )

    def log_data_export(self, data_type: str, record_count: int) -> AuditEvent:
        """Record an export of application data."""
        return self.log_event(
            AuditEventType.DATA_EXPORT,
            {
                "dataType": data_type,
                "recordCount": record_count,
                "exportTime": isoformat(self._clock()),
            },
        )

    def _resolve_actor(self, actor: Actor | None, details: Mapping[str, Any]) -> Actor:
        base = actor or self._actor_provider()
        overrides = {
            field_name: str(details[key])
            for key, field_name in _ACTOR_DETAIL_KEYS.items()
            if details.get(key)
        }
        if not overrides:
            return base
        return base.model_copy(update=overrides)
