"""Bounded, newest-first audit log persisted through the keyed store."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from pydantic import ValidationError as PydanticValidationError

from audit.events import (
    ANONYMOUS_ACTOR,
    NO_SESSION,
    Actor,
    AuditCategory,
    AuditEvent,
    AuditEventType,
    AuditSeverity,
    EventContext,
)
from audit.listeners import AuditListener, AuditListenerRegistry
from errors import StorageError, ValidationError
from storage.interface import KeyValueStore
from time_utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "medical_pro_audit_logs"
DEFAULT_MAX_EVENTS = 10000


@dataclass(frozen=True)
class AuditEventInput:
    """Caller-supplied fields for a new audit event.

    Classification is never accepted from callers; ``event_id`` and
    ``timestamp`` are generated when omitted.
    """

    event_type: AuditEventType | str
    details: Mapping[str, Any] = field(default_factory=dict)
    actor: Actor | None = None
    session_id: str | None = None
    context: EventContext | None = None
    event_id: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class AuditSearchCriteria:
    """Conjunctive audit log filters; unset fields impose no constraint."""

    event_type: AuditEventType | str | None = None
    category: AuditCategory | str | None = None
    severity: AuditSeverity | str | None = None
    user_id: str | None = None
    start_date: datetime | str | None = None
    end_date: datetime | str | None = None
    search_term: str | None = None

    def matches(self, event: AuditEvent) -> bool:
        """Return True when ``event`` satisfies every supplied predicate."""
        if self.event_type and event.event_type != _value(self.event_type):
            return False
        if self.category and event.category.value != _value(self.category):
            return False
        if self.severity and event.severity.value != _value(self.severity):
            return False
        if self.user_id and event.actor.user_id != self.user_id:
            return False
        if self.start_date and event.timestamp < parse_timestamp(self.start_date):
            return False
        if self.end_date and event.timestamp > parse_timestamp(self.end_date):
            return False
        if self.search_term:
            if self.search_term.lower() not in event.searchable_text():
                return False
        return True


def _value(item: Any) -> str:
    return getattr(item, "value", item)


def _serializable_details(details: Mapping[str, Any]) -> dict[str, Any]:
    """Round-trip details through JSON so stored values stay serializable."""
    return json.loads(json.dumps(dict(details), default=str))


class AuditLogStore:
    """Append/read/evict over a capacity-bounded, newest-first event log.

    A single re-entrant lock serializes writers and read snapshots, so an
    append and its tail truncation are computed from a fully-updated view.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        *,
        max_events: int = DEFAULT_MAX_EVENTS,
        storage_key: str = DEFAULT_STORAGE_KEY,
        clock: Callable[[], datetime] = utc_now,
        listeners: AuditListenerRegistry | None = None,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be >= 1.")
        self._backend = backend
        self._max_events = max_events
        self._storage_key = storage_key
        self._clock = clock
        self._listeners = listeners or AuditListenerRegistry()
        self._lock = threading.RLock()
        self._last_timestamp: datetime | None = None

    @property
    def max_events(self) -> int:
        """Return the configured capacity."""
        return self._max_events

    @property
    def storage_key(self) -> str:
        """Return the backend key the log is persisted under."""
        return self._storage_key

    def add_listener(self, listener: AuditListener) -> None:
        """Register a listener called synchronously after every append."""
        self._listeners.add(listener)

    def remove_listener(self, listener: AuditListener) -> bool:
        """Unregister a listener."""
        return self._listeners.remove(listener)

    def append(self, entry: AuditEventInput) -> AuditEvent:
        """Record one event and return it.

        Raises ``ValidationError`` when the event type is missing. Persistence
        failures are logged and recorded as a best-effort ``system_error``
        event; they never propagate to the caller.
        """
        event_type = _value(entry.event_type)
        if not isinstance(event_type, str) or not event_type.strip():
            logger.error("Audit event rejected: event type is required.")
            raise ValidationError("event_type is required.")

        with self._lock:
            event = self._build_event(entry, event_type.strip())
            try:
                self._insert_and_persist(event)
            except Exception as exc:
                logger.exception("Audit logging failed for event_type=%s.", event.event_type)
                self._record_failure(event, exc)

        if event.severity == AuditSeverity.CRITICAL:
            logger.warning(
                "Critical audit event: type=%s user=%s id=%s",
                event.event_type,
                event.actor.user_id,
                event.id,
            )
        self._listeners.notify(event)
        return event

    def all(self) -> list[AuditEvent]:
        """Return a copy of every stored event, newest first."""
        with self._lock:
            try:
                return self._load()
            except StorageError:
                logger.exception("Failed to read audit log.")
                return []

    def search(self, criteria: AuditSearchCriteria | None = None) -> list[AuditEvent]:
        """Return events matching ``criteria``, newest first."""
        events = self.all()
        if criteria is None:
            return events
        return [event for event in events if criteria.matches(event)]

    def cleanup_older_than(self, retention_days: int, now: datetime | None = None) -> int:
        """Remove events older than ``retention_days`` and return the count."""
        if retention_days < 0:
            raise ValidationError("retention_days must be >= 0.")
        cutoff = parse_timestamp(now or self._clock()) - timedelta(days=retention_days)
        with self._lock:
            events = self._load()
            kept = [event for event in events if event.timestamp >= cutoff]
            removed = len(events) - len(kept)
            if removed:
                self._persist(kept)
                logger.info(
                    "Removed %s audit events older than %s days.", removed, retention_days
                )
        return removed

    def replace_all(self, events: list[AuditEvent]) -> None:
        """Overwrite the log with ``events`` (newest first), truncated to capacity."""
        ordered = sorted(events, key=lambda item: item.timestamp, reverse=True)
        with self._lock:
            self._persist(ordered[: self._max_events])

    def restore_records(self, records: object, *, overwrite: bool = True) -> bool:
        """Replace the log with serialized ``records`` read back from a backup.

        With ``overwrite`` off the log is only replaced while it holds no
        events; an unreadable stored log counts as holding events. Returns
        True when the log was replaced.
        """
        if not isinstance(records, list):
            raise ValidationError("audit log records must be a list.")
        with self._lock:
            if not overwrite and not self._is_empty():
                return False
            self.replace_all(self._validate_records(records))
        return True

    def _is_empty(self) -> bool:
        try:
            return not self._load()
        except StorageError:
            return False

    def _build_event(self, entry: AuditEventInput, event_type: str) -> AuditEvent:
        timestamp = entry.timestamp
        if timestamp is None:
            timestamp = self._next_timestamp()
        fields: dict[str, Any] = {
            "timestamp": parse_timestamp(timestamp),
            "event_type": event_type,
            "actor": entry.actor or ANONYMOUS_ACTOR,
            "session_id": entry.session_id or NO_SESSION,
            "details": _serializable_details(entry.details),
            "context": entry.context or EventContext(),
        }
        if entry.event_id:
            fields["id"] = entry.event_id
        return AuditEvent(**fields)

    def _next_timestamp(self) -> datetime:
        now = parse_timestamp(self._clock())
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def _insert_and_persist(self, event: AuditEvent) -> None:
        events = self._load()
        index = 0
        while index < len(events) and events[index].timestamp > event.timestamp:
            index += 1
        events.insert(index, event)
        del events[self._max_events :]
        self._persist(events)

    def _record_failure(self, failed: AuditEvent, exc: Exception) -> None:
        """Try once to record a logging failure as a ``system_error`` event."""
        try:
            error_event = AuditEvent(
                timestamp=self._next_timestamp(),
                event_type=AuditEventType.SYSTEM_ERROR.value,
                actor=failed.actor,
                session_id=failed.session_id,
                details={
                    "errorType": "audit_logging_failed",
                    "originalEvent": failed.event_type,
                    "originalEventId": failed.id,
                    "errorMessage": str(exc),
                },
            )
            self._insert_and_persist(error_event)
        except Exception:
            logger.exception("Failed to record audit logging failure.")

    def _load(self) -> list[AuditEvent]:
        raw = self._backend.get(self._storage_key)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(
                f"audit log under {self._storage_key} is not valid JSON", key=self._storage_key
            ) from exc
        if not isinstance(records, list):
            raise StorageError(
                f"audit log under {self._storage_key} is not a list", key=self._storage_key
            )
        return self._validate_records(records)

    def _validate_records(self, records: list[Any]) -> list[AuditEvent]:
        events: list[AuditEvent] = []
        for record in records:
            try:
                events.append(AuditEvent.model_validate(record))
            except PydanticValidationError:
                logger.warning("Skipping malformed audit record: %r", record)
        return events

    def _persist(self, events: list[AuditEvent]) -> None:
        payload = json.dumps([event.to_record() for event in events], ensure_ascii=False)
        self._backend.set(self._storage_key, payload)
