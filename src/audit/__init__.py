"""Compliance audit log: event model, bounded store, statistics and alerts."""

from audit.events import (
    ANONYMOUS_ACTOR,
    Actor,
    AuditCategory,
    AuditEvent,
    AuditEventType,
    AuditSeverity,
    EventContext,
    category_for,
    severity_for,
)
from audit.export import LogExportFormat, export_logs
from audit.listeners import AuditListenerRegistry
from audit.service import AuditLogService
from audit.statistics import (
    AlertType,
    AnomalyThresholds,
    AuditStatistics,
    StatisticsPeriod,
    SuspiciousActivityAlert,
    compute_statistics,
    detect_suspicious_activity,
)
from audit.store import AuditEventInput, AuditLogStore, AuditSearchCriteria

__all__ = [
    "ANONYMOUS_ACTOR",
    "Actor",
    "AlertType",
    "AnomalyThresholds",
    "AuditCategory",
    "AuditEvent",
    "AuditEventInput",
    "AuditEventType",
    "AuditListenerRegistry",
    "AuditLogService",
    "AuditLogStore",
    "AuditSearchCriteria",
    "AuditSeverity",
    "AuditStatistics",
    "EventContext",
    "LogExportFormat",
    "StatisticsPeriod",
    "SuspiciousActivityAlert",
    "category_for",
    "compute_statistics",
    "detect_suspicious_activity",
    "export_logs",
    "severity_for",
]
