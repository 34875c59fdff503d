"""Observer registry notified after each audit append."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from audit.events import AuditEvent

logger = logging.getLogger(__name__)

AuditListener = Callable[[AuditEvent], None]


class AuditListenerRegistry:
    """Ordered set of listeners with per-listener failure isolation."""

    def __init__(self) -> None:
        self._listeners: list[AuditListener] = []
        self._lock = threading.Lock()

    def add(self, listener: AuditListener) -> None:
        """Register ``listener``; duplicates are ignored."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove(self, listener: AuditListener) -> bool:
        """Unregister ``listener`` and return whether it was registered."""
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return False
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def notify(self, event: AuditEvent) -> int:
        """Call every listener in registration order; return the failure count."""
        with self._lock:
            listeners = list(self._listeners)
        failures = 0
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                failures += 1
                logger.exception(
                    "Audit listener %r failed for event id=%s.",
                    listener,
                    event.id,
                )
        return failures
