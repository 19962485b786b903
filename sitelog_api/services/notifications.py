"""
Outbound domain events.

Workflow transitions and assignment changes hand one event dict to the
configured dispatcher. Delivery is fire-and-forget: ``Notifier.emit`` never
raises, so a broken transport cannot undo a committed state change.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

log = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def dispatch(self, event: Dict[str, Any]) -> None: ...


class LogDispatcher:
    """Default backend: writes the event to the application log."""

    def dispatch(self, event: Dict[str, Any]) -> None:
        log.info("notify %s", event)


class Notifier:
    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None):
        self.dispatcher = dispatcher or LogDispatcher()

    def init_app(self, app, dispatcher: Optional[NotificationDispatcher] = None):
        if dispatcher is None:
            dispatcher = app.config.get("NOTIFICATION_DISPATCHER")
        self.dispatcher = dispatcher or LogDispatcher()
        app.extensions["sitelog_notifier"] = self

    def emit(self, event: Dict[str, Any]) -> bool:
        """Returns False when the dispatcher failed; the failure is logged only."""
        try:
            self.dispatcher.dispatch(event)
            return True
        except Exception:
            log.exception("notification dispatch failed for event=%s", event)
            return False
