"""
User-facing status notifications.

Components emit notifications (conflict detected, resolution progress,
recovery attempts, ...) through a Notifier. Presentation layers subscribe
to render them; every notification is also logged.
"""

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Notification severity."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Notification:
    """A single status message."""

    severity: Severity
    message: str
    description: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[Notification], None]


class Notifier:
    """Fan-out of notifications to listeners, with a bounded history."""

    def __init__(self, history_size: int = 100):
        self._listeners: list[Listener] = []
        self.history: deque[Notification] = deque(maxlen=history_size)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(
        self, severity: Severity, message: str, description: str | None = None
    ) -> Notification:
        notification = Notification(severity=severity, message=message, description=description)
        self.history.append(notification)

        if description:
            logger.log(_LOG_LEVELS[severity], "[%s] %s (%s)", severity.value, message, description)
        else:
            logger.log(_LOG_LEVELS[severity], "[%s] %s", severity.value, message)

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.exception("Notification listener failed: %s", e)
        return notification

    def info(self, message: str, description: str | None = None) -> Notification:
        return self.notify(Severity.INFO, message, description)

    def success(self, message: str, description: str | None = None) -> Notification:
        return self.notify(Severity.SUCCESS, message, description)

    def warning(self, message: str, description: str | None = None) -> Notification:
        return self.notify(Severity.WARNING, message, description)

    def error(self, message: str, description: str | None = None) -> Notification:
        return self.notify(Severity.ERROR, message, description)

    def severities(self) -> list[Severity]:
        """Severities of the notifications in history, oldest first."""
        return [n.severity for n in self.history]
