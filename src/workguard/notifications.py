"""
User-facing notifications.

Errors map onto three user-facing severities; ``critical`` errors map to
``error`` and always offer the details view. The host decides how a
``Notification`` is shown by supplying a ``Notifier``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from workguard.errors import ErrorCategory, ErrorLevel, WorkguardError
from workguard.logging_config import get_logger


class NotificationSeverity(str, Enum):
    """Severities understood by the host UI."""
    INFORMATION = "information"
    WARNING = "warning"
    ERROR = "error"


LEVEL_TO_SEVERITY = {
    ErrorLevel.INFO: NotificationSeverity.INFORMATION,
    ErrorLevel.WARNING: NotificationSeverity.WARNING,
    ErrorLevel.ERROR: NotificationSeverity.ERROR,
    ErrorLevel.CRITICAL: NotificationSeverity.ERROR,
}

CATEGORY_SUGGESTIONS = {
    ErrorCategory.FILE_SYSTEM: "Check file permissions and available disk space.",
    ErrorCategory.PARSING: "Check that the file format is correct.",
    ErrorCategory.PROVIDER: "Try reloading the window or restarting the application.",
    ErrorCategory.COMMAND: "Check the command arguments.",
    ErrorCategory.CONFIGURATION: "Check the configuration settings.",
    ErrorCategory.NETWORK: "Check the network connection.",
    ErrorCategory.UNKNOWN: "See the details for more help.",
}


@dataclass
class Notification:
    """A message for the user, optionally backed by an error."""
    message: str
    severity: NotificationSeverity
    show_details: bool = False
    details: Optional[str] = None
    error: Optional[WorkguardError] = None


def severity_for_level(level: ErrorLevel) -> NotificationSeverity:
    return LEVEL_TO_SEVERITY.get(level, NotificationSeverity.ERROR)


def user_friendly_message(error: WorkguardError) -> str:
    """Error message followed by a suggestion for its category."""
    suggestion = CATEGORY_SUGGESTIONS.get(error.category, CATEGORY_SUGGESTIONS[ErrorCategory.UNKNOWN])
    return f"{error.message} {suggestion}"


class Notifier(ABC):
    """Delivers notifications to the user."""

    @abstractmethod
    def notify(self, notification: Notification) -> None:
        """Show ``notification``; must not raise."""


class LoggingNotifier(Notifier):
    """Default notifier: writes notifications to the structured log."""

    _METHODS = {
        NotificationSeverity.INFORMATION: "info",
        NotificationSeverity.WARNING: "warning",
        NotificationSeverity.ERROR: "error",
    }

    def __init__(self, logger=None):
        self.logger = logger or get_logger("workguard.notifications")

    def notify(self, notification: Notification) -> None:
        log = getattr(self.logger, self._METHODS[notification.severity])
        log(
            "user_notification",
            message=notification.message,
            severity=notification.severity.value,
            details=notification.details if notification.show_details else None,
        )


class CollectingNotifier(Notifier):
    """Keeps notifications in memory until the host drains them."""

    def __init__(self, max_items: int = 100):
        self.max_items = max_items
        self.notifications: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if len(self.notifications) > self.max_items:
            del self.notifications[: len(self.notifications) - self.max_items]

    def drain(self) -> List[Notification]:
        drained, self.notifications = self.notifications, []
        return drained
