"""
Unit tests for workguard/notifications.py
"""

from unittest.mock import MagicMock

from workguard.errors import ErrorLevel, FileSystemError, WorkguardError
from workguard.notifications import (
    CollectingNotifier,
    LoggingNotifier,
    Notification,
    NotificationSeverity,
    severity_for_level,
    user_friendly_message,
)


def test_level_mapping():
    assert severity_for_level(ErrorLevel.INFO) == NotificationSeverity.INFORMATION
    assert severity_for_level(ErrorLevel.WARNING) == NotificationSeverity.WARNING
    assert severity_for_level(ErrorLevel.ERROR) == NotificationSeverity.ERROR
    assert severity_for_level(ErrorLevel.CRITICAL) == NotificationSeverity.ERROR


def test_user_friendly_message_appends_suggestion():
    message = user_friendly_message(FileSystemError("Cannot read /a.md"))
    assert message.startswith("Cannot read /a.md ")
    assert "permissions" in message

    unknown = user_friendly_message(WorkguardError("odd"))
    assert unknown.startswith("odd ")


def test_collecting_notifier_bounds_and_drains():
    notifier = CollectingNotifier(max_items=2)
    for i in range(3):
        notifier.notify(Notification(f"n{i}", NotificationSeverity.INFORMATION))
    assert [n.message for n in notifier.notifications] == ["n1", "n2"]

    drained = notifier.drain()
    assert len(drained) == 2
    assert notifier.notifications == []


def test_logging_notifier_uses_severity_method():
    logger = MagicMock()
    notifier = LoggingNotifier(logger)

    notifier.notify(Notification("careful", NotificationSeverity.WARNING,
                                 show_details=True, details="Level: warning"))
    logger.warning.assert_called_once()
    _, kwargs = logger.warning.call_args
    assert kwargs["message"] == "careful"
    assert kwargs["details"] == "Level: warning"

    notifier.notify(Notification("hidden", NotificationSeverity.ERROR, details="x"))
    _, kwargs = logger.error.call_args
    assert kwargs["details"] is None
