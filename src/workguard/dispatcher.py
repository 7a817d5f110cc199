"""
Error Dispatcher

Central routing service for taxonomy errors. Every submission updates the
statistics immediately; processing (logging, user notification, handlers and
recoverers) runs once per burst of identical errors after the debounce window.

Handlers and recoverers are registered per category and tried in
registration order. A failure inside one is logged and never propagates.
"""

import copy
import inspect
import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from workguard import metrics
from workguard.clock import AsyncioClock, Clock, TimerHandle
from workguard.config import DispatcherConfig
from workguard.error_log import ErrorLog
from workguard.errors import ErrorCategory, ErrorLevel, WorkguardError, wrap_exception
from workguard.notifications import (
    LoggingNotifier,
    Notification,
    NotificationSeverity,
    Notifier,
    severity_for_level,
    user_friendly_message,
)

logger = logging.getLogger(__name__)


async def maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


# ============================================================================
# Strategy interfaces
# ============================================================================

class ErrorHandler(ABC):
    """Diagnoses errors of a category (logging, suggestions, bookkeeping)."""

    @abstractmethod
    def can_handle(self, error: WorkguardError) -> bool:
        pass

    @abstractmethod
    async def handle_error(self, error: WorkguardError) -> None:
        pass


class ErrorRecoverer(ABC):
    """Attempts to repair the condition behind an error."""

    @abstractmethod
    def can_recover(self, error: WorkguardError) -> bool:
        pass

    @abstractmethod
    async def recover(self, error: WorkguardError) -> bool:
        """Return True if the underlying condition was repaired."""


@dataclass
class NotificationOptions:
    """Per-submission notification settings."""
    show_to_user: bool = True
    log: bool = True
    show_details: bool = False
    custom_message: Optional[str] = None
    severity: Optional[NotificationSeverity] = None


@dataclass
class ErrorStatistics:
    """Running counts of submitted errors."""
    total: int = 0
    by_level: Dict[ErrorLevel, int] = field(
        default_factory=lambda: {level: 0 for level in ErrorLevel})
    by_category: Dict[ErrorCategory, int] = field(
        default_factory=lambda: {category: 0 for category in ErrorCategory})
    by_component: Dict[str, int] = field(default_factory=dict)
    last_error_time: Optional[datetime] = None
    most_common_category: Optional[ErrorCategory] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_level": {level.value: count for level, count in self.by_level.items()},
            "by_category": {cat.value: count for cat, count in self.by_category.items()},
            "by_component": dict(self.by_component),
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "most_common_category": (
                self.most_common_category.value if self.most_common_category else None
            ),
        }


def error_identity(error: WorkguardError) -> str:
    """Debounce key: identical keys coalesce into one processed outcome."""
    ctx = error.context
    return "|".join([
        error.category.value,
        error.message,
        ctx.component or "",
        ctx.operation or "",
    ])


# ============================================================================
# Dispatcher
# ============================================================================

class ErrorDispatcher:
    """
    Routes errors to logging, notifications, handlers and recoverers.

    Owned by a framework instance and injected into collaborators; there is
    no module-level instance.
    """

    def __init__(
        self,
        config: Optional[DispatcherConfig] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        error_log: Optional[ErrorLog] = None,
    ):
        self.config = config or DispatcherConfig()
        self.clock = clock or AsyncioClock()
        self.notifier = notifier or LoggingNotifier()
        self.error_log = error_log if error_log is not None else ErrorLog(self.config.max_log_entries)

        self._handlers: Dict[ErrorCategory, List[ErrorHandler]] = {}
        self._recoverers: Dict[ErrorCategory, List[ErrorRecoverer]] = {}
        self._debounce_timers: Dict[str, TimerHandle] = {}
        self._statistics = ErrorStatistics()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def pending_count(self) -> int:
        """Debounce windows currently open."""
        return sum(1 for handle in self._debounce_timers.values() if handle.active)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(self, category: ErrorCategory, handler: ErrorHandler) -> None:
        if self._disposed:
            return
        self._handlers.setdefault(category, []).append(handler)

    def register_recoverer(self, category: ErrorCategory, recoverer: ErrorRecoverer) -> None:
        if self._disposed:
            return
        self._recoverers.setdefault(category, []).append(recoverer)

    def unregister(self, strategy: Any) -> None:
        """Remove ``strategy`` from every handler and recoverer list."""
        for registry in (self._handlers, self._recoverers):
            for category, entries in registry.items():
                registry[category] = [entry for entry in entries if entry is not strategy]

    def get_handlers(self, category: ErrorCategory) -> List[ErrorHandler]:
        return list(self._handlers.get(category, []))

    def get_recoverers(self, category: ErrorCategory) -> List[ErrorRecoverer]:
        return list(self._recoverers.get(category, []))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, error: BaseException, options: Optional[NotificationOptions] = None) -> None:
        """
        Accept an error for processing.

        Statistics are updated now; processing happens once the debounce
        window for the error's identity closes. Never raises.
        """
        if self._disposed:
            logger.debug("Dispatcher disposed, ignoring error submission")
            return

        try:
            error = wrap_exception(error)
            options = options or NotificationOptions()
            self._update_statistics(error)

            key = error_identity(error)
            previous = self._debounce_timers.pop(key, None)
            if previous is not None and previous.active:
                previous.cancel()
                metrics.ERRORS_COALESCED_TOTAL.labels(category=error.category.value).inc()

            handle = self.clock.after(
                self.config.debounce_time,
                lambda: self._fire(key, error, options),
            )
            self._debounce_timers[key] = handle
        except Exception as e:
            logger.error(f"Failed to schedule error processing: {e}", exc_info=True)

    async def handle_error(self, error: BaseException,
                           options: Optional[NotificationOptions] = None) -> None:
        """Async form of ``submit``; returns once the error is scheduled."""
        self.submit(error, options)

    def _fire(self, key: str, error: WorkguardError, options: NotificationOptions):
        handle = self._debounce_timers.get(key)
        if handle is not None and not handle.active:
            del self._debounce_timers[key]
        if self._disposed:
            return None
        return self._process(error, options)

    async def _process(self, error: WorkguardError, options: NotificationOptions) -> None:
        if self._disposed:
            return
        metrics.ERRORS_PROCESSED_TOTAL.labels(category=error.category.value).inc()

        if options.log and self.config.enable_logging and error.level >= self.config.log_level:
            self._log_error(error)
            try:
                self.error_log.record(error)
            except Exception as e:
                logger.error(f"Failed to record error in error log: {e}", exc_info=True)

        if (
            self.config.enable_notifications
            and options.show_to_user
            and error.level >= self.config.notification_level
        ):
            self._notify_error(error, options)

        await self._run_handlers(error)

        if self.config.enable_recovery and error.recoverable:
            await self._attempt_recovery(error)

    def _log_error(self, error: WorkguardError) -> None:
        log_method = {
            ErrorLevel.INFO: logger.info,
            ErrorLevel.WARNING: logger.warning,
            ErrorLevel.ERROR: logger.error,
            ErrorLevel.CRITICAL: logger.critical,
        }[error.level]
        log_method(
            f"{error.level.value.upper()}: {error.message}\n{error.get_details()}",
            extra={"workguard_error": error.to_dict()},
            exc_info=error.inner_error if error.inner_error is not None else None,
        )

    def _notify_error(self, error: WorkguardError, options: NotificationOptions) -> None:
        show_details = options.show_details or error.level == ErrorLevel.CRITICAL
        self._emit(Notification(
            message=options.custom_message or user_friendly_message(error),
            severity=options.severity or severity_for_level(error.level),
            show_details=show_details,
            details=error.get_details() if show_details else None,
            error=error,
        ))

    async def _run_handlers(self, error: WorkguardError) -> None:
        for handler in list(self._handlers.get(error.category, [])):
            try:
                if handler.can_handle(error):
                    await maybe_await(handler.handle_error(error))
            except Exception as e:
                logger.error(
                    f"Error handler {handler.__class__.__name__} failed: {e}", exc_info=True
                )

    async def _attempt_recovery(self, error: WorkguardError) -> bool:
        category = error.category.value
        for recoverer in list(self._recoverers.get(error.category, [])):
            if self._disposed:
                return False
            try:
                if not recoverer.can_recover(error):
                    continue
                recovered = await maybe_await(recoverer.recover(error))
            except Exception as e:
                logger.error(
                    f"Error recoverer {recoverer.__class__.__name__} failed: {e}", exc_info=True
                )
                metrics.RECOVERY_ATTEMPTS_TOTAL.labels(category=category, outcome="failed").inc()
                continue

            if recovered:
                metrics.RECOVERY_ATTEMPTS_TOTAL.labels(category=category, outcome="recovered").inc()
                logger.info(f"Recovered from error: {error.message}")
                self.notify(f"Recovered automatically: {error.message}",
                            NotificationSeverity.INFORMATION)
                return True
            metrics.RECOVERY_ATTEMPTS_TOTAL.labels(category=category, outcome="failed").inc()
        return False

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify(self, message: str,
               severity: NotificationSeverity = NotificationSeverity.INFORMATION) -> None:
        """Send a plain notification (e.g. "component recovered")."""
        if self._disposed or not self.config.enable_notifications:
            return
        self._emit(Notification(message=message, severity=severity))

    def _emit(self, notification: Notification) -> None:
        try:
            self.notifier.notify(notification)
            metrics.NOTIFICATIONS_TOTAL.labels(severity=notification.severity.value).inc()
        except Exception as e:
            logger.error(f"Notifier failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _update_statistics(self, error: WorkguardError) -> None:
        metrics.ERRORS_TOTAL.labels(category=error.category.value, level=error.level.value).inc()
        if not self.config.enable_statistics:
            return
        stats = self._statistics
        stats.total += 1
        stats.by_level[error.level] += 1
        stats.by_category[error.category] += 1
        stats.last_error_time = datetime.now()
        component = error.context.component
        if component:
            stats.by_component[component] = stats.by_component.get(component, 0) + 1
        stats.most_common_category = Counter(stats.by_category).most_common(1)[0][0]

    def get_statistics(self) -> ErrorStatistics:
        """Snapshot copy; mutating it does not affect the dispatcher."""
        return copy.deepcopy(self._statistics)

    def reset_statistics(self) -> None:
        self._statistics = ErrorStatistics()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        """Cancel pending debounce windows and clear registries."""
        if self._disposed:
            return
        self._disposed = True
        for handle in self._debounce_timers.values():
            self.clock.cancel(handle)
        self._debounce_timers.clear()
        self._handlers.clear()
        self._recoverers.clear()
        logger.debug("Error dispatcher disposed")
