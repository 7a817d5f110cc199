"""
Component Health Boundary

Circuit breaker with degraded mode, wrapping arbitrary operations per named
component:
- NORMAL: operations run
- DEGRADED: repeated errors or a fallback answered; expires back to NORMAL
- ERROR: too many consecutive errors or the fallback failed too; the
  component is disabled until the recovery timer fires or it is recovered
  manually

Every failure is reported to the error dispatcher. Uncaught failures the host
catches at its top level go through the boundary's ``FatalSink``.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from workguard import metrics
from workguard.clock import Clock, TimerHandle
from workguard.config import BoundaryConfig
from workguard.dispatcher import ErrorDispatcher, NotificationOptions, maybe_await
from workguard.errors import (
    ComponentDisabledError,
    ComponentUnavailableError,
    wrap_exception,
)
from workguard.logging_config import get_logger, log_component_transition
from workguard.notifications import NotificationSeverity

logger = logging.getLogger(__name__)
event_log = get_logger(__name__)

GLOBAL_COMPONENT = "global"


class ComponentStatus(str, Enum):
    """Component health states."""
    NORMAL = "normal"
    DEGRADED = "degraded"
    ERROR = "error"
    DISABLED = "disabled"


@dataclass
class ComponentHealth:
    """Health of a single component. ``status == ERROR`` implies ``enabled`` is False."""
    name: str
    status: ComponentStatus = ComponentStatus.NORMAL
    last_error_time: Optional[datetime] = None
    consecutive_errors: int = 0
    total_errors: int = 0
    enabled: bool = True
    degraded_mode_start_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "status": self.status.value,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_errors": self.consecutive_errors,
            "total_errors": self.total_errors,
            "enabled": self.enabled,
            "degraded_mode_start_time": (
                self.degraded_mode_start_time.isoformat()
                if self.degraded_mode_start_time else None
            ),
        }


class FatalSink:
    """
    Explicit sink for failures nothing else caught.

    The host wires its own top-level handlers here, for example
    ``loop.set_exception_handler(sink.loop_exception_handler)``.
    """

    def __init__(self, dispatcher: ErrorDispatcher):
        self.dispatcher = dispatcher

    def report(self, exc: BaseException, kind: str = "exception") -> None:
        error = wrap_exception(exc, component=GLOBAL_COMPONENT, operation=f"uncaught {kind}")
        logger.error(f"Uncaught {kind}: {error.message}", exc_info=exc)
        self.dispatcher.submit(error, NotificationOptions(
            show_to_user=True,
            show_details=True,
            severity=NotificationSeverity.ERROR,
        ))

    def loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            exc = RuntimeError(context.get("message", "Unhandled event loop error"))
        self.report(exc, "task")

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Route the loop's unhandled exceptions into this sink."""
        (loop or asyncio.get_running_loop()).set_exception_handler(self.loop_exception_handler)


class ComponentHealthBoundary:
    """
    Per-component circuit breaker reporting through the error dispatcher.

    Health bookkeeping happens at call entry and completion only; concurrent
    calls on the same component update it in completion order.
    """

    def __init__(
        self,
        dispatcher: ErrorDispatcher,
        config: Optional[BoundaryConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.dispatcher = dispatcher
        self.config = config or BoundaryConfig()
        self.clock = clock or dispatcher.clock
        self.fatal_sink = FatalSink(dispatcher)

        self._health: Dict[str, ComponentHealth] = {}
        self._recovery_timers: Dict[str, TimerHandle] = {}
        self._degraded_timers: Dict[str, TimerHandle] = {}
        self._disposed = False

        logger.info(
            f"Component boundary initialized: threshold={self.config.max_consecutive_errors}, "
            f"recovery={self.config.recovery_interval}s"
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_component(self, name: str) -> None:
        self._get_or_register(name)

    def _get_or_register(self, name: str) -> ComponentHealth:
        health = self._health.get(name)
        if health is None:
            health = ComponentHealth(name=name)
            self._health[name] = health
            metrics.track_component_status(name, health.status.value)
            logger.debug(f"Registered component: {name}")
        return health

    def unregister_component(self, name: str) -> None:
        self._health.pop(name, None)
        self._cancel(self._recovery_timers, name)
        self._cancel(self._degraded_timers, name)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        component: str,
        operation: str,
        primary: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> Any:
        """
        Run ``primary`` for ``component`` through the circuit breaker.

        Args:
            component: Component name (auto-registered)
            operation: Operation name for error context
            primary: Zero-argument callable, sync or async
            fallback: Optional callable used when ``primary`` fails

        Returns:
            Result of ``primary``, or of ``fallback`` if primary failed

        Raises:
            ComponentDisabledError: component is disabled; primary not called
            ComponentUnavailableError: component is in error state
            Exception: primary's error when there is no fallback or the
                fallback failed as well
        """
        if not self.config.enabled or self._disposed:
            return await maybe_await(primary())

        health = self._get_or_register(component)
        if not health.enabled:
            raise ComponentDisabledError(component, operation)
        if health.status == ComponentStatus.ERROR:
            raise ComponentUnavailableError(component, operation)

        try:
            result = await maybe_await(primary())
        except Exception as error:
            self._record_failure(component, operation, error)
            if fallback is None:
                raise
            try:
                result = await maybe_await(fallback())
            except Exception as fallback_error:
                self._record_fallback_failure(component, operation, fallback_error)
                raise error
            self._record_fallback_success(component)
            return result

        self._record_success(component)
        return result

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _transition(self, health: ComponentHealth, status: ComponentStatus, reason: str) -> None:
        old = health.status
        health.status = status
        metrics.track_component_status(health.name, status.value)
        if old != status:
            metrics.COMPONENT_TRANSITIONS_TOTAL.labels(
                component_name=health.name, to_status=status.value).inc()
            log_component_transition(event_log, health.name, old.value, status.value, reason=reason)

    def _record_success(self, component: str) -> None:
        health = self._health.get(component)
        if health is None or self._disposed:
            return
        health.consecutive_errors = 0
        self._transition(health, ComponentStatus.NORMAL, "success")
        if health.degraded_mode_start_time is not None:
            health.degraded_mode_start_time = None
            self._cancel(self._degraded_timers, component)

    def _record_failure(self, component: str, operation: str, exc: BaseException) -> None:
        if self._disposed:
            return
        health = self._get_or_register(component)
        health.consecutive_errors += 1
        health.total_errors += 1
        health.last_error_time = datetime.now()

        if health.consecutive_errors >= self.config.max_consecutive_errors:
            self._enter_error(health, f"{health.consecutive_errors} consecutive errors")
        elif health.consecutive_errors > 1 and self.config.enable_degraded_mode:
            self._enter_degraded(health, "repeated errors")

        in_error = health.status == ComponentStatus.ERROR
        self.dispatcher.submit(
            wrap_exception(exc, component=component, operation=operation),
            NotificationOptions(
                show_to_user=in_error,
                show_details=True,
                severity=NotificationSeverity.ERROR if in_error else NotificationSeverity.WARNING,
            ),
        )

    def _record_fallback_success(self, component: str) -> None:
        health = self._health.get(component)
        if health is None or self._disposed:
            return
        metrics.FALLBACK_ACTIVATIONS_TOTAL.labels(component_name=component).inc()
        if health.status != ComponentStatus.ERROR and self.config.enable_degraded_mode:
            self._enter_degraded(health, "fallback used")

    def _record_fallback_failure(self, component: str, operation: str, exc: BaseException) -> None:
        if self._disposed:
            return
        health = self._get_or_register(component)
        self._enter_error(health, "fallback failed")
        error = wrap_exception(exc, component=component, operation=operation)
        self.dispatcher.submit(error, NotificationOptions(
            show_to_user=True,
            show_details=True,
            severity=NotificationSeverity.ERROR,
        ))

    def _enter_error(self, health: ComponentHealth, reason: str) -> None:
        self._transition(health, ComponentStatus.ERROR, reason)
        health.enabled = False
        health.degraded_mode_start_time = None
        self._cancel(self._degraded_timers, health.name)
        self._cancel(self._recovery_timers, health.name)
        if self.config.enable_auto_recovery:
            name = health.name
            self._recovery_timers[name] = self.clock.after(
                self.config.recovery_interval, lambda: self._recover_component(name))

    def _enter_degraded(self, health: ComponentHealth, reason: str) -> None:
        self._transition(health, ComponentStatus.DEGRADED, reason)
        health.degraded_mode_start_time = datetime.now()
        self._cancel(self._degraded_timers, health.name)
        name = health.name
        self._degraded_timers[name] = self.clock.after(
            self.config.degraded_mode_timeout, lambda: self._exit_degraded(name))

    def _recover_component(self, name: str) -> None:
        self._cancel(self._recovery_timers, name)
        health = self._health.get(name)
        if health is None or self._disposed:
            return
        health.enabled = True
        health.consecutive_errors = 0
        self._transition(health, ComponentStatus.NORMAL, "recovered")
        self.dispatcher.notify(f"Component {name} recovered", NotificationSeverity.INFORMATION)

    def _exit_degraded(self, name: str) -> None:
        self._cancel(self._degraded_timers, name)
        health = self._health.get(name)
        if health is not None and health.status == ComponentStatus.DEGRADED:
            health.degraded_mode_start_time = None
            self._transition(health, ComponentStatus.NORMAL, "degraded mode expired")

    @staticmethod
    def _cancel(timers: Dict[str, TimerHandle], name: str) -> None:
        handle = timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def manual_recover(self, name: str) -> bool:
        """Recover a component in error state now. Returns False otherwise."""
        health = self._health.get(name)
        if health is None or health.status != ComponentStatus.ERROR:
            return False
        self._recover_component(name)
        return True

    def has_recovery_timer(self, name: str) -> bool:
        handle = self._recovery_timers.get(name)
        return handle is not None and handle.active

    def has_degraded_timer(self, name: str) -> bool:
        handle = self._degraded_timers.get(name)
        return handle is not None and handle.active

    def get_component_health(self, name: str) -> Optional[ComponentHealth]:
        """Snapshot of one component's health, or None if unknown."""
        health = self._health.get(name)
        return None if health is None else dataclasses.replace(health)

    def get_all_component_health(self) -> List[ComponentHealth]:
        return [dataclasses.replace(h) for h in self._health.values()]

    def is_system_healthy(self) -> bool:
        return all(h.status != ComponentStatus.ERROR for h in self._health.values())

    def get_system_status_summary(self) -> Dict[str, Any]:
        components = list(self._health.values())
        return {
            "total_components": len(components),
            "healthy_components": sum(1 for c in components if c.status == ComponentStatus.NORMAL),
            "degraded_components": sum(1 for c in components if c.status == ComponentStatus.DEGRADED),
            "error_components": sum(1 for c in components if c.status == ComponentStatus.ERROR),
            "disabled_components": sum(1 for c in components if not c.enabled),
            "is_healthy": self.is_system_healthy(),
            "timestamp": datetime.now().isoformat(),
        }

    def dispose(self) -> None:
        """Cancel every timer and forget all components."""
        self._disposed = True
        for timers in (self._recovery_timers, self._degraded_timers):
            for handle in timers.values():
                handle.cancel()
            timers.clear()
        self._health.clear()
        logger.debug("Component boundary disposed")
