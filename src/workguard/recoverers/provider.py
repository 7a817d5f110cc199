"""
Provider recoverer.

Tracks health per ``(provider_type, component)`` pair, separately from the
component boundary. Recovery depends on the provider type: decoration
providers degrade (the host turns decorations off for a while), codelens
and file-watcher providers are reinitialized through a host-registered
hook, and anything else is simply retried.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from workguard import metrics
from workguard.clock import Clock, TimerHandle
from workguard.config import ProviderRecovererConfig
from workguard.dispatcher import ErrorDispatcher, NotificationOptions, maybe_await
from workguard.errors import ErrorCategory, ProviderError, RecoveryStrategy, WorkguardError
from workguard.notifications import NotificationSeverity
from workguard.recoverers.base import CategoryRecoverer, OperationResult

logger = logging.getLogger(__name__)


class ProviderType:
    CODELENS = "codelens"
    DECORATION = "decoration"
    FILE_WATCHER = "file-watcher"


REINITIALIZED_TYPES = (ProviderType.CODELENS, ProviderType.FILE_WATCHER)

TYPE_SUGGESTIONS = {
    ProviderType.CODELENS: "CodeLens is unavailable; reload the window to restore it.",
    ProviderType.DECORATION: "Decorations are paused and will come back automatically.",
    ProviderType.FILE_WATCHER: "File watching failed; changes may not refresh automatically.",
}
DEFAULT_SUGGESTION = "Try reloading the window."

# Set on errors whose health update already happened in safe_execute
HEALTH_RECORDED = "provider_health_recorded"

ProviderKey = Tuple[str, str]
Hook = Callable[[], Any]


class ProviderStatus(str, Enum):
    NORMAL = "normal"
    DEGRADED = "degraded"
    ERROR = "error"
    DISABLED = "disabled"


@dataclass
class ProviderHealth:
    """Health of one provider instance."""
    provider_type: str
    component: str
    status: ProviderStatus = ProviderStatus.NORMAL
    last_error_time: Optional[datetime] = None
    consecutive_errors: int = 0
    total_errors: int = 0
    enabled: bool = True
    degraded_mode_start_time: Optional[datetime] = None
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_type": self.provider_type,
            "component": self.component,
            "status": self.status.value,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_errors": self.consecutive_errors,
            "total_errors": self.total_errors,
            "enabled": self.enabled,
            "degraded_mode_start_time": (
                self.degraded_mode_start_time.isoformat() if self.degraded_mode_start_time else None
            ),
            "retry_count": self.retry_count,
        }


class ProviderRecoverer(CategoryRecoverer):
    """Recoverer, health tracker and ``safe_execute`` helper for providers."""

    category = ErrorCategory.PROVIDER
    error_type = ProviderError

    def __init__(
        self,
        dispatcher: ErrorDispatcher,
        config: Optional[ProviderRecovererConfig] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(dispatcher, config or ProviderRecovererConfig(), clock)
        self._health: Dict[ProviderKey, ProviderHealth] = {}
        self._degraded_timers: Dict[ProviderKey, TimerHandle] = {}
        self._reinit_timers: Dict[ProviderKey, TimerHandle] = {}
        self._reinitializers: Dict[ProviderKey, Hook] = {}
        self._degrade_hooks: Dict[ProviderKey, Hook] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_provider(self, provider_type: str, component: str) -> ProviderHealth:
        key = (provider_type, component)
        if key not in self._health:
            self._health[key] = ProviderHealth(provider_type=provider_type, component=component)
            metrics.track_provider_status(provider_type, component, ProviderStatus.NORMAL.value)
        return self._health[key]

    def register_reinitializer(self, provider_type: str, component: str, hook: Hook) -> None:
        """Hook that rebuilds the provider; may be a coroutine function."""
        self._reinitializers[(provider_type, component)] = hook

    def register_degrade_hook(self, provider_type: str, component: str, hook: Hook) -> None:
        """Hook that switches the provider into its reduced mode."""
        self._degrade_hooks[(provider_type, component)] = hook

    # ------------------------------------------------------------------
    # Health bookkeeping
    # ------------------------------------------------------------------

    def _set_status(self, health: ProviderHealth, status: ProviderStatus) -> None:
        health.status = status
        metrics.track_provider_status(health.provider_type, health.component, status.value)

    def _record_failure(self, error: ProviderError) -> ProviderHealth:
        health = self.register_provider(error.provider_type, error.context.component or "unknown")
        key = (health.provider_type, health.component)
        health.consecutive_errors += 1
        health.total_errors += 1
        health.last_error_time = datetime.now()
        error.context.data[HEALTH_RECORDED] = True

        if health.consecutive_errors >= self.config.max_consecutive_errors:
            self._disable(health)
            logger.warning(f"Provider {key[0]}:{key[1]} disabled after "
                           f"{health.consecutive_errors} consecutive errors")
        elif health.consecutive_errors > 1:
            self._enter_degraded(health)
        return health

    def _record_success(self, key: ProviderKey) -> None:
        health = self._health.get(key)
        if health is None:
            return
        health.consecutive_errors = 0
        health.retry_count = 0
        self._set_status(health, ProviderStatus.NORMAL)
        if health.degraded_mode_start_time is not None:
            health.degraded_mode_start_time = None
            self._cancel(self._degraded_timers, key)

    def _disable(self, health: ProviderHealth) -> None:
        """Move to error, drop any degraded state and arm reinitialization."""
        key = (health.provider_type, health.component)
        self._set_status(health, ProviderStatus.ERROR)
        health.enabled = False
        health.degraded_mode_start_time = None
        self._cancel(self._degraded_timers, key)
        self._schedule_reinitialization(key)

    def _enter_degraded(self, health: ProviderHealth) -> None:
        key = (health.provider_type, health.component)
        self._set_status(health, ProviderStatus.DEGRADED)
        health.degraded_mode_start_time = datetime.now()
        self._cancel(self._degraded_timers, key)
        self._degraded_timers[key] = self.clock.after(
            self.config.degraded_mode_timeout, lambda: self._exit_degraded(key))

    def _exit_degraded(self, key: ProviderKey) -> None:
        self._degraded_timers.pop(key, None)
        health = self._health.get(key)
        if health is not None and health.status == ProviderStatus.DEGRADED:
            self._set_status(health, ProviderStatus.NORMAL)
            health.degraded_mode_start_time = None

    def _schedule_reinitialization(self, key: ProviderKey) -> None:
        self._cancel(self._reinit_timers, key)
        self._reinit_timers[key] = self.clock.after(
            self.config.degraded_mode_timeout * 2, lambda: self._reinitialize(key))

    async def _reinitialize(self, key: ProviderKey) -> bool:
        self._cancel(self._reinit_timers, key)
        health = self._health.get(key)
        if self._disposed or health is None or health.status != ProviderStatus.ERROR:
            return False
        if not await self._run_hook(self._reinitializers.get(key), key, "reinitialize"):
            if not self._disposed:
                self._schedule_reinitialization(key)
            return False
        health.enabled = True
        health.consecutive_errors = 0
        health.retry_count = 0
        self._set_status(health, ProviderStatus.NORMAL)
        logger.info(f"Provider {key[0]}:{key[1]} reinitialized")
        self.dispatcher.notify(f"Provider {key[0]}:{key[1]} was reinitialized",
                               NotificationSeverity.INFORMATION)
        return True

    @staticmethod
    def _cancel(timers: Dict[ProviderKey, TimerHandle], key: ProviderKey) -> None:
        handle = timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    async def _run_hook(self, hook: Optional[Hook], key: ProviderKey, action: str) -> bool:
        if hook is None:
            return True
        try:
            await maybe_await(hook())
            return True
        except Exception as e:
            logger.error(f"Provider {action} hook for {key[0]}:{key[1]} failed: {e}", exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Handler / recoverer
    # ------------------------------------------------------------------

    def suggestion_for(self, error: WorkguardError) -> str:
        return TYPE_SUGGESTIONS.get(getattr(error, "provider_type", None), DEFAULT_SUGGESTION)

    async def handle_error(self, error: WorkguardError) -> None:
        if not self.can_handle(error):
            return
        if not error.context.component or not error.context.operation:
            return
        if not error.context.data.get(HEALTH_RECORDED):
            self._record_failure(error)
        if self.config.log_error_details:
            await super().handle_error(error)

    def can_recover(self, error: WorkguardError) -> bool:
        if self._disposed or not isinstance(error, ProviderError) or not error.context.component:
            return False
        health = self._health.get((error.provider_type, error.context.component))
        return (
            health is not None
            and health.enabled
            and health.retry_count < self.config.max_retries
            and error.recoverable
        )

    async def recover(self, error: WorkguardError) -> bool:
        if self._disposed or not isinstance(error, ProviderError) or not error.context.component:
            return False
        key = (error.provider_type, error.context.component)
        health = self._health.get(key)
        if health is None or not health.enabled:
            return False

        if health.retry_count >= self.config.max_retries:
            self._disable(health)
            metrics.RECOVERY_ATTEMPTS_TOTAL.labels(
                category=self.category.value, outcome="exhausted").inc()
            return False

        health.retry_count += 1
        await self.clock.sleep(self.config.retry_interval)
        if self._disposed:
            return False

        try:
            recovered = await self._recover(error)
        except Exception as e:
            logger.error(f"Provider recovery for {key[0]}:{key[1]} failed: {e}", exc_info=True)
            return False
        return recovered

    async def _recover(self, error: WorkguardError) -> bool:
        key = (error.provider_type, error.context.component)
        health = self._health[key]

        if error.provider_type == ProviderType.DECORATION:
            if not self.config.enable_degraded_mode:
                return False
            if not await self._run_hook(self._degrade_hooks.get(key), key, "degrade"):
                return False
            health.consecutive_errors = 0
            health.retry_count = 0
            self._enter_degraded(health)
            logger.info(f"Decoration provider {key[1]} switched to degraded mode")
            return True

        if error.provider_type in REINITIALIZED_TYPES:
            if not self.config.enable_reinitialization:
                return False
            if not await self._run_hook(self._reinitializers.get(key), key, "reinitialize"):
                return False
            self._record_success(key)
            logger.info(f"Provider {key[0]}:{key[1]} reinitialized after error")
            return True

        if not self.config.enable_auto_retry:
            return False
        self._record_success(key)
        return True

    # ------------------------------------------------------------------
    # Safe execution
    # ------------------------------------------------------------------

    async def safe_execute(
        self,
        provider_type: str,
        component: str,
        operation: str,
        fn: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> OperationResult:
        """
        Run a provider callback with retries.

        Each failure is recorded against the provider's health and reported
        to the dispatcher without a user notification. Once retries run out,
        or the provider is disabled, ``fallback`` runs in degraded mode.
        """
        key = (provider_type, component)
        health = self.register_provider(provider_type, component)
        attempts = 0
        error: Optional[ProviderError] = None

        while attempts <= self.config.max_retries:
            if not health.enabled or health.status == ProviderStatus.ERROR:
                error = error or ProviderError(
                    f"Provider {provider_type} is disabled",
                    provider_type,
                    recovery_strategy=RecoveryStrategy.NONE,
                    component=component,
                    operation=operation,
                )
                break
            try:
                data = await maybe_await(fn())
            except Exception as e:
                attempts += 1
                error = self._wrap(e, provider_type, component, operation)
                self._record_failure(error)
                self.dispatcher.submit(error, NotificationOptions(show_to_user=False))
                if attempts <= self.config.max_retries and health.enabled:
                    await self.clock.sleep(self.config.retry_interval)
                continue
            self._record_success(key)
            return OperationResult(success=True, data=data, retried=attempts > 0,
                                   retry_count=attempts)

        if fallback is not None and self.config.enable_degraded_mode:
            try:
                data = await maybe_await(fallback())
            except Exception as e:
                logger.error(f"Fallback for provider {provider_type}:{component} failed: {e}")
            else:
                if health.status != ProviderStatus.ERROR:
                    self._enter_degraded(health)
                return OperationResult(success=True, data=data, used_fallback=True,
                                       retried=attempts > 0, retry_count=attempts)

        return OperationResult(success=False, error=error, retried=attempts > 0,
                               retry_count=attempts)

    def _wrap(self, exc: BaseException, provider_type: str, component: str,
              operation: str) -> ProviderError:
        if isinstance(exc, ProviderError):
            if exc.context.component is None:
                exc.context.component = component
            if exc.context.operation is None:
                exc.context.operation = operation
            return exc
        return ProviderError(
            self._describe(exc),
            provider_type,
            inner_error=exc,
            component=component,
            operation=operation,
        )

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def get_provider_health(self, provider_type: str, component: str) -> Optional[ProviderHealth]:
        health = self._health.get((provider_type, component))
        return None if health is None else ProviderHealth(**vars(health))

    def get_all_provider_health(self) -> List[ProviderHealth]:
        return [ProviderHealth(**vars(h)) for h in self._health.values()]

    def is_provider_system_healthy(self) -> bool:
        return all(h.status != ProviderStatus.ERROR for h in self._health.values())

    def get_provider_status_summary(self) -> Dict[str, Any]:
        providers = list(self._health.values())
        return {
            "total_providers": len(providers),
            "healthy_providers": sum(1 for p in providers if p.status == ProviderStatus.NORMAL),
            "degraded_providers": sum(1 for p in providers if p.status == ProviderStatus.DEGRADED),
            "error_providers": sum(1 for p in providers if p.status == ProviderStatus.ERROR),
            "disabled_providers": sum(1 for p in providers if not p.enabled),
            "is_healthy": self.is_provider_system_healthy(),
        }

    def reset_retry_counters(self) -> None:
        for health in self._health.values():
            health.retry_count = 0

    def get_retry_stats(self) -> Dict[str, int]:
        return {f"{t}:{c}": h.retry_count for (t, c), h in self._health.items() if h.retry_count}

    async def manual_recover_provider(self, provider_type: str, component: str) -> bool:
        """Reinitialize a provider in error state now. Returns False otherwise."""
        key = (provider_type, component)
        health = self._health.get(key)
        if health is None or health.status != ProviderStatus.ERROR:
            return False
        return await self._reinitialize(key)

    def dispose(self) -> None:
        for timers in (self._degraded_timers, self._reinit_timers):
            for handle in timers.values():
                handle.cancel()
            timers.clear()
        self._health.clear()
        self._reinitializers.clear()
        self._degrade_hooks.clear()
        super().dispose()
