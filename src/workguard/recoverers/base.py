"""
Shared machinery for category recoverers.

A ``CategoryRecoverer`` is both the diagnostic handler and the recoverer for
one error category. It registers itself with the dispatcher it is given,
bounds recovery attempts per ``operation:resource`` key and waits on the
clock before each attempt.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar, Dict, Generic, Optional, Type, TypeVar

from workguard import metrics
from workguard.clock import Clock
from workguard.dispatcher import ErrorDispatcher, ErrorHandler, ErrorRecoverer
from workguard.errors import ErrorCategory, WorkguardError
from workguard.logging_config import get_logger, log_recovery_action

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Uniform result envelope returned by the ``safe_*`` helpers."""
    success: bool
    data: Optional[T] = None
    error: Optional[WorkguardError] = None
    used_fallback: bool = False
    retried: bool = False
    retry_count: int = 0
    is_partial: bool = False
    fix_count: int = 0


class RetryTracker:
    """Bounded attempt counters keyed by ``operation:resource``."""

    def __init__(self, max_retries: int):
        self.max_retries = max_retries
        self._counts: Dict[str, int] = {}

    def count(self, key: str) -> int:
        return self._counts.get(key, 0)

    def can_retry(self, key: str) -> bool:
        return self.count(key) < self.max_retries

    def begin(self, key: str) -> bool:
        """
        Record an attempt for ``key``.

        Returns False, and drops the counter, once the bound is reached.
        """
        current = self.count(key)
        if current >= self.max_retries:
            self._counts.pop(key, None)
            return False
        self._counts[key] = current + 1
        return True

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._counts.clear()
        else:
            self._counts.pop(key, None)

    def stats(self) -> Dict[str, int]:
        return dict(self._counts)


def retry_key(error: WorkguardError) -> str:
    return f"{error.context.operation or ''}:{error.context.resource or ''}"


class CategoryRecoverer(ErrorHandler, ErrorRecoverer):
    """
    Base class for the filesystem, parsing and provider recoverers.

    Subclasses set ``category`` and ``error_type`` and implement
    ``_recover`` (the actual repair) and ``suggestion_for``.
    """

    category: ClassVar[ErrorCategory]
    error_type: ClassVar[Type[WorkguardError]]

    def __init__(self, dispatcher: ErrorDispatcher, config, clock: Optional[Clock] = None):
        self.dispatcher = dispatcher
        self.config = config
        self.clock = clock or dispatcher.clock
        self.retries = RetryTracker(config.max_retries)
        self.event_log = get_logger(self.__class__.__module__)
        self._disposed = False

        dispatcher.register_handler(self.category, self)
        dispatcher.register_recoverer(self.category, self)

    # ------------------------------------------------------------------
    # ErrorHandler
    # ------------------------------------------------------------------

    def can_handle(self, error: WorkguardError) -> bool:
        return isinstance(error, self.error_type)

    async def handle_error(self, error: WorkguardError) -> None:
        """Log the failure with an operation-specific suggestion."""
        if not self.can_handle(error):
            return
        ctx = error.context
        logger.warning(
            f"{self.category.value} error [{ctx.operation or 'unknown'}]: {error.message}",
            extra={
                "resource": ctx.resource,
                "component": ctx.component,
                "suggestion": self.suggestion_for(error),
                "recoverable": error.recoverable,
                "recovery_strategy": error.recovery_strategy.value,
            },
        )

    def suggestion_for(self, error: WorkguardError) -> str:
        return ""

    # ------------------------------------------------------------------
    # ErrorRecoverer
    # ------------------------------------------------------------------

    def retry_key(self, error: WorkguardError) -> str:
        return retry_key(error)

    def can_recover(self, error: WorkguardError) -> bool:
        if self._disposed or not isinstance(error, self.error_type):
            return False
        if not error.context.operation:
            return False
        return error.recoverable and self.retries.can_retry(self.retry_key(error))

    async def recover(self, error: WorkguardError) -> bool:
        """Attempt a repair. Never raises."""
        if self._disposed or not isinstance(error, self.error_type):
            return False
        key = self.retry_key(error)
        target = error.context.resource or error.context.component or key
        if not self.retries.begin(key):
            metrics.RECOVERY_ATTEMPTS_TOTAL.labels(
                category=self.category.value, outcome="exhausted").inc()
            log_recovery_action(self.event_log, "recover", "exhausted", target, key=key)
            return False

        await self.clock.sleep(self.config.retry_interval)
        if self._disposed:
            return False

        try:
            recovered = await self._recover(error)
        except Exception as e:
            logger.error(f"Recovery for {key} failed: {e}", exc_info=True)
            recovered = False

        if recovered:
            self.retries.reset(key)
        log_recovery_action(
            self.event_log, "recover", "completed" if recovered else "failed", target, key=key,
        )
        return recovered

    async def _recover(self, error: WorkguardError) -> bool:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def reset_retry_counters(self) -> None:
        self.retries.reset()

    def get_retry_stats(self) -> Dict[str, int]:
        return self.retries.stats()

    def dispose(self) -> None:
        self._disposed = True
        self.retries.reset()
        self.dispatcher.unregister(self)

    @staticmethod
    def _describe(exc: BaseException) -> str:
        return str(exc) or exc.__class__.__name__
