"""
Workguard - Error Handling & Component Health Management

This package provides categorized errors, a debounced error dispatcher,
per-category recovery (filesystem, parsing, provider) and a per-component
health boundary with degraded mode and timed auto-recovery.
"""

from .errors import (
    ErrorLevel,
    ErrorCategory,
    RecoveryStrategy,
    ErrorContext,
    WorkguardError,
    FileSystemError,
    ParsingError,
    ProviderError,
    CommandError,
    ConfigurationError,
    NetworkError,
    ComponentDisabledError,
    ComponentUnavailableError,
    wrap_exception,
)
from .clock import AsyncioClock, Clock, ManualClock, TimerHandle
from .config import WorkguardConfig, load_config
from .notifications import (
    CollectingNotifier,
    LoggingNotifier,
    Notification,
    NotificationSeverity,
    Notifier,
)
from .error_log import ErrorLog, ErrorLogEntry
from .dispatcher import (
    ErrorDispatcher,
    ErrorHandler,
    ErrorRecoverer,
    ErrorStatistics,
    NotificationOptions,
)
from .storage import LocalResourceStore, MemoryResourceStore, ResourceStore
from .recoverers import (
    FileSystemRecoverer,
    OperationResult,
    ParsingRecoverer,
    ProviderRecoverer,
    ProviderStatus,
    ProviderType,
)
from .boundary import ComponentHealth, ComponentHealthBoundary, ComponentStatus, FatalSink
from .framework import Workguard, create_framework

__version__ = "1.0.0"

__all__ = [
    # Errors
    "ErrorLevel",
    "ErrorCategory",
    "RecoveryStrategy",
    "ErrorContext",
    "WorkguardError",
    "FileSystemError",
    "ParsingError",
    "ProviderError",
    "CommandError",
    "ConfigurationError",
    "NetworkError",
    "ComponentDisabledError",
    "ComponentUnavailableError",
    "wrap_exception",
    # Time
    "AsyncioClock",
    "Clock",
    "ManualClock",
    "TimerHandle",
    # Configuration
    "WorkguardConfig",
    "load_config",
    # Notifications
    "CollectingNotifier",
    "LoggingNotifier",
    "Notification",
    "NotificationSeverity",
    "Notifier",
    # Dispatch
    "ErrorLog",
    "ErrorLogEntry",
    "ErrorDispatcher",
    "ErrorHandler",
    "ErrorRecoverer",
    "ErrorStatistics",
    "NotificationOptions",
    # Storage
    "LocalResourceStore",
    "MemoryResourceStore",
    "ResourceStore",
    # Recovery
    "FileSystemRecoverer",
    "OperationResult",
    "ParsingRecoverer",
    "ProviderRecoverer",
    "ProviderStatus",
    "ProviderType",
    # Health boundary
    "ComponentHealth",
    "ComponentHealthBoundary",
    "ComponentStatus",
    "FatalSink",
    "Workguard",
    "create_framework",
]
