"""
Error Taxonomy

Typed, leveled and categorized exceptions carrying structured context.
Constructing an error is a pure value operation: no logging, no I/O.
Every error renders a deterministic human-readable dump via ``get_details()``
and a structured form via ``to_dict()``.
"""

import functools
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ============================================================================
# Classification enums
# ============================================================================

@functools.total_ordering
class ErrorLevel(Enum):
    """Severity levels, ordered info < warning < error < critical."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def __lt__(self, other):
        if self.__class__ is other.__class__:
            return _LEVEL_ORDER[self] < _LEVEL_ORDER[other]
        return NotImplemented


_LEVEL_ORDER = {
    ErrorLevel.INFO: 0,
    ErrorLevel.WARNING: 1,
    ErrorLevel.ERROR: 2,
    ErrorLevel.CRITICAL: 3,
}


class ErrorCategory(str, Enum):
    """Fixed set of failure categories used to route errors."""
    FILE_SYSTEM = "filesystem"
    PARSING = "parsing"
    PROVIDER = "provider"
    COMMAND = "command"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    UNKNOWN = "unknown"


class RecoveryStrategy(str, Enum):
    """How the framework should try to get past an error."""
    NONE = "none"
    RETRY = "retry"
    FALLBACK = "fallback"
    SKIP = "skip"
    DEGRADE = "degrade"
    REINITIALIZE = "reinitialize"


# Default (level, strategy) per category
CATEGORY_DEFAULTS: Dict[ErrorCategory, Tuple[ErrorLevel, RecoveryStrategy]] = {
    ErrorCategory.FILE_SYSTEM: (ErrorLevel.ERROR, RecoveryStrategy.FALLBACK),
    ErrorCategory.PARSING: (ErrorLevel.WARNING, RecoveryStrategy.FALLBACK),
    ErrorCategory.PROVIDER: (ErrorLevel.WARNING, RecoveryStrategy.RETRY),
    ErrorCategory.COMMAND: (ErrorLevel.ERROR, RecoveryStrategy.SKIP),
    ErrorCategory.CONFIGURATION: (ErrorLevel.WARNING, RecoveryStrategy.FALLBACK),
    ErrorCategory.NETWORK: (ErrorLevel.WARNING, RecoveryStrategy.RETRY),
    ErrorCategory.UNKNOWN: (ErrorLevel.ERROR, RecoveryStrategy.NONE),
}


# ============================================================================
# Context
# ============================================================================

@dataclass
class ErrorContext:
    """Where and during what an error happened."""
    timestamp: datetime = field(default_factory=datetime.now)
    resource: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to structured log format."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "resource": self.resource,
            "line": self.line,
            "column": self.column,
            "component": self.component,
            "operation": self.operation,
            "data": dict(self.data),
        }


def _build_context(context: Optional[ErrorContext], fields: Dict[str, Any]) -> ErrorContext:
    populated = {key: value for key, value in fields.items() if value is not None}
    if context is None:
        return ErrorContext(**populated)
    for key, value in populated.items():
        setattr(context, key, value)
    return context


# ============================================================================
# Exception hierarchy
# ============================================================================

class WorkguardError(Exception):
    """Base exception for all framework errors."""

    def __init__(
        self,
        message: str,
        level: ErrorLevel = ErrorLevel.ERROR,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
        recovery_strategy: RecoveryStrategy = RecoveryStrategy.NONE,
        recoverable: bool = False,
        inner_error: Optional[BaseException] = None,
        **context_fields: Any,
    ):
        """
        Initialize a taxonomy error.

        Args:
            message: Error message
            level: Severity level
            category: Routing category
            context: Prebuilt context; ``context_fields`` are merged into it
            recovery_strategy: Suggested recovery strategy
            recoverable: Whether registered recoverers should be tried
            inner_error: Wrapped original exception
            **context_fields: ``resource``, ``line``, ``column``, ``component``,
                ``operation`` or ``data`` shortcuts
        """
        self.message = message
        self.level = level
        self.category = category
        self.context = _build_context(context, context_fields)
        self.recovery_strategy = recovery_strategy
        self.recoverable = recoverable
        self.inner_error = inner_error
        super().__init__(message)

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def _extra_details(self) -> Dict[str, Any]:
        """Specialization-specific fields appended to the details dump."""
        return {}

    def get_details(self) -> str:
        """Human-readable dump of every populated context field."""
        ctx = self.context
        details = [
            f"Level: {self.level.value}",
            f"Category: {self.category.value}",
            f"Recoverable: {self.recoverable}",
            f"Recovery Strategy: {self.recovery_strategy.value}",
            f"Timestamp: {ctx.timestamp.isoformat()}",
        ]
        if ctx.resource:
            details.append(f"Resource: {ctx.resource}")
        if ctx.line is not None:
            details.append(f"Line: {ctx.line}")
        if ctx.column is not None:
            details.append(f"Column: {ctx.column}")
        if ctx.component:
            details.append(f"Component: {ctx.component}")
        if ctx.operation:
            details.append(f"Operation: {ctx.operation}")
        for label, value in self._extra_details().items():
            if value is not None:
                details.append(f"{label}: {value}")
        return "\n".join(details)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to structured log format."""
        inner = None
        if self.inner_error is not None:
            inner = {
                "error_type": self.inner_error.__class__.__name__,
                "message": str(self.inner_error),
            }
        return {
            "error_type": self.name,
            "message": self.message,
            "level": self.level.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "recovery_strategy": self.recovery_strategy.value,
            "recoverable": self.recoverable,
            "inner_error": inner,
        }


class FileSystemError(WorkguardError):
    """Raised when a storage access (read, write, create, delete, watch) fails."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.FALLBACK,
                 inner_error: Optional[BaseException] = None, **context_fields: Any):
        super().__init__(message, ErrorLevel.ERROR, ErrorCategory.FILE_SYSTEM, context,
                         recovery_strategy, True, inner_error, **context_fields)


class ParsingError(WorkguardError):
    """Raised when document content cannot be parsed."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None,
                 line_content: Optional[str] = None,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.FALLBACK,
                 inner_error: Optional[BaseException] = None, **context_fields: Any):
        super().__init__(message, ErrorLevel.WARNING, ErrorCategory.PARSING, context,
                         recovery_strategy, True, inner_error, **context_fields)
        self.line_content = line_content

    def _extra_details(self) -> Dict[str, Any]:
        return {"Line Content": self.line_content or None}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["line_content"] = self.line_content
        return data


class ProviderError(WorkguardError):
    """Raised when a provider callback (decorations, codelens, watcher) fails."""

    def __init__(self, message: str, provider_type: str,
                 context: Optional[ErrorContext] = None,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.RETRY,
                 inner_error: Optional[BaseException] = None, **context_fields: Any):
        super().__init__(message, ErrorLevel.WARNING, ErrorCategory.PROVIDER, context,
                         recovery_strategy, True, inner_error, **context_fields)
        self.provider_type = provider_type

    def _extra_details(self) -> Dict[str, Any]:
        return {"Provider Type": self.provider_type}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["provider_type"] = self.provider_type
        return data


class CommandError(WorkguardError):
    """Raised when a user command fails."""

    def __init__(self, message: str, command_name: str,
                 context: Optional[ErrorContext] = None,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.SKIP,
                 inner_error: Optional[BaseException] = None, **context_fields: Any):
        super().__init__(message, ErrorLevel.ERROR, ErrorCategory.COMMAND, context,
                         recovery_strategy, True, inner_error, **context_fields)
        self.command_name = command_name

    def _extra_details(self) -> Dict[str, Any]:
        return {"Command": self.command_name}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["command_name"] = self.command_name
        return data


class ConfigurationError(WorkguardError):
    """Raised when a configuration value is missing or invalid."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None,
                 config_key: Optional[str] = None,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.FALLBACK,
                 inner_error: Optional[BaseException] = None, **context_fields: Any):
        super().__init__(message, ErrorLevel.WARNING, ErrorCategory.CONFIGURATION, context,
                         recovery_strategy, True, inner_error, **context_fields)
        self.config_key = config_key

    def _extra_details(self) -> Dict[str, Any]:
        return {"Config Key": self.config_key}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data


class NetworkError(WorkguardError):
    """Raised when an outbound request fails."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None,
                 url: Optional[str] = None,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.RETRY,
                 inner_error: Optional[BaseException] = None, **context_fields: Any):
        super().__init__(message, ErrorLevel.WARNING, ErrorCategory.NETWORK, context,
                         recovery_strategy, True, inner_error, **context_fields)
        self.url = url

    def _extra_details(self) -> Dict[str, Any]:
        return {"URL": self.url}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["url"] = self.url
        return data


class ComponentDisabledError(WorkguardError):
    """Raised by the boundary when a component is disabled. Do not retry now."""

    def __init__(self, component: str, operation: Optional[str] = None):
        super().__init__(
            f"Component {component} is disabled",
            ErrorLevel.WARNING,
            ErrorCategory.CONFIGURATION,
            recovery_strategy=RecoveryStrategy.NONE,
            recoverable=False,
            component=component,
            operation=operation,
        )


class ComponentUnavailableError(WorkguardError):
    """Raised by the boundary when a component is in error state. Try again later."""

    def __init__(self, component: str, operation: Optional[str] = None):
        super().__init__(
            f"Component {component} is in error state",
            ErrorLevel.ERROR,
            ErrorCategory.PROVIDER,
            recovery_strategy=RecoveryStrategy.RETRY,
            recoverable=True,
            component=component,
            operation=operation,
        )


def wrap_exception(exc: BaseException, **context_fields: Any) -> WorkguardError:
    """
    Turn any exception into a taxonomy error.

    Taxonomy errors pass through; missing component/operation are filled in
    from ``context_fields``. Anything else becomes a non-recoverable
    ``unknown`` error wrapping the original.
    """
    if isinstance(exc, WorkguardError):
        for key in ("component", "operation", "resource"):
            value = context_fields.get(key)
            if value is not None and getattr(exc.context, key) is None:
                setattr(exc.context, key, value)
        return exc

    level, strategy = CATEGORY_DEFAULTS[ErrorCategory.UNKNOWN]
    return WorkguardError(
        str(exc) or exc.__class__.__name__,
        level,
        ErrorCategory.UNKNOWN,
        recovery_strategy=strategy,
        recoverable=False,
        inner_error=exc,
        **context_fields,
    )
