"""Category recoverers registered with the error dispatcher."""

from workguard.recoverers.base import CategoryRecoverer, OperationResult, RetryTracker
from workguard.recoverers.filesystem import FileSystemRecoverer
from workguard.recoverers.parsing import FixRule, ParsingRecoverer
from workguard.recoverers.provider import (
    ProviderHealth,
    ProviderRecoverer,
    ProviderStatus,
    ProviderType,
)

__all__ = [
    "CategoryRecoverer",
    "OperationResult",
    "RetryTracker",
    "FileSystemRecoverer",
    "FixRule",
    "ParsingRecoverer",
    "ProviderHealth",
    "ProviderRecoverer",
    "ProviderStatus",
    "ProviderType",
]
