"""
In-process error log.

Keeps a bounded history of processed errors, aggregates repeats by
``level:category:message`` and exports the history as JSON or CSV.
Nothing is persisted; hosts that want a durable record export it.
"""

import csv
import io
import json
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from workguard.errors import ErrorCategory, ErrorLevel, WorkguardError, wrap_exception
from workguard.logging_config import get_logger

logger = get_logger(__name__)

CSV_COLUMNS = [
    "id", "timestamp", "level", "category", "message", "details",
    "resource", "line", "component", "operation", "resolved",
]


@dataclass
class ErrorLogEntry:
    """One recorded error occurrence."""
    id: str
    timestamp: datetime
    level: ErrorLevel
    category: ErrorCategory
    message: str
    details: Optional[str] = None
    resource: Optional[str] = None
    line: Optional[int] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "resource": self.resource,
            "line": self.line,
            "component": self.component,
            "operation": self.operation,
            "data": dict(self.data),
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution": self.resolution,
        }


@dataclass
class ErrorAggregate:
    """Repeat counts for one ``level:category:message`` key."""
    key: str
    message: str
    count: int
    first_occurrence: datetime
    last_occurrence: datetime
    affected_resources: Set[str] = field(default_factory=set)
    affected_components: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "message": self.message,
            "count": self.count,
            "first_occurrence": self.first_occurrence.isoformat(),
            "last_occurrence": self.last_occurrence.isoformat(),
            "affected_resources": sorted(self.affected_resources),
            "affected_components": sorted(self.affected_components),
        }


class ErrorLog:
    """Bounded error history with aggregation, resolution and export."""

    def __init__(self, max_entries: int = 1000, aggregate: bool = True):
        self.max_entries = max_entries
        self.aggregate = aggregate
        self._entries: "OrderedDict[str, ErrorLogEntry]" = OrderedDict()
        self._aggregates: Dict[str, ErrorAggregate] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, error: BaseException) -> ErrorLogEntry:
        """Record an error; non-taxonomy exceptions are wrapped first."""
        error = wrap_exception(error)
        ctx = error.context
        entry = ErrorLogEntry(
            id=uuid.uuid4().hex,
            timestamp=ctx.timestamp,
            level=error.level,
            category=error.category,
            message=error.message,
            details=error.get_details(),
            resource=ctx.resource,
            line=ctx.line,
            component=ctx.component,
            operation=ctx.operation,
            data=dict(ctx.data),
        )
        self._entries[entry.id] = entry
        if self.aggregate:
            self._aggregate(entry)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return entry

    def _aggregate(self, entry: ErrorLogEntry) -> None:
        key = f"{entry.level.value}:{entry.category.value}:{entry.message}"
        stats = self._aggregates.get(key)
        if stats is None:
            stats = ErrorAggregate(
                key=key,
                message=entry.message,
                count=0,
                first_occurrence=entry.timestamp,
                last_occurrence=entry.timestamp,
            )
            self._aggregates[key] = stats
        stats.count += 1
        stats.last_occurrence = max(stats.last_occurrence, entry.timestamp)
        if entry.resource:
            stats.affected_resources.add(entry.resource)
        if entry.component:
            stats.affected_components.add(entry.component)

    def resolve(self, entry_id: str, resolution: Optional[str] = None) -> bool:
        """Mark an entry resolved. Returns False if unknown or already resolved."""
        entry = self._entries.get(entry_id)
        if entry is None or entry.resolved:
            return False
        entry.resolved = True
        entry.resolved_at = datetime.now()
        entry.resolution = resolution
        logger.info("error_resolved", entry_id=entry_id, message=entry.message, resolution=resolution)
        return True

    def get_entry(self, entry_id: str) -> Optional[ErrorLogEntry]:
        return self._entries.get(entry_id)

    def get_entries(
        self,
        level: Optional[ErrorLevel] = None,
        category: Optional[ErrorCategory] = None,
        component: Optional[str] = None,
        resolved: Optional[bool] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[ErrorLogEntry]:
        """Entries matching every given filter, newest first."""
        entries = list(self._entries.values())
        if level is not None:
            entries = [e for e in entries if e.level == level]
        if category is not None:
            entries = [e for e in entries if e.category == category]
        if component is not None:
            entries = [e for e in entries if e.component == component]
        if resolved is not None:
            entries = [e for e in entries if e.resolved == resolved]
        if start_time is not None:
            entries = [e for e in entries if e.timestamp >= start_time]
        if end_time is not None:
            entries = [e for e in entries if e.timestamp <= end_time]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def get_aggregates(self) -> List[ErrorAggregate]:
        """Aggregates ordered by most recent occurrence."""
        return sorted(self._aggregates.values(), key=lambda a: a.last_occurrence, reverse=True)

    def export(self, fmt: str = "json") -> str:
        """
        Export the history.

        Args:
            fmt: ``json`` or ``csv``

        Returns:
            Serialized entries, newest first

        Raises:
            ValueError: unknown format
        """
        entries = self.get_entries()
        if fmt == "json":
            return json.dumps([e.to_dict() for e in entries], indent=2)
        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for e in entries:
                writer.writerow([
                    e.id,
                    e.timestamp.isoformat(),
                    e.level.value,
                    e.category.value,
                    e.message,
                    e.details or "",
                    e.resource or "",
                    "" if e.line is None else e.line,
                    e.component or "",
                    e.operation or "",
                    str(e.resolved).lower(),
                ])
            return buffer.getvalue()
        raise ValueError(f"Unsupported export format: {fmt}")

    def clear(self) -> None:
        self._entries.clear()
        self._aggregates.clear()
        logger.info("error_log_cleared")
