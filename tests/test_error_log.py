"""
Unit tests for workguard/error_log.py

Tests recording, aggregation, resolution, filtering and export.
"""

import csv
import io
import json

import pytest

from workguard.error_log import CSV_COLUMNS, ErrorLog
from workguard.errors import ErrorCategory, ErrorLevel, FileSystemError, ParsingError


@pytest.fixture
def log():
    return ErrorLog(max_entries=3)


class TestRecording:

    def test_record_taxonomy_error(self, log):
        entry = log.record(FileSystemError("missing", resource="/a.md", operation="read"))
        assert entry.category == ErrorCategory.FILE_SYSTEM
        assert entry.level == ErrorLevel.ERROR
        assert entry.resource == "/a.md"
        assert "Resource: /a.md" in entry.details
        assert log.get_entry(entry.id) is entry

    def test_record_plain_exception(self, log):
        entry = log.record(ValueError("bad value"))
        assert entry.category == ErrorCategory.UNKNOWN
        assert entry.message == "bad value"

    def test_bounded_history_drops_oldest(self, log):
        ids = [log.record(ParsingError(f"e{i}")).id for i in range(5)]
        assert len(log) == 3
        assert log.get_entry(ids[0]) is None
        assert log.get_entry(ids[-1]) is not None


class TestAggregation:

    def test_repeats_aggregate_by_level_category_message(self, log):
        log.record(FileSystemError("missing", resource="/a.md", component="storage"))
        log.record(FileSystemError("missing", resource="/b.md", component="storage"))
        log.record(FileSystemError("other"))

        aggregates = {a.key: a for a in log.get_aggregates()}
        missing = aggregates["error:filesystem:missing"]
        assert missing.count == 2
        assert missing.affected_resources == {"/a.md", "/b.md"}
        assert missing.to_dict()["affected_components"] == ["storage"]
        assert aggregates["error:filesystem:other"].count == 1

    def test_aggregation_disabled(self):
        log = ErrorLog(aggregate=False)
        log.record(FileSystemError("x"))
        assert log.get_aggregates() == []


class TestResolution:

    def test_resolve_once(self, log):
        entry = log.record(ParsingError("bad"))
        assert log.resolve(entry.id, "fixed heading") is True
        assert entry.resolved
        assert entry.resolution == "fixed heading"
        assert entry.resolved_at is not None
        assert log.resolve(entry.id) is False

    def test_resolve_unknown(self, log):
        assert log.resolve("nope") is False

    def test_filter_by_resolved_and_category(self, log):
        a = log.record(ParsingError("bad"))
        log.record(FileSystemError("missing", component="storage"))
        log.resolve(a.id)

        assert [e.id for e in log.get_entries(resolved=True)] == [a.id]
        assert len(log.get_entries(category=ErrorCategory.FILE_SYSTEM)) == 1
        assert len(log.get_entries(component="storage")) == 1
        assert log.get_entries(level=ErrorLevel.CRITICAL) == []


class TestExport:

    def test_json(self, log):
        log.record(ParsingError("bad", resource="/t.md", line=2))
        data = json.loads(log.export("json"))
        assert data[0]["category"] == "parsing"
        assert data[0]["line"] == 2

    def test_csv(self, log):
        log.record(FileSystemError("missing, really", resource="/a.md"))
        rows = list(csv.reader(io.StringIO(log.export("csv"))))
        assert rows[0] == CSV_COLUMNS
        assert rows[1][4] == "missing, really"
        assert rows[1][CSV_COLUMNS.index("resolved")] == "false"

    def test_unknown_format(self, log):
        with pytest.raises(ValueError):
            log.export("xml")

    def test_clear(self, log):
        log.record(ParsingError("bad"))
        log.clear()
        assert len(log) == 0
        assert log.get_aggregates() == []
