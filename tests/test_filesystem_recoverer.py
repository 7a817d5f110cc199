"""
Unit tests for workguard/recoverers/filesystem.py

Tests per-operation repairs, probes, retry bounds and safe_execute.
"""

import asyncio
import logging

import pytest

from workguard.config import FileSystemRecovererConfig
from workguard.errors import ErrorCategory, FileSystemError, ParsingError
from workguard.recoverers.filesystem import CREATE, DELETE, READ, WATCH, WRITE, FileSystemRecoverer
from workguard.storage import MemoryResourceStore


def make_recoverer(dispatcher, store, clock, **overrides):
    config = FileSystemRecovererConfig(retry_interval=0, **overrides)
    return FileSystemRecoverer(dispatcher, config, store, clock)


def fs_error(operation, resource):
    return FileSystemError("failed", resource=resource, operation=operation)


class TestRegistration:

    def test_registers_with_dispatcher(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        assert recoverer in dispatcher.get_handlers(ErrorCategory.FILE_SYSTEM)
        assert recoverer in dispatcher.get_recoverers(ErrorCategory.FILE_SYSTEM)

        recoverer.dispose()
        assert dispatcher.get_recoverers(ErrorCategory.FILE_SYSTEM) == []

    def test_can_recover_requires_context(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        assert recoverer.can_recover(fs_error(READ, "/a.md"))
        assert not recoverer.can_recover(FileSystemError("no context"))
        assert not recoverer.can_recover(fs_error("chmod", "/a.md"))
        assert not recoverer.can_recover(ParsingError("x", resource="/a.md", operation=READ))


class TestRecover:

    @pytest.mark.asyncio
    async def test_read_missing_creates_empty_file(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)

        assert await recoverer.recover(fs_error(READ, "/docs/tasks.md")) is True
        assert await store.is_dir("/docs")
        assert await store.read_bytes("/docs/tasks.md") == b""

    @pytest.mark.asyncio
    async def test_read_missing_without_auto_create(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock, auto_create_file=False)
        assert await recoverer.recover(fs_error(READ, "/docs/tasks.md")) is False
        assert not await store.exists("/docs/tasks.md")

    @pytest.mark.asyncio
    async def test_write_creates_parent(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(WRITE, "/out/deep/a.md")) is True
        assert await store.is_dir("/out/deep")
        assert not await store.exists("/out/deep/a.md.tmp")

    @pytest.mark.asyncio
    async def test_write_parent_not_created_when_disabled(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock, auto_create_directory=False)
        assert await recoverer.recover(fs_error(WRITE, "/out/a.md")) is False

    @pytest.mark.asyncio
    async def test_write_probe_detects_permission_problem(self, dispatcher, clock):
        store = MemoryResourceStore({"/locked/a.md": b"x"})
        store.set_read_only("/locked")
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(WRITE, "/locked/a.md")) is False

    @pytest.mark.asyncio
    async def test_write_disk_space_probe(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock, disk_space_check=True)
        assert await recoverer.recover(fs_error(WRITE, "/out/a.md")) is True

    @pytest.mark.asyncio
    async def test_create_keeps_existing_content(self, dispatcher, clock):
        store = MemoryResourceStore({"/a.md": b"keep"})
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(CREATE, "/a.md")) is True
        assert await store.read_bytes("/a.md") == b"keep"

        assert await recoverer.recover(fs_error(CREATE, "/new/b.md")) is True
        assert await store.read_bytes("/new/b.md") == b""

    @pytest.mark.asyncio
    async def test_delete_absent_target_is_success(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(DELETE, "/gone.md")) is True

    @pytest.mark.asyncio
    async def test_delete_probe_then_delete(self, dispatcher, clock):
        store = MemoryResourceStore({"/a.md": b"x"})
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(DELETE, "/a.md")) is True
        assert not await store.exists("/a.md")
        assert not await store.exists("/a.md.backup")

    @pytest.mark.asyncio
    async def test_delete_read_only(self, dispatcher, clock):
        store = MemoryResourceStore({"/locked/a.md": b"x"})
        store.set_read_only("/locked/a.md")
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(DELETE, "/locked/a.md")) is False
        assert await store.exists("/locked/a.md")

    @pytest.mark.asyncio
    async def test_watch_restores_missing_file(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        assert await recoverer.recover(fs_error(WATCH, "/docs/tasks.md")) is True
        assert await store.exists("/docs/tasks.md")


class TestRetryBound:

    @pytest.mark.asyncio
    async def test_exhausted_after_max_retries(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock, auto_create_file=False, max_retries=2)
        error = fs_error(READ, "/missing.md")

        assert await recoverer.recover(error) is False
        assert await recoverer.recover(error) is False
        assert recoverer.get_retry_stats() == {"read:/missing.md": 2}
        assert not recoverer.can_recover(error)

        assert await recoverer.recover(error) is False
        assert recoverer.get_retry_stats() == {}

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        await recoverer.recover(fs_error(READ, "/a.md"))
        assert recoverer.get_retry_stats() == {}

    @pytest.mark.asyncio
    async def test_waits_retry_interval(self, dispatcher, store, clock):
        config = FileSystemRecovererConfig(retry_interval=1.0)
        recoverer = FileSystemRecoverer(dispatcher, config, store, clock)
        task = asyncio.ensure_future(recoverer.recover(fs_error(READ, "/a.md")))

        await clock.advance(0.5)
        assert not task.done()
        assert not await store.exists("/a.md")

        await clock.advance(0.5)
        assert await task is True

    @pytest.mark.asyncio
    async def test_reset_retry_counters(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock, auto_create_file=False)
        await recoverer.recover(fs_error(READ, "/missing.md"))
        recoverer.reset_retry_counters()
        assert recoverer.get_retry_stats() == {}


class TestSafeExecute:

    @pytest.mark.asyncio
    async def test_success(self, dispatcher, clock):
        store = MemoryResourceStore({"/a.md": b"text"})
        recoverer = make_recoverer(dispatcher, store, clock)
        result = await recoverer.read_text("/a.md")
        assert result.success
        assert result.data == "text"
        assert not result.retried

    @pytest.mark.asyncio
    async def test_recovers_and_retries(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        result = await recoverer.read_text("/docs/new.md")
        assert result.success
        assert result.data == ""
        assert result.retried
        assert result.retry_count == 1
        assert dispatcher.get_statistics().total == 0

    @pytest.mark.asyncio
    async def test_write_after_missing_parent(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        result = await recoverer.write_text("/out/a.md", "body")
        assert result.success and result.retried
        assert await store.read_text("/out/a.md") == "body"

    @pytest.mark.asyncio
    async def test_delete_missing(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        result = await recoverer.delete("/never-existed.md")
        assert result.success
        assert result.retried

    @pytest.mark.asyncio
    async def test_fallback_after_failed_recovery(self, dispatcher, store, clock, notifier):
        recoverer = make_recoverer(dispatcher, store, clock, auto_create_file=False)
        result = await recoverer.read_text("/missing.md", default="# default")

        assert result.success
        assert result.used_fallback
        assert result.data == "# default"
        assert dispatcher.get_statistics().by_category[ErrorCategory.FILE_SYSTEM] == 1

        await clock.advance(1.0)
        assert notifier.notifications == []

    @pytest.mark.asyncio
    async def test_failure_envelope(self, dispatcher, clock):
        store = MemoryResourceStore({"/locked/a.md": b"x"})
        store.set_read_only("/locked")
        recoverer = make_recoverer(dispatcher, store, clock)

        result = await recoverer.write_text("/locked/a.md", "new")
        assert not result.success
        assert isinstance(result.error, FileSystemError)
        assert isinstance(result.error.inner_error, PermissionError)
        assert result.error.context.operation == WRITE

    @pytest.mark.asyncio
    async def test_failing_fallback(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock, auto_create_file=False)

        async def primary():
            raise FileNotFoundError("missing")

        async def fallback():
            raise RuntimeError("cache empty")

        result = await recoverer.safe_execute(READ, "/missing.md", primary, fallback)
        assert not result.success
        assert result.used_fallback
        assert result.error.message == "cache empty"


class TestDispatcherIntegration:

    @pytest.mark.asyncio
    async def test_dispatched_error_is_repaired(self, dispatcher, store, clock, notifier, caplog):
        caplog.set_level(logging.WARNING, logger="workguard.recoverers.base")
        make_recoverer(dispatcher, store, clock)

        dispatcher.submit(fs_error(READ, "/docs/tasks.md"))
        await clock.advance(1.0)

        assert await store.exists("/docs/tasks.md")
        messages = [n.message for n in notifier.notifications]
        assert "Recovered automatically: failed" in messages
        assert any("read" in r.getMessage() for r in caplog.records)
