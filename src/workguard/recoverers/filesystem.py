"""
Filesystem recoverer.

Repairs storage failures: missing files are created on read or watch when
``auto_create_file`` is on, missing parent directories are created on write
or create when ``auto_create_directory`` is on, and deleting something that
is already gone counts as success. Permission checks are throwaway probes
against the store, never ACL inspection.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Optional

from workguard.clock import Clock
from workguard.config import FileSystemRecovererConfig
from workguard.dispatcher import ErrorDispatcher, NotificationOptions, maybe_await
from workguard.errors import ErrorCategory, FileSystemError, RecoveryStrategy, WorkguardError
from workguard.recoverers.base import CategoryRecoverer, OperationResult
from workguard.storage import LocalResourceStore, ResourceStore

logger = logging.getLogger(__name__)

READ = "read"
WRITE = "write"
CREATE = "create"
DELETE = "delete"
WATCH = "watch"

OPERATIONS = (READ, WRITE, CREATE, DELETE, WATCH)

OPERATION_SUGGESTIONS = {
    READ: "The file may not exist or may not be readable.",
    WRITE: "The file may not be writable or the disk may be full.",
    CREATE: "The directory may not exist or may not allow creating files.",
    DELETE: "The file may be in use or may not be deletable.",
    WATCH: "Could not watch the file; live updates may be affected.",
}

DISK_SPACE_PROBE_SIZE = 1024


class FileSystemRecoverer(CategoryRecoverer):
    """Recoverer and ``safe_execute`` helper for storage operations."""

    category = ErrorCategory.FILE_SYSTEM
    error_type = FileSystemError

    def __init__(
        self,
        dispatcher: ErrorDispatcher,
        config: Optional[FileSystemRecovererConfig] = None,
        store: Optional[ResourceStore] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(dispatcher, config or FileSystemRecovererConfig(), clock)
        self.store = store or LocalResourceStore()

    def suggestion_for(self, error: WorkguardError) -> str:
        return OPERATION_SUGGESTIONS.get(error.context.operation, "")

    def can_recover(self, error: WorkguardError) -> bool:
        if error.context.operation not in OPERATIONS or not error.context.resource:
            return False
        return super().can_recover(error)

    async def _recover(self, error: WorkguardError) -> bool:
        resource = error.context.resource
        if not resource:
            return False
        handlers = {
            READ: self._recover_read,
            WRITE: self._recover_write,
            CREATE: self._recover_create,
            DELETE: self._recover_delete,
            WATCH: self._recover_watch,
        }
        handler = handlers.get(error.context.operation)
        if handler is None:
            return False
        return await handler(resource)

    # ------------------------------------------------------------------
    # Per-operation repairs
    # ------------------------------------------------------------------

    async def _recover_read(self, resource: str) -> bool:
        if not await self.store.exists(resource):
            if not self.config.auto_create_file:
                return False
            if not await self._ensure_parent(resource):
                return False
            await self.store.write_bytes(resource, b"")
            logger.info(f"Created missing file: {resource}")
            return True

        if self.config.permission_check and not await self._can_read(resource):
            return False
        return True

    async def _recover_write(self, resource: str) -> bool:
        if not await self._ensure_parent(resource):
            return False
        if self.config.permission_check and not await self._can_write(resource):
            return False
        if self.config.disk_space_check and not await self._has_disk_space(resource):
            return False
        return True

    async def _recover_create(self, resource: str) -> bool:
        if not await self._ensure_parent(resource):
            return False
        if self.config.permission_check and not await self._can_write(resource):
            return False
        if not await self.store.exists(resource):
            await self.store.write_bytes(resource, b"")
        return True

    async def _recover_delete(self, resource: str) -> bool:
        if not await self.store.exists(resource):
            return True
        if self.config.permission_check and not await self._can_delete(resource):
            return False
        await self.store.delete(resource)
        return True

    async def _recover_watch(self, resource: str) -> bool:
        if not await self.store.exists(resource) and self.config.auto_create_file:
            if await self._ensure_parent(resource):
                await self.store.write_bytes(resource, b"")
                logger.info(f"Created missing file to restore watch: {resource}")
        if self.config.permission_check:
            return await self.store.is_dir(self.store.parent(resource))
        return True

    async def _ensure_parent(self, resource: str) -> bool:
        parent = self.store.parent(resource)
        if await self.store.exists(parent):
            return True
        if not self.config.auto_create_directory:
            return False
        await self.store.mkdir(parent)
        logger.info(f"Created missing directory: {parent}")
        return True

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def _can_read(self, resource: str) -> bool:
        try:
            await self.store.read_bytes(resource)
            return True
        except OSError:
            return False

    async def _can_write(self, resource: str) -> bool:
        probe = f"{resource}.tmp"
        try:
            await self.store.write_bytes(probe, b"\0")
            await self.store.delete(probe)
            return True
        except OSError:
            return False

    async def _can_delete(self, resource: str) -> bool:
        backup = f"{resource}.backup"
        try:
            await self.store.rename(resource, backup)
        except OSError:
            return False
        await self.store.rename(backup, resource)
        return True

    async def _has_disk_space(self, resource: str) -> bool:
        probe = f"{self.store.parent(resource)}/.space_check_{int(time.time() * 1000)}"
        try:
            await self.store.write_bytes(probe, bytes(DISK_SPACE_PROBE_SIZE))
            await self.store.delete(probe)
            return True
        except OSError:
            return False

    # ------------------------------------------------------------------
    # Safe execution
    # ------------------------------------------------------------------

    def _error(self, exc: BaseException, operation: str, resource: str,
               strategy: RecoveryStrategy = RecoveryStrategy.RETRY) -> FileSystemError:
        return FileSystemError(
            self._describe(exc),
            recovery_strategy=strategy,
            inner_error=exc,
            resource=resource,
            operation=operation,
        )

    async def safe_execute(
        self,
        operation: str,
        resource: str,
        fn: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> OperationResult:
        """
        Run a storage operation and return an ``OperationResult``.

        On failure one transparent recovery plus retry is attempted; if that
        does not help the error goes to the dispatcher without a user
        notification and ``fallback`` (if given) supplies the data.
        """
        try:
            return OperationResult(success=True, data=await maybe_await(fn()))
        except Exception as e:
            fs_error = self._error(e, operation, resource)

        retried = False
        if self.can_recover(fs_error) and await self.recover(fs_error):
            retried = True
            if operation == DELETE:
                # recovery either found the target gone or removed it
                return OperationResult(success=True, retried=True, retry_count=1)
            try:
                data = await maybe_await(fn())
                return OperationResult(success=True, data=data, retried=True, retry_count=1)
            except Exception as e:
                fs_error = self._error(e, operation, resource)

        self.dispatcher.submit(fs_error, NotificationOptions(show_to_user=False, show_details=False))

        if fallback is not None:
            try:
                data = await maybe_await(fallback())
                return OperationResult(success=True, data=data, used_fallback=True,
                                       retried=retried, retry_count=int(retried))
            except Exception as e:
                return OperationResult(
                    success=False,
                    error=self._error(e, operation, resource, RecoveryStrategy.NONE),
                    used_fallback=True,
                    retried=retried,
                    retry_count=int(retried),
                )

        return OperationResult(success=False, error=fs_error, retried=retried,
                               retry_count=int(retried))

    # Convenience wrappers around the store

    async def read_text(self, resource: str, default: Optional[str] = None) -> OperationResult:
        fallback = None
        if default is not None:
            async def fallback():
                return default
        return await self.safe_execute(READ, resource, lambda: self.store.read_text(resource), fallback)

    async def write_text(self, resource: str, text: str) -> OperationResult:
        return await self.safe_execute(WRITE, resource, lambda: self.store.write_text(resource, text))

    async def delete(self, resource: str) -> OperationResult:
        return await self.safe_execute(DELETE, resource, lambda: self.store.delete(resource))
