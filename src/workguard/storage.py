"""
Resource Store Interface

Async access to named resources (files) for the filesystem recoverer and
the parsing write-back. Supports dependency injection and testing with an
in-memory implementation.

Implementations raise the builtin ``FileNotFoundError``,
``FileExistsError`` and ``PermissionError`` so callers can classify
failures the same way for every backend.
"""

import asyncio
import posixpath
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Set


class ResourceStore(ABC):
    """
    Abstract resource store.

    Implementations include:
    - LocalResourceStore: local filesystem via pathlib
    - MemoryResourceStore: in-memory testing implementation
    """

    @abstractmethod
    async def exists(self, resource: str) -> bool:
        """Check whether a file or directory exists."""

    @abstractmethod
    async def is_dir(self, resource: str) -> bool:
        pass

    @abstractmethod
    async def read_bytes(self, resource: str) -> bytes:
        """
        Read a file.

        Raises:
            FileNotFoundError: resource is missing
        """

    @abstractmethod
    async def write_bytes(self, resource: str, data: bytes) -> None:
        """
        Create or replace a file.

        Raises:
            FileNotFoundError: parent directory is missing
        """

    @abstractmethod
    async def mkdir(self, resource: str) -> None:
        """Create a directory and any missing parents. Existing is fine."""

    @abstractmethod
    async def delete(self, resource: str) -> None:
        """
        Delete a file or directory tree.

        Raises:
            FileNotFoundError: resource is missing
        """

    @abstractmethod
    async def rename(self, source: str, target: str) -> None:
        pass

    def parent(self, resource: str) -> str:
        return str(Path(resource).parent)

    async def read_text(self, resource: str, encoding: str = "utf-8") -> str:
        return (await self.read_bytes(resource)).decode(encoding)

    async def write_text(self, resource: str, text: str, encoding: str = "utf-8") -> None:
        await self.write_bytes(resource, text.encode(encoding))


class LocalResourceStore(ResourceStore):
    """Local filesystem store; blocking calls run in a worker thread."""

    async def exists(self, resource: str) -> bool:
        return await asyncio.to_thread(Path(resource).exists)

    async def is_dir(self, resource: str) -> bool:
        return await asyncio.to_thread(Path(resource).is_dir)

    async def read_bytes(self, resource: str) -> bytes:
        return await asyncio.to_thread(Path(resource).read_bytes)

    async def write_bytes(self, resource: str, data: bytes) -> None:
        await asyncio.to_thread(Path(resource).write_bytes, data)

    async def mkdir(self, resource: str) -> None:
        await asyncio.to_thread(Path(resource).mkdir, parents=True, exist_ok=True)

    async def delete(self, resource: str) -> None:
        def _delete():
            path = Path(resource)
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()

        await asyncio.to_thread(_delete)

    async def rename(self, source: str, target: str) -> None:
        await asyncio.to_thread(Path(source).rename, target)


class MemoryResourceStore(ResourceStore):
    """
    In-memory store for testing.

    Paths are POSIX-style; the root ``/`` always exists. Individual
    resources can be marked read-only to exercise permission failures.
    """

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self._files: Dict[str, bytes] = {}
        self._dirs: Set[str] = {"/"}
        self._read_only: Set[str] = set()
        self._lock = asyncio.Lock()
        for resource, data in (files or {}).items():
            resource = self._norm(resource)
            self._add_parents(resource)
            self._files[resource] = data

    @staticmethod
    def _norm(resource: str) -> str:
        return posixpath.normpath("/" + resource.lstrip("/"))

    def parent(self, resource: str) -> str:
        return posixpath.dirname(self._norm(resource))

    def _add_parents(self, resource: str) -> None:
        parent = posixpath.dirname(resource)
        while parent not in self._dirs:
            self._dirs.add(parent)
            parent = posixpath.dirname(parent)

    def set_read_only(self, resource: str, read_only: bool = True) -> None:
        resource = self._norm(resource)
        if read_only:
            self._read_only.add(resource)
        else:
            self._read_only.discard(resource)

    def _check_writable(self, resource: str) -> None:
        if resource in self._read_only or posixpath.dirname(resource) in self._read_only:
            raise PermissionError(f"Permission denied: {resource}")

    async def exists(self, resource: str) -> bool:
        resource = self._norm(resource)
        async with self._lock:
            return resource in self._files or resource in self._dirs

    async def is_dir(self, resource: str) -> bool:
        async with self._lock:
            return self._norm(resource) in self._dirs

    async def read_bytes(self, resource: str) -> bytes:
        resource = self._norm(resource)
        async with self._lock:
            if resource not in self._files:
                raise FileNotFoundError(f"No such file: {resource}")
            return self._files[resource]

    async def write_bytes(self, resource: str, data: bytes) -> None:
        resource = self._norm(resource)
        async with self._lock:
            if posixpath.dirname(resource) not in self._dirs:
                raise FileNotFoundError(f"No such directory: {posixpath.dirname(resource)}")
            if resource in self._dirs:
                raise IsADirectoryError(f"Is a directory: {resource}")
            self._check_writable(resource)
            self._files[resource] = bytes(data)

    async def mkdir(self, resource: str) -> None:
        resource = self._norm(resource)
        async with self._lock:
            if resource in self._files:
                raise FileExistsError(f"File exists: {resource}")
            self._add_parents(resource)
            self._dirs.add(resource)

    async def delete(self, resource: str) -> None:
        resource = self._norm(resource)
        async with self._lock:
            self._check_writable(resource)
            if resource in self._files:
                del self._files[resource]
                return
            if resource in self._dirs and resource != "/":
                prefix = resource + "/"
                self._dirs = {d for d in self._dirs if d != resource and not d.startswith(prefix)}
                self._files = {f: b for f, b in self._files.items() if not f.startswith(prefix)}
                return
            raise FileNotFoundError(f"No such file or directory: {resource}")

    async def rename(self, source: str, target: str) -> None:
        source, target = self._norm(source), self._norm(target)
        async with self._lock:
            self._check_writable(source)
            if source not in self._files:
                raise FileNotFoundError(f"No such file: {source}")
            if posixpath.dirname(target) not in self._dirs:
                raise FileNotFoundError(f"No such directory: {posixpath.dirname(target)}")
            self._files[target] = self._files.pop(source)
