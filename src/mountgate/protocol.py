"""Adapter protocols and the per-call context handed to adapters.

Adapters implement any subset of the operations in ``operations.Operation``
as coroutine methods named after the operation. The protocols below group
those methods the way backends usually implement them; an adapter is not
required to satisfy any of them in full; the adapter registry records
exactly which operations each adapter exposes.

Every method receives an ``AdapterContext`` first and full virtual paths
(``prefix:/rest``) after it. Storage failures must be raised
(``StorageError`` or ``OSError``), never returned as sentinels.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .exceptions import MountpointNotFoundError
from .utils import get_prefix

if TYPE_CHECKING:
    from .mounts import MountRegistry, Mountpoint
    from .types import FileStat


@dataclass(frozen=True)
class Caller:
    """Authenticated identity supplied by the transport layer."""

    username: str = ""
    groups: tuple[str, ...] = ()


@dataclass(frozen=True)
class AdapterContext:
    """What an adapter knows about the call it is serving.

    Attributes:
        mountpoint: The mountpoint the request resolved to.
        caller: Identity of the requesting user.
        mounts: The read-only registry, for locating the mountpoint of a
            second path in same-adapter rename/copy.
    """

    mountpoint: Mountpoint
    caller: Caller
    mounts: MountRegistry

    def mountpoint_for(self, path: str) -> Mountpoint:
        """Return the mountpoint owning *path*."""
        prefix = get_prefix(path)
        if prefix == self.mountpoint.name:
            return self.mountpoint
        mountpoint = self.mounts.get(prefix)
        if mountpoint is None:
            raise MountpointNotFoundError(f"Mountpoint not found for '{prefix}'")
        return mountpoint


@runtime_checkable
class SupportsRead(Protocol):
    """Read-side operations."""

    async def exists(self, ctx: AdapterContext, path: str) -> bool: ...

    async def stat(self, ctx: AdapterContext, path: str) -> FileStat: ...

    async def readdir(self, ctx: AdapterContext, path: str) -> list[FileStat]: ...

    async def readfile(self, ctx: AdapterContext, path: str) -> AsyncIterator[bytes]:
        """Return a byte stream. Must raise before returning if *path* is unreadable."""
        ...


@runtime_checkable
class SupportsWrite(Protocol):
    """State-mutating single-path operations."""

    async def writefile(self, ctx: AdapterContext, path: str, data: bytes) -> int: ...

    async def mkdir(self, ctx: AdapterContext, path: str) -> bool: ...

    async def unlink(self, ctx: AdapterContext, path: str) -> bool: ...

    async def touch(self, ctx: AdapterContext, path: str) -> bool: ...


@runtime_checkable
class SupportsTransfer(Protocol):
    """Native two-path operations within one adapter."""

    async def rename(self, ctx: AdapterContext, src: str, dest: str) -> bool: ...

    async def copy(self, ctx: AdapterContext, src: str, dest: str) -> bool: ...


@runtime_checkable
class SupportsSearch(Protocol):
    """Name search below a root directory."""

    async def search(self, ctx: AdapterContext, root: str, pattern: str) -> list[FileStat]: ...


@runtime_checkable
class SupportsLifecycle(Protocol):
    """Optional open/close hooks called by the application at startup/shutdown."""

    async def open(self) -> None: ...

    async def close(self) -> None: ...
