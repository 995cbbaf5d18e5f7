"""SystemAdapter — the default adapter, backed by the host filesystem."""

from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import os
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from mountgate.exceptions import StorageError
from mountgate.types import FileStat
from mountgate.utils import guess_mime_type, join_prefix, strip_prefix

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from mountgate.mounts import Mountpoint
    from mountgate.protocol import AdapterContext, Caller

CHUNK_SIZE = 64 * 1024
MAX_SEARCH_RESULTS = 1000


class SystemAdapter:
    """Direct host disk access. Each mountpoint maps to its ``root`` directory.

    ``root`` may contain ``{username}``, expanded per caller so every user
    gets a private tree (``{vfs}/{username}``). Directories for a mountpoint
    root are created on first use.

    Security: _resolve() ensures all paths stay within the mountpoint root
    and refuses to traverse symlinks.
    """

    def __init__(self, default_root: Path | str | None = None) -> None:
        self.default_root = Path(default_root).resolve() if default_root else None

    # =========================================================================
    # Path Resolution & Security
    # =========================================================================

    def _root_for(self, mountpoint: Mountpoint, caller: Caller) -> Path:
        template = mountpoint.root
        if template is None:
            if self.default_root is None:
                raise StorageError(
                    f"Mountpoint '{mountpoint.name}' has no root directory", "ENOENT"
                )
            return self.default_root / mountpoint.name
        if "{username}" in template:
            if not caller.username:
                raise StorageError(
                    f"Mountpoint '{mountpoint.name}' requires a user", "EACCES"
                )
            template = template.replace("{username}", caller.username)
        return Path(template).resolve()

    async def _resolve(self, ctx: AdapterContext, path: str) -> tuple[Path, Path]:
        """Resolve a virtual path to (physical path, mountpoint root) off the event loop."""
        return await asyncio.to_thread(self._resolve_sync, ctx, path)

    def _resolve_sync(self, ctx: AdapterContext, path: str) -> tuple[Path, Path]:
        mountpoint = ctx.mountpoint_for(path)
        root = self._root_for(mountpoint, ctx.caller)
        root.mkdir(parents=True, exist_ok=True)

        rel = strip_prefix(path).lstrip("/")
        if not rel:
            return root, root

        current = root
        for part in Path(rel).parts:
            current = current / part
            if current.is_symlink():
                raise StorageError(f"Symlinks not allowed: {path}", "EACCES")

        resolved = (root / rel).resolve()
        try:
            resolved.relative_to(root)
        except ValueError:
            raise StorageError(
                f"Path traversal detected: {path} resolves outside mountpoint", "EACCES"
            ) from None
        return resolved, root

    def _to_virtual(self, prefix: str, physical: Path, root: Path) -> str:
        rel = physical.relative_to(root).as_posix()
        return join_prefix(prefix, "" if rel == "." else rel)

    def _stat(self, prefix: str, physical: Path, root: Path) -> FileStat:
        st = physical.stat()
        is_dir = physical.is_dir()
        return FileStat(
            path=self._to_virtual(prefix, physical, root),
            filename=physical.name,
            is_directory=is_dir,
            size=0 if is_dir else st.st_size,
            mime=None if is_dir else guess_mime_type(physical.name),
            mtime=datetime.fromtimestamp(st.st_mtime, tz=UTC),
        )

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def exists(self, ctx: AdapterContext, path: str) -> bool:
        resolved, _ = await self._resolve(ctx, path)
        return await asyncio.to_thread(resolved.exists)

    async def stat(self, ctx: AdapterContext, path: str) -> FileStat:
        resolved, root = await self._resolve(ctx, path)
        prefix = ctx.mountpoint_for(path).name

        def _lookup() -> FileStat:
            if not resolved.exists():
                raise StorageError(f"File not found: {path}", "ENOENT")
            return self._stat(prefix, resolved, root)

        return await asyncio.to_thread(_lookup)

    async def readdir(self, ctx: AdapterContext, path: str) -> list[FileStat]:
        resolved, root = await self._resolve(ctx, path)
        prefix = ctx.mountpoint_for(path).name

        def _scan() -> list[FileStat]:
            if not resolved.exists():
                raise StorageError(f"Directory not found: {path}", "ENOENT")
            if not resolved.is_dir():
                raise StorageError(f"Not a directory: {path}", "ENOTDIR")
            entries: list[FileStat] = []
            for entry in os.scandir(resolved):
                try:
                    entries.append(self._stat(prefix, Path(entry.path), root))
                except (OSError, ValueError):
                    continue
            entries.sort(key=lambda x: (not x.is_directory, x.filename.lower()))
            return entries

        return await asyncio.to_thread(_scan)

    async def readfile(self, ctx: AdapterContext, path: str) -> AsyncIterator[bytes]:
        """Open *path* and return a chunked byte stream over it."""
        resolved, _ = await self._resolve(ctx, path)

        def _open():
            if not resolved.exists():
                raise StorageError(f"File not found: {path}", "ENOENT")
            if resolved.is_dir():
                raise StorageError(f"Path is a directory, not a file: {path}", "EISDIR")
            return resolved.open("rb")

        handle = await asyncio.to_thread(_open)
        return self._stream(handle)

    async def _stream(self, handle) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def search(self, ctx: AdapterContext, root: str, pattern: str) -> list[FileStat]:
        """Find entries below *root* whose name matches the glob *pattern*."""
        resolved, mount_root = await self._resolve(ctx, root)
        prefix = ctx.mountpoint_for(root).name

        # A bare word matches anywhere in the name
        if not any(ch in pattern for ch in "*?["):
            pattern = f"*{pattern}*"

        def _walk() -> list[FileStat]:
            if not resolved.is_dir():
                raise StorageError(f"Not a directory: {root}", "ENOTDIR")
            found: list[FileStat] = []
            for dirpath, dirnames, filenames in os.walk(resolved):
                for name in dirnames + filenames:
                    if not fnmatch.fnmatch(name.lower(), pattern.lower()):
                        continue
                    candidate = Path(dirpath) / name
                    if candidate.is_symlink():
                        continue
                    found.append(self._stat(prefix, candidate, mount_root))
                    if len(found) >= MAX_SEARCH_RESULTS:
                        return found
            return found

        return await asyncio.to_thread(_walk)

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def writefile(self, ctx: AdapterContext, path: str, data: bytes) -> int:
        """Write *data* to *path*. Atomic via tempfile + replace."""
        resolved, root = await self._resolve(ctx, path)

        def _write() -> int:
            if resolved == root or resolved.is_dir():
                raise StorageError(f"Path is a directory, not a file: {path}", "EISDIR")
            resolved.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(resolved.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                Path(tmp_path).replace(resolved)
            except Exception:
                with contextlib.suppress(OSError):
                    Path(tmp_path).unlink()
                raise
            return len(data)

        return await asyncio.to_thread(_write)

    async def mkdir(self, ctx: AdapterContext, path: str) -> bool:
        resolved, _ = await self._resolve(ctx, path)

        def _mkdir() -> None:
            if resolved.exists():
                raise StorageError(f"Path already exists: {path}", "EEXIST")
            resolved.mkdir(parents=True)

        await asyncio.to_thread(_mkdir)
        return True

    async def touch(self, ctx: AdapterContext, path: str) -> bool:
        resolved, _ = await self._resolve(ctx, path)

        def _touch() -> None:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.touch()

        await asyncio.to_thread(_touch)
        return True

    async def unlink(self, ctx: AdapterContext, path: str) -> bool:
        resolved, root = await self._resolve(ctx, path)
        if resolved == root:
            raise StorageError(f"Cannot remove mountpoint root: {path}", "EACCES")

        def _remove() -> None:
            if not resolved.exists():
                raise StorageError(f"File not found: {path}", "ENOENT")
            if resolved.is_dir():
                shutil.rmtree(resolved)
            else:
                resolved.unlink()

        await asyncio.to_thread(_remove)
        return True

    async def rename(self, ctx: AdapterContext, src: str, dest: str) -> bool:
        src_resolved, src_root = await self._resolve(ctx, src)
        dest_resolved, dest_root = await self._resolve(ctx, dest)
        if src_resolved == src_root or dest_resolved == dest_root:
            raise StorageError(f"Cannot move mountpoint root: {src} -> {dest}", "EACCES")

        def _move() -> None:
            if not src_resolved.exists():
                raise StorageError(f"File not found: {src}", "ENOENT")
            dest_resolved.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src_resolved), str(dest_resolved))

        await asyncio.to_thread(_move)
        return True

    async def copy(self, ctx: AdapterContext, src: str, dest: str) -> bool:
        src_resolved, _ = await self._resolve(ctx, src)
        dest_resolved, dest_root = await self._resolve(ctx, dest)
        if dest_resolved == dest_root:
            raise StorageError(f"Cannot overwrite mountpoint root: {dest}", "EACCES")

        def _copy() -> None:
            if not src_resolved.exists():
                raise StorageError(f"File not found: {src}", "ENOENT")
            dest_resolved.parent.mkdir(parents=True, exist_ok=True)
            if src_resolved.is_dir():
                shutil.copytree(src_resolved, dest_resolved, symlinks=True)
            else:
                shutil.copy2(src_resolved, dest_resolved)

        await asyncio.to_thread(_copy)
        return True
