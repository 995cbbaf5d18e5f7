"""DatabaseAdapter — files stored as rows, one SQL database for many mountpoints."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import posixpath
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel, select

from mountgate.exceptions import StorageError
from mountgate.models.files import StoredFile
from mountgate.types import FileStat
from mountgate.utils import guess_mime_type, join_prefix, strip_prefix

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator

    from mountgate.models.files import StoredFileBase
    from mountgate.protocol import AdapterContext

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 1000


class DatabaseAdapter:
    """Database-backed adapter — content lives in a single table.

    Rows are keyed by (mountpoint name, path), so one adapter instance can
    serve several mountpoints and rename/copy natively between them. The
    engine is created lazily on first use or by ``open()``.
    """

    def __init__(
        self,
        url: str = "sqlite+aiosqlite://",
        file_model: type[StoredFileBase] | None = None,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.url = url
        self._file_model: type[StoredFileBase] = file_model or StoredFile  # type: ignore[assignment]
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _ensure_db(self) -> async_sessionmaker[AsyncSession]:
        """Initialize the engine and tables if needed."""
        if self._session_factory is not None:
            return self._session_factory
        async with self._init_lock:
            if self._session_factory is None:
                if self._engine is None:
                    self._engine = create_async_engine(self.url, echo=False)
                async with self._engine.begin() as conn:
                    await conn.run_sync(SQLModel.metadata.create_all)
                self._session_factory = async_sessionmaker(
                    self._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )
                logger.debug("Database adapter ready at %s", self.url)
        return self._session_factory

    async def open(self) -> None:
        await self._ensure_db()

    async def close(self) -> None:
        """Dispose of the engine and release resources."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        factory = await self._ensure_db()
        session = factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _locate(self, ctx: AdapterContext, path: str) -> tuple[str, str]:
        """Return (mountpoint name, relative path) for a virtual path."""
        return ctx.mountpoint_for(path).name, strip_prefix(path)

    async def _get(self, session: AsyncSession, mount: str, path: str) -> StoredFileBase | None:
        model = self._file_model
        result = await session.execute(
            select(model).where(model.mount == mount, model.path == path)
        )
        return result.scalar_one_or_none()

    async def _descendants(
        self, session: AsyncSession, mount: str, path: str
    ) -> list[StoredFileBase]:
        model = self._file_model
        query = select(model).where(model.mount == mount)
        if path != "/":
            query = query.where(model.path.startswith(path + "/", autoescape=True))  # type: ignore[attr-defined]
        result = await session.execute(query)
        return [row for row in result.scalars().all() if row.path != "/"]

    async def _is_directory(self, session: AsyncSession, mount: str, path: str) -> bool:
        if path == "/":
            return True
        row = await self._get(session, mount, path)
        return row is not None and row.is_directory

    async def _ensure_parents(self, session: AsyncSession, mount: str, path: str) -> None:
        """Create missing parent directory rows for *path*."""
        parent = posixpath.dirname(path)
        missing: list[str] = []
        while parent != "/":
            row = await self._get(session, mount, parent)
            if row is not None:
                if not row.is_directory:
                    raise StorageError(f"Not a directory: {mount}:{parent}", "ENOTDIR")
                break
            missing.append(parent)
            parent = posixpath.dirname(parent)

        for directory in reversed(missing):
            session.add(self._new_row(mount, directory, is_directory=True))
        if missing:
            await session.flush()

    def _new_row(
        self,
        mount: str,
        path: str,
        *,
        is_directory: bool = False,
        content: bytes | None = None,
    ) -> StoredFileBase:
        name = posixpath.basename(path)
        return self._file_model(
            mount=mount,
            path=path,
            parent_path=posixpath.dirname(path),
            name=name,
            is_directory=is_directory,
            mime_type=None if is_directory else guess_mime_type(name),
            content=None if is_directory else (content or b""),
            size_bytes=0 if is_directory else len(content or b""),
        )

    def _to_stat(self, row: StoredFileBase) -> FileStat:
        return FileStat(
            path=join_prefix(row.mount, row.path),
            filename=row.name,
            is_directory=row.is_directory,
            size=row.size_bytes,
            mime=row.mime_type,
            mtime=row.updated_at,
        )

    # ------------------------------------------------------------------
    # Read Operations
    # ------------------------------------------------------------------

    async def exists(self, ctx: AdapterContext, path: str) -> bool:
        mount, rel = self._locate(ctx, path)
        if rel == "/":
            return True
        async with self._session() as session:
            return await self._get(session, mount, rel) is not None

    async def stat(self, ctx: AdapterContext, path: str) -> FileStat:
        mount, rel = self._locate(ctx, path)
        if rel == "/":
            return FileStat(path=join_prefix(mount, "/"), filename="", is_directory=True)
        async with self._session() as session:
            row = await self._get(session, mount, rel)
        if row is None:
            raise StorageError(f"File not found: {path}", "ENOENT")
        return self._to_stat(row)

    async def readdir(self, ctx: AdapterContext, path: str) -> list[FileStat]:
        mount, rel = self._locate(ctx, path)
        model = self._file_model
        async with self._session() as session:
            if rel != "/":
                row = await self._get(session, mount, rel)
                if row is None:
                    raise StorageError(f"Directory not found: {path}", "ENOENT")
                if not row.is_directory:
                    raise StorageError(f"Not a directory: {path}", "ENOTDIR")
            result = await session.execute(
                select(model).where(model.mount == mount, model.parent_path == rel)
            )
            rows = [r for r in result.scalars().all() if r.path != "/"]

        entries = [self._to_stat(row) for row in rows]
        entries.sort(key=lambda x: (not x.is_directory, x.filename.lower()))
        return entries

    async def readfile(self, ctx: AdapterContext, path: str) -> AsyncIterator[bytes]:
        mount, rel = self._locate(ctx, path)
        async with self._session() as session:
            row = None if rel == "/" else await self._get(session, mount, rel)
        if rel == "/" or (row is not None and row.is_directory):
            raise StorageError(f"Path is a directory, not a file: {path}", "EISDIR")
        if row is None:
            raise StorageError(f"File not found: {path}", "ENOENT")
        return self._stream(row.content or b"")

    async def _stream(self, content: bytes) -> AsyncIterator[bytes]:
        yield content

    async def search(self, ctx: AdapterContext, root: str, pattern: str) -> list[FileStat]:
        mount, rel = self._locate(ctx, root)
        if not any(ch in pattern for ch in "*?["):
            pattern = f"*{pattern}*"
        async with self._session() as session:
            if not await self._is_directory(session, mount, rel):
                raise StorageError(f"Not a directory: {root}", "ENOTDIR")
            rows = await self._descendants(session, mount, rel)

        found = [
            self._to_stat(row)
            for row in sorted(rows, key=lambda r: r.path)
            if fnmatch.fnmatch(row.name.lower(), pattern.lower())
        ]
        return found[:MAX_SEARCH_RESULTS]

    # ------------------------------------------------------------------
    # Write Operations
    # ------------------------------------------------------------------

    async def writefile(self, ctx: AdapterContext, path: str, data: bytes) -> int:
        mount, rel = self._locate(ctx, path)
        if rel == "/":
            raise StorageError(f"Path is a directory, not a file: {path}", "EISDIR")
        async with self._session() as session:
            row = await self._get(session, mount, rel)
            if row is None:
                await self._ensure_parents(session, mount, rel)
                session.add(self._new_row(mount, rel, content=data))
            elif row.is_directory:
                raise StorageError(f"Path is a directory, not a file: {path}", "EISDIR")
            else:
                row.content = data
                row.size_bytes = len(data)
                row.updated_at = datetime.now(UTC)
                session.add(row)
        return len(data)

    async def mkdir(self, ctx: AdapterContext, path: str) -> bool:
        mount, rel = self._locate(ctx, path)
        async with self._session() as session:
            if rel == "/" or await self._get(session, mount, rel) is not None:
                raise StorageError(f"Path already exists: {path}", "EEXIST")
            await self._ensure_parents(session, mount, rel)
            session.add(self._new_row(mount, rel, is_directory=True))
        return True

    async def touch(self, ctx: AdapterContext, path: str) -> bool:
        mount, rel = self._locate(ctx, path)
        if rel == "/":
            return True
        async with self._session() as session:
            row = await self._get(session, mount, rel)
            if row is None:
                await self._ensure_parents(session, mount, rel)
                session.add(self._new_row(mount, rel))
            else:
                row.updated_at = datetime.now(UTC)
                session.add(row)
        return True

    async def unlink(self, ctx: AdapterContext, path: str) -> bool:
        mount, rel = self._locate(ctx, path)
        if rel == "/":
            raise StorageError(f"Cannot remove mountpoint root: {path}", "EACCES")
        model = self._file_model
        async with self._session() as session:
            row = await self._get(session, mount, rel)
            if row is None:
                raise StorageError(f"File not found: {path}", "ENOENT")
            if row.is_directory:
                await session.execute(
                    sa_delete(model).where(
                        model.mount == mount,
                        model.path.startswith(rel + "/", autoescape=True),  # type: ignore[attr-defined]
                    )
                )
            await session.delete(row)
        return True

    async def _prepare_target(
        self, session: AsyncSession, mount: str, rel: str, dest: str
    ) -> None:
        """Clear a file at the destination and create its parents."""
        if rel == "/":
            raise StorageError(f"Cannot overwrite mountpoint root: {dest}", "EACCES")
        existing = await self._get(session, mount, rel)
        if existing is not None:
            if existing.is_directory:
                raise StorageError(f"Path already exists: {dest}", "EEXIST")
            await session.delete(existing)
            await session.flush()
        await self._ensure_parents(session, mount, rel)

    async def rename(self, ctx: AdapterContext, src: str, dest: str) -> bool:
        src_mount, src_rel = self._locate(ctx, src)
        dest_mount, dest_rel = self._locate(ctx, dest)
        if src_rel == "/":
            raise StorageError(f"Cannot move mountpoint root: {src}", "EACCES")
        if (src_mount, src_rel) == (dest_mount, dest_rel):
            return True
        if src_mount == dest_mount and dest_rel.startswith(src_rel + "/"):
            raise StorageError(f"Cannot move a directory into itself: {src} -> {dest}", "EINVAL")

        async with self._session() as session:
            row = await self._get(session, src_mount, src_rel)
            if row is None:
                raise StorageError(f"File not found: {src}", "ENOENT")
            await self._prepare_target(session, dest_mount, dest_rel, dest)

            children = []
            if row.is_directory:
                children = await self._descendants(session, src_mount, src_rel)
            now = datetime.now(UTC)
            for moved in [row, *children]:
                new_path = dest_rel + moved.path[len(src_rel):]
                moved.mount = dest_mount
                moved.path = new_path
                moved.parent_path = posixpath.dirname(new_path)
                moved.name = posixpath.basename(new_path)
                moved.updated_at = now
                session.add(moved)
        return True

    async def copy(self, ctx: AdapterContext, src: str, dest: str) -> bool:
        src_mount, src_rel = self._locate(ctx, src)
        dest_mount, dest_rel = self._locate(ctx, dest)
        if (src_mount, src_rel) == (dest_mount, dest_rel):
            raise StorageError(f"Cannot copy a file onto itself: {src}", "EINVAL")
        if src_mount == dest_mount and dest_rel.startswith(src_rel.rstrip("/") + "/"):
            raise StorageError(f"Cannot copy a directory into itself: {src} -> {dest}", "EINVAL")

        async with self._session() as session:
            row = await self._get(session, src_mount, src_rel)
            if row is None:
                raise StorageError(f"File not found: {src}", "ENOENT")
            await self._prepare_target(session, dest_mount, dest_rel, dest)

            children = []
            if row.is_directory:
                children = await self._descendants(session, src_mount, src_rel)
            for original in [row, *children]:
                new_path = dest_rel + original.path[len(src_rel):]
                session.add(
                    self._new_row(
                        dest_mount,
                        new_path,
                        is_directory=original.is_directory,
                        content=original.content,
                    )
                )
        return True
