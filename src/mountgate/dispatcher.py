"""VFSDispatcher — request parsing, routing, response mapping, cleanup."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import is_dataclass
from typing import TYPE_CHECKING, Any

from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse

from .exceptions import UnsupportedEndpointError, VFSError, message_for, status_for
from .operations import PATH_FIELDS, Operation, invoke
from .orchestrator import CrossAdapterOrchestrator
from .protocol import AdapterContext, Caller
from .resolver import MountResolver
from .types import FileStat
from .utils import guess_mime_type, sanitize_path, strip_prefix

if TYPE_CHECKING:
    from .config import VFSConfig
    from .permissions import ReadOnlyPolicy

logger = logging.getLogger(__name__)

Identify = Callable[[Request], Caller]
RequestHandler = Callable[[Request], Awaitable[Response]]


def session_caller(request: Request) -> Caller:
    """Read the caller from a session populated by the authentication layer.

    Expects ``{"user": {"username": ..., "groups": [...]}}`` in the
    session; a request without one is anonymous with no groups.
    """
    session = request.scope.get("session") or {}
    user = session.get("user") or {}
    return Caller(
        username=str(user.get("username") or ""),
        groups=tuple(user.get("groups") or ()),
    )


async def parse_fields(request: Request) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a request into (fields, files).

    GET requests carry everything in the query string; other methods
    send a multipart or url-encoded form whose file parts become files.
    """
    if request.method.upper() == "GET":
        return dict(request.query_params), {}

    form = await request.form()
    fields: dict[str, Any] = {}
    files: dict[str, Any] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            files[key] = value
        else:
            fields[key] = value
    return fields, files


def sanitize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *fields* with every path-bearing field sanitized."""
    clean = dict(fields)
    for key in PATH_FIELDS:
        if clean.get(key) is not None:
            clean[key] = sanitize_path(str(clean[key]))
    return clean


def to_jsonable(result: Any) -> Any:
    """Convert an adapter result to JSON-compatible data."""
    if isinstance(result, FileStat):
        return result.to_dict()
    if isinstance(result, (list, tuple)):
        return [to_jsonable(item) for item in result]
    if isinstance(result, dict):
        return {key: to_jsonable(value) for key, value in result.items()}
    if is_dataclass(result) and hasattr(result, "to_dict"):
        return result.to_dict()
    return result


async def cleanup_uploads(files: Mapping[str, Any]) -> None:
    """Close uploaded files, removing their spooled temporary storage."""
    for name, upload in files.items():
        close = getattr(upload, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception:
            logger.warning("Failed to clean up upload %r", name, exc_info=True)


class VFSDispatcher:
    """Routes VFS operations to adapters on behalf of the transport layer.

    Holds only the read-only config and helpers built from it; all
    per-request state lives in the coroutine serving that request.
    """

    def __init__(self, config: VFSConfig, *, identify: Identify | None = None) -> None:
        self.config = config
        self.resolver = MountResolver(config.mounts, config.adapters)
        self.orchestrator = CrossAdapterOrchestrator(self.resolver)
        self.identify = identify or session_caller

    # ------------------------------------------------------------------
    # Core dispatch (transport independent)
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        operation: str,
        fields: Mapping[str, Any],
        files: Mapping[str, Any] | None = None,
        *,
        caller: Caller | None = None,
        read_only: ReadOnlyPolicy | bool | Callable[[Mapping[str, Any]], str] | None = False,
    ) -> Any:
        """Sanitize, resolve and run *operation*, returning the adapter result.

        Rename/copy between different adapters run through the
        orchestrator; everything else goes to the adapter owning the
        first path field. Raises on any failure.
        """
        caller = caller or Caller()
        files = files or {}
        fields = sanitize_fields(fields)

        op = Operation.parse(operation)
        if op is None:
            raise UnsupportedEndpointError(
                f"VFS Endpoint '{operation}' was not valid for this mountpoint."
            )

        plan = self.orchestrator.plan(op, fields, caller)
        if plan is not None:
            return await self.orchestrator.execute(plan)

        adapter, mountpoint = self.resolver.resolve(op, fields, caller.groups, read_only)
        ctx = AdapterContext(mountpoint, caller, self.config.mounts)
        return await invoke(op, ctx, adapter, fields, files)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def error_response(self, operation: str, error: BaseException) -> JSONResponse:
        """Log *error* and turn it into an ``{"error": message}`` response."""
        status = status_for(error)
        message = message_for(error)
        if isinstance(error, (VFSError, OSError)):
            logger.warning("VFS %s failed (%d): %s", operation, status, message)
        else:
            logger.error("VFS %s failed (%d): %s", operation, status, message, exc_info=error)
        return JSONResponse({"error": message}, status_code=status)

    def endpoint(
        self,
        operation: str,
        read_only: ReadOnlyPolicy | bool | Callable[[Mapping[str, Any]], str] | None = False,
    ) -> RequestHandler:
        """Build the request handler for *operation*.

        The handler never raises: failures become error responses.
        """

        async def handle(request: Request) -> Response:
            files: dict[str, Any] = {}
            try:
                fields, files = await parse_fields(request)
                caller = self.identify(request)
                result = await self.dispatch(
                    operation, fields, files, caller=caller, read_only=read_only
                )
            except Exception as e:
                return self.error_response(operation, e)
            finally:
                await cleanup_uploads(files)

            if operation == Operation.READFILE:
                virtual_path = sanitize_path(str(fields.get("path", "")))
                media_type = guess_mime_type(strip_prefix(virtual_path))
                if isinstance(result, (bytes, bytearray)):
                    return Response(bytes(result), media_type=media_type)
                return StreamingResponse(result, media_type=media_type)
            return JSONResponse(to_jsonable(result))

        handle.__name__ = f"vfs_{operation}"
        return handle
