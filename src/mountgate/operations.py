"""Operation handler set: supported operations and their field contracts.

Each handler pulls the fields an operation needs out of the (sanitized)
request, validates them and calls the adapter method of the same name.
The set is closed; an operation missing here is rejected by the resolver
no matter what the adapter implements.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import FieldError
from .permissions import READS, WRITES, ComputedPolicy, ReadOnlyPolicy, destination_of

if TYPE_CHECKING:
    from .protocol import AdapterContext

PATH_FIELDS = ("path", "from", "to", "root")
"""Fields holding virtual paths; all are sanitized before resolution."""


class Operation(str, Enum):
    """Operations the dispatcher knows how to route."""

    EXISTS = "exists"
    STAT = "stat"
    READDIR = "readdir"
    READFILE = "readfile"
    WRITEFILE = "writefile"
    MKDIR = "mkdir"
    RENAME = "rename"
    COPY = "copy"
    UNLINK = "unlink"
    SEARCH = "search"
    TOUCH = "touch"

    @classmethod
    def parse(cls, name: str | Operation) -> Operation | None:
        """Return the operation called *name*, or None when unknown."""
        try:
            return cls(name)
        except ValueError:
            return None


TRANSFER_OPERATIONS = frozenset({Operation.RENAME, Operation.COPY})

Fields = Mapping[str, Any]
Handler = Callable[["AdapterContext", Any, Fields, Fields], Awaitable[Any]]


# =============================================================================
# Field helpers
# =============================================================================


def _require(fields: Mapping[str, Any], name: str, operation: Operation) -> str:
    value = fields.get(name)
    if value is None or value == "":
        raise FieldError(f"Missing field '{name}' for '{operation.value}'")
    return str(value)


async def _upload_bytes(files: Mapping[str, Any]) -> bytes:
    """Return the ``upload`` payload as bytes.

    Accepts a ready buffer (cross-adapter transfers) or an upload handle
    with a ``read()`` method, sync or async.
    """
    upload = files.get("upload")
    if upload is None:
        raise FieldError("Missing file 'upload' for 'writefile'")
    if isinstance(upload, (bytes, bytearray, memoryview)):
        return bytes(upload)

    data = upload.read()
    if inspect.isawaitable(data):
        data = await data
    return bytes(data)


# =============================================================================
# Handlers
# =============================================================================


async def _exists(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> bool:
    return await adapter.exists(ctx, _require(fields, "path", Operation.EXISTS))


async def _stat(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    return await adapter.stat(ctx, _require(fields, "path", Operation.STAT))


async def _readdir(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    return await adapter.readdir(ctx, _require(fields, "path", Operation.READDIR))


async def _readfile(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    return await adapter.readfile(ctx, _require(fields, "path", Operation.READFILE))


async def _writefile(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    path = _require(fields, "path", Operation.WRITEFILE)
    data = await _upload_bytes(files)
    return await adapter.writefile(ctx, path, data)


async def _mkdir(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    return await adapter.mkdir(ctx, _require(fields, "path", Operation.MKDIR))


async def _rename(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    src = _require(fields, "from", Operation.RENAME)
    dest = _require(fields, "to", Operation.RENAME)
    return await adapter.rename(ctx, src, dest)


async def _copy(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    src = _require(fields, "from", Operation.COPY)
    dest = _require(fields, "to", Operation.COPY)
    return await adapter.copy(ctx, src, dest)


async def _unlink(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    return await adapter.unlink(ctx, _require(fields, "path", Operation.UNLINK))


async def _search(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    root = _require(fields, "root", Operation.SEARCH)
    pattern = _require(fields, "pattern", Operation.SEARCH)
    return await adapter.search(ctx, root, pattern)


async def _touch(ctx: AdapterContext, adapter: Any, fields: Fields, files: Fields) -> Any:
    return await adapter.touch(ctx, _require(fields, "path", Operation.TOUCH))


HANDLERS: Mapping[Operation, Handler] = {
    Operation.EXISTS: _exists,
    Operation.STAT: _stat,
    Operation.READDIR: _readdir,
    Operation.READFILE: _readfile,
    Operation.WRITEFILE: _writefile,
    Operation.MKDIR: _mkdir,
    Operation.RENAME: _rename,
    Operation.COPY: _copy,
    Operation.UNLINK: _unlink,
    Operation.SEARCH: _search,
    Operation.TOUCH: _touch,
}


OPERATION_PATH_FIELDS: Mapping[Operation, tuple[str, ...]] = {
    Operation.EXISTS: ("path",),
    Operation.STAT: ("path",),
    Operation.READDIR: ("path",),
    Operation.READFILE: ("path",),
    Operation.WRITEFILE: ("path",),
    Operation.MKDIR: ("path",),
    Operation.RENAME: ("from", "to"),
    Operation.COPY: ("from", "to"),
    Operation.UNLINK: ("path",),
    Operation.SEARCH: ("root",),
    Operation.TOUCH: ("path",),
}
"""Path-bearing fields each handler reads. Any other path field is ignored."""


async def invoke(
    operation: Operation,
    ctx: AdapterContext,
    adapter: Any,
    fields: Mapping[str, Any],
    files: Mapping[str, Any] | None = None,
) -> Any:
    """Run *operation* on *adapter* with the request's fields and files."""
    return await HANDLERS[operation](ctx, adapter, fields, files or {})


# =============================================================================
# Endpoint table
# =============================================================================


@dataclass(frozen=True)
class Endpoint:
    """How an operation is exposed to the transport layer."""

    operation: Operation
    method: str
    read_only: ReadOnlyPolicy


ENDPOINTS: tuple[Endpoint, ...] = (
    Endpoint(Operation.EXISTS, "GET", READS),
    Endpoint(Operation.STAT, "GET", READS),
    Endpoint(Operation.READDIR, "GET", READS),
    Endpoint(Operation.READFILE, "GET", READS),
    Endpoint(Operation.SEARCH, "GET", READS),
    Endpoint(Operation.WRITEFILE, "POST", WRITES),
    Endpoint(Operation.MKDIR, "POST", WRITES),
    Endpoint(Operation.UNLINK, "POST", WRITES),
    Endpoint(Operation.TOUCH, "POST", WRITES),
    Endpoint(Operation.RENAME, "POST", WRITES),
    Endpoint(Operation.COPY, "POST", ComputedPolicy(destination_of)),
)
