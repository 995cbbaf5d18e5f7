"""Custom exception hierarchy for the mountgate dispatch layer."""

from __future__ import annotations

import errno

ERROR_CODES: dict[str, int] = {
    "ENOENT": 404,
    "EACCES": 401,
}
"""Storage error codes with a dedicated response status. Others map to 400."""

DEFAULT_STATUS = 400


class MountgateError(Exception):
    """Base exception for all mountgate errors."""


class ConfigError(MountgateError):
    """Raised when mountpoint or adapter configuration is invalid."""


class VFSError(MountgateError):
    """A classified request failure carrying a message and a status code.

    ``code`` is either a numeric status chosen by the dispatcher or a
    string error code from the storage layer (see ``status_for``).
    """

    code: int | str = DEFAULT_STATUS

    def __init__(self, message: str, code: int | str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class MountpointNotFoundError(VFSError):
    """Raised when a path prefix names no configured mountpoint."""

    code = 403


class MountpointReadOnlyError(VFSError):
    """Raised when a write targets a read-only mountpoint."""

    code = 403


class PermissionDeniedError(VFSError):
    """Raised when the caller lacks a group the mountpoint requires."""

    code = 403


class UnsupportedEndpointError(VFSError):
    """Raised when an operation is unknown or the adapter lacks it."""

    code = 401


class FieldError(VFSError):
    """Raised when a request is missing a field its operation needs."""

    code = 400


class StorageError(VFSError):
    """Raised by adapters on storage failures, with an errno-style code.

    Example:
        raise StorageError("File not found: home:/a.txt", "ENOENT")
    """

    code = "EIO"


def status_for(error: BaseException) -> int:
    """Map an exception to the response status reported to the client."""
    code: int | str | None = None
    if isinstance(error, VFSError):
        code = error.code
    elif isinstance(error, OSError) and error.errno is not None:
        code = errno.errorcode.get(error.errno)

    if isinstance(code, int):
        return code
    if isinstance(code, str):
        return ERROR_CODES.get(code, DEFAULT_STATUS)
    return DEFAULT_STATUS


def message_for(error: BaseException) -> str:
    """Human-readable message for an error response."""
    if isinstance(error, VFSError):
        return error.message
    # Host paths in OSError.filename are never echoed back
    if isinstance(error, OSError) and error.strerror:
        return error.strerror
    return str(error) or error.__class__.__name__
