"""Virtual path utilities: prefixes, sanitization, MIME guessing."""

from __future__ import annotations

import mimetypes
import re

# =============================================================================
# Filename Sanitization
# =============================================================================

MAX_FILENAME_BYTES = 255

_ILLEGAL_RE = re.compile(r'[/?<>\\:*|"]')
_CONTROL_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_RE = re.compile(r"^\.+$")
_WINDOWS_RESERVED_RE = re.compile(
    r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE
)
_WINDOWS_TRAILING_RE = re.compile(r"[. ]+$")

_PREFIXED_RE = re.compile(r"^(\w+):(.*)$", re.DOTALL)
_SLASHES_RE = re.compile(r"/+")


def sanitize_filename(name: str) -> str:
    """Make a single path segment safe to hand to a storage backend.

    Strips characters that are illegal on common filesystems, control
    characters, dot-only names (``.``, ``..``), Windows device names and
    trailing dots/spaces. The result is at most 255 UTF-8 bytes and may be
    empty.

    Examples:
        sanitize_filename("..") -> ""
        sanitize_filename("a/b?.txt") -> "ab.txt"
        sanitize_filename("CON.txt") -> ""
    """
    name = _ILLEGAL_RE.sub("", name)
    name = _CONTROL_RE.sub("", name)

    encoded = name.encode("utf-8")
    if len(encoded) > MAX_FILENAME_BYTES:
        name = encoded[:MAX_FILENAME_BYTES].decode("utf-8", errors="ignore")

    name = _WINDOWS_TRAILING_RE.sub("", name)
    if _RESERVED_RE.match(name) or _WINDOWS_RESERVED_RE.match(name):
        return ""
    return name


def sanitize_path(path: str) -> str:
    """Sanitize a virtual path while preserving its mount prefix.

    Collapses repeated slashes, sanitizes every segment after the prefix
    independently and collapses again. A path with no ``prefix:`` keeps
    an empty prefix so it can never resolve to a mountpoint.

    Examples:
        sanitize_path("home:/a//b.txt") -> "home:/a/b.txt"
        sanitize_path("home:/../../etc/passwd") -> "home:/etc/passwd"
        sanitize_path("nowhere") -> ":nowhere"
    """
    path = _SLASHES_RE.sub("/", str(path))
    match = _PREFIXED_RE.match(path)
    if match:
        prefix, rest = match.group(1), match.group(2)
    else:
        prefix, rest = "", path

    sane = "/".join(sanitize_filename(segment) for segment in rest.split("/"))
    return f"{prefix}:{_SLASHES_RE.sub('/', sane)}"


# =============================================================================
# Prefix Handling
# =============================================================================


def get_prefix(path: str | None) -> str:
    """Return the mount prefix of a virtual path, or ``""`` when there is none."""
    if not path:
        return ""
    prefix, sep, _ = str(path).partition(":")
    return prefix if sep else ""


def strip_prefix(path: str) -> str:
    """Return the part of a virtual path after its prefix, always rooted.

    Examples:
        strip_prefix("home:/a/b.txt") -> "/a/b.txt"
        strip_prefix("home:") -> "/"
        strip_prefix("home:a") -> "/a"
    """
    _, sep, rest = str(path).partition(":")
    if not sep:
        rest = str(path)
    rest = _SLASHES_RE.sub("/", rest)
    if not rest.startswith("/"):
        rest = "/" + rest
    if rest != "/" and rest.endswith("/"):
        rest = rest[:-1]
    return rest


def join_prefix(prefix: str, path: str) -> str:
    """Build a virtual path from a prefix and a rooted relative path."""
    if not path.startswith("/"):
        path = "/" + path
    return f"{prefix}:{path}"


def guess_mime_type(filename: str) -> str:
    """Guess the MIME type of a file based on its name."""
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or "application/octet-stream"
