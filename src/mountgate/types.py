"""Result types returned by adapters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class FileStat:
    """File/directory metadata, addressed by virtual path."""

    path: str
    filename: str
    is_directory: bool
    size: int = 0
    mime: str | None = None
    mtime: datetime | None = None

    @property
    def is_file(self) -> bool:
        return not self.is_directory

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form sent to clients."""
        return {
            "path": self.path,
            "filename": self.filename,
            "isDirectory": self.is_directory,
            "isFile": self.is_file,
            "size": self.size,
            "mime": self.mime,
            "mtime": self.mtime.isoformat() if self.mtime else None,
        }
