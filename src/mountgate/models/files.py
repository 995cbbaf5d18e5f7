"""StoredFile model for the database adapter.

Provides a ``StoredFileBase`` non-table base class. Subclass with
``table=True`` and a custom ``__tablename__`` to use a different table
name per deployment.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class StoredFileBase(SQLModel):
    """Base fields for a stored file or directory."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    mount: str = Field(index=True)
    path: str = Field(index=True)
    parent_path: str = Field(default="/", index=True)
    name: str = Field(default="")
    is_directory: bool = Field(default=False)
    mime_type: str | None = Field(default=None)
    content: bytes | None = Field(default=None)
    size_bytes: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class StoredFile(StoredFileBase, table=True):
    """Default file table — ``mountgate_files``."""

    __tablename__ = "mountgate_files"
    __table_args__ = (UniqueConstraint("mount", "path"),)
