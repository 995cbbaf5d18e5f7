"""SQLModel tables used by the database adapter."""

from mountgate.models.files import StoredFile, StoredFileBase

__all__ = ["StoredFile", "StoredFileBase"]
