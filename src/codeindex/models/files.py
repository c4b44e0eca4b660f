"""IndexedFile model — one indexed source file beneath a folder.

Provides ``IndexedFileBase`` (non-table base) and ``IndexedFile`` (concrete table).
The stored ``content_hash`` gates re-embedding: an identical hash between
scans means the file is skipped entirely.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class IndexedFileBase(SQLModel):
    """Base fields for an indexed file. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    folder_id: str = Field(foreign_key="codeindex_folders.id", index=True)
    path: str = Field(index=True)
    relative_path: str = Field(default="")
    language: str = Field(default="")
    content_hash: str = Field(default="")
    size: int = Field(default=0)
    chunk_count: int = Field(default=0)
    modified_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    indexed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class IndexedFile(IndexedFileBase, table=True):
    """Default file table — ``codeindex_files``."""

    __tablename__ = "codeindex_files"
    __table_args__ = (UniqueConstraint("folder_id", "path", name="uq_codeindex_files_folder_path"),)
