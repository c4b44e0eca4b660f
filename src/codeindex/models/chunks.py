"""FileChunk model — a contiguous line range of one file, the unit of embedding."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class FileChunkBase(SQLModel):
    """Base fields for a file chunk. Subclass with ``table=True`` for a concrete table.

    ``vector_id`` is the id of the vector store point holding this chunk's
    embedding.  Every chunk row has exactly one such point.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    file_id: str = Field(foreign_key="codeindex_files.id", index=True)
    folder_id: str = Field(index=True)
    chunk_num: int = Field(default=0)
    start_line: int = Field(default=1)
    end_line: int = Field(default=1)
    content: str = Field(default="")
    vector_id: str = Field(default="", index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class FileChunk(FileChunkBase, table=True):
    """Default chunk table — ``codeindex_chunks``."""

    __tablename__ = "codeindex_chunks"
    __table_args__ = (UniqueConstraint("file_id", "chunk_num", name="uq_codeindex_chunks_file_num"),)
