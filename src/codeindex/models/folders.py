"""IndexedFolder model — a registered root directory under index."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FolderStatus(StrEnum):
    """Lifecycle states of an indexed folder."""

    PENDING = "pending"
    SCANNING = "scanning"
    ACTIVE = "active"
    ERROR = "error"


class IndexedFolderBase(SQLModel):
    """Base fields for an indexed folder. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    path: str = Field(index=True, unique=True)
    description: str = Field(default="")
    status: str = Field(default=FolderStatus.PENDING.value, index=True)
    error_message: str | None = Field(default=None)
    file_count: int = Field(default=0)
    total_size: int = Field(default=0)
    last_scan_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    @property
    def enabled(self) -> bool:
        """Whether the folder is fully indexed and eligible for watching."""
        return self.status == FolderStatus.ACTIVE.value


class IndexedFolder(IndexedFolderBase, table=True):
    """Default folder table — ``codeindex_folders``."""

    __tablename__ = "codeindex_folders"
