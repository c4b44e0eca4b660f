"""Result types returned by the CodeIndex facades."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from codeindex.search.types import SearchHit


@dataclass
class FolderInfo:
    """Registered folder as reported by the facades."""

    id: str
    path: str
    status: str
    enabled: bool
    description: str | None = None
    file_count: int = 0
    total_size: int = 0
    last_scan_at: datetime | None = None
    error_message: str | None = None


@dataclass
class AddFolderResult:
    """Result of registering a folder."""

    success: bool
    message: str
    folder: FolderInfo | None = None
    already_registered: bool = False


@dataclass
class RemoveFolderResult:
    """Result of removing a folder and everything indexed under it."""

    success: bool
    message: str
    folder_path: str | None = None
    files_removed: int = 0


@dataclass
class ScanResult:
    """Result of an explicit folder scan."""

    success: bool
    message: str
    folder_path: str | None = None
    indexed: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    failed: int = 0
    total_files: int = 0
    chunks_embedded: int = 0
    errors: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)
    in_progress: bool = False


@dataclass
class SearchResult:
    """Result of a semantic search."""

    success: bool
    message: str
    query: str = ""
    retrieve: str = "chunk"
    hits: list[SearchHit] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.hits)


@dataclass
class StatusResult:
    """Snapshot of every registered folder and index totals."""

    success: bool
    message: str
    folders: list[FolderInfo] = field(default_factory=list)
    total_files: int = 0
    total_size: int = 0
    total_chunks: int = 0
    watcher_running: bool = False

    @property
    def total_folders(self) -> int:
        return len(self.folders)
