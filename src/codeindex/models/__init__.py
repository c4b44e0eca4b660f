"""SQLModel database models for codeindex."""

from codeindex.models.chunks import FileChunk, FileChunkBase
from codeindex.models.files import IndexedFile, IndexedFileBase
from codeindex.models.folders import FolderStatus, IndexedFolder, IndexedFolderBase

__all__ = [
    "FileChunk",
    "FileChunkBase",
    "FolderStatus",
    "IndexedFile",
    "IndexedFileBase",
    "IndexedFolder",
    "IndexedFolderBase",
]
