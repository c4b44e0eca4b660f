"""codeindex: semantic code search that stays consistent with the filesystem.

Folder scanning, chunking and embedding into a vector store, with SQL
metadata kept in step, a background watcher, and agent-facing tools.
"""

__version__ = "0.1.0"

from codeindex._codeindex import CodeIndex
from codeindex._codeindex_async import CodeIndexAsync
from codeindex.config import CodeIndexConfig, load_config
from codeindex.events import EventBus, EventType, FileEvent
from codeindex.exceptions import (
    CodeIndexError,
    ConfigError,
    DimensionMismatchError,
    EmbeddingError,
    FolderExistsError,
    FolderNotFoundError,
    InvalidPathError,
    ScanAlreadyRunningError,
    VectorStoreError,
)
from codeindex.indexing import IndexingPipeline, ScanStats
from codeindex.paths import PathMapper
from codeindex.search import SearchService
from codeindex.search.filters import (
    FilterExpression,
    and_,
    eq,
    exists,
    gt,
    gte,
    in_,
    lt,
    lte,
    ne,
    not_in,
    or_,
)
from codeindex.search.protocols import EmbeddingProvider, VectorStore
from codeindex.search.types import SearchHit, VectorPoint, VectorSearchResult
from codeindex.tools import CodeIndexTools
from codeindex.types import (
    AddFolderResult,
    FolderInfo,
    RemoveFolderResult,
    ScanResult,
    SearchResult,
    StatusResult,
)
from codeindex.watcher import FolderWatcher

__all__ = [
    "AddFolderResult",
    "CodeIndex",
    "CodeIndexAsync",
    "CodeIndexConfig",
    "CodeIndexError",
    "CodeIndexTools",
    "ConfigError",
    "DimensionMismatchError",
    "EmbeddingError",
    "EmbeddingProvider",
    "EventBus",
    "EventType",
    "FileEvent",
    "FilterExpression",
    "FolderExistsError",
    "FolderInfo",
    "FolderNotFoundError",
    "FolderWatcher",
    "IndexingPipeline",
    "InvalidPathError",
    "PathMapper",
    "RemoveFolderResult",
    "ScanAlreadyRunningError",
    "ScanResult",
    "ScanStats",
    "SearchHit",
    "SearchResult",
    "SearchService",
    "StatusResult",
    "VectorPoint",
    "VectorSearchResult",
    "VectorStore",
    "VectorStoreError",
    "__version__",
    "and_",
    "eq",
    "exists",
    "gt",
    "gte",
    "in_",
    "load_config",
    "lt",
    "lte",
    "ne",
    "not_in",
    "or_",
]
