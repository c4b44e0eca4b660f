"""CodeIndexAsync — primary async class wiring stores, pipeline, watcher and search."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from codeindex.config import CodeIndexConfig, load_config
from codeindex.exceptions import (
    CodeIndexError,
    FolderExistsError,
    InvalidPathError,
    ScanAlreadyRunningError,
)
from codeindex.indexing import IndexingPipeline
from codeindex.paths import PathMapper, normalize_path, validate_index_path
from codeindex.scanner import ChunkerRegistry, Scanner
from codeindex.search import SearchService
from codeindex.search.providers import create_embedding_provider
from codeindex.search.stores import create_vector_store
from codeindex.store import MetadataStore
from codeindex.types import (
    AddFolderResult,
    FolderInfo,
    RemoveFolderResult,
    ScanResult,
    SearchResult,
    StatusResult,
)
from codeindex.watcher import FolderWatcher

if TYPE_CHECKING:
    from codeindex.models import IndexedFolder
    from codeindex.search.protocols import EmbeddingProvider, VectorStore

logger = logging.getLogger(__name__)

# Failures reported as unsuccessful results rather than raised
_EXPECTED_ERRORS = (CodeIndexError, SQLAlchemyError, OSError)


class CodeIndexAsync:
    """Async facade over the metadata store, vector store, pipeline, watcher and search.

    Components not passed explicitly are built from *config* (or from
    :func:`~codeindex.config.load_config` when no config is given).

    Usage::

        async with CodeIndexAsync() as index:
            await index.add_folder("/home/me/project")
            await index.scan("/home/me/project")
            result = await index.search("where are retries configured")

    Every operation returns a result dataclass.  Expected failures (unknown
    folder, unreachable backend, invalid path) come back with
    ``success=False`` and a message; only :meth:`open` raises.
    """

    def __init__(
        self,
        config: CodeIndexConfig | None = None,
        *,
        metadata_store: MetadataStore | None = None,
        vector_store: VectorStore | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        path_mapper: PathMapper | None = None,
    ) -> None:
        cfg = config if config is not None else load_config()
        self._config = cfg
        self._opened = False
        self._closed = False
        self._open_lock = asyncio.Lock()

        if metadata_store is None:
            metadata_store = MetadataStore(data_dir=cfg.database.data_dir, url=cfg.database.url)
        if embedding_provider is None:
            embedding_provider = create_embedding_provider(cfg.embedding)
        if vector_store is None:
            vector_store = create_vector_store(cfg.vector_store, data_dir=cfg.database.data_dir)
        self._metadata = metadata_store
        self._provider = embedding_provider
        self._store = vector_store
        self._paths = path_mapper if path_mapper is not None else PathMapper.from_config(cfg.path_mappings)

        scanner = Scanner(
            max_file_size=cfg.scanner.max_file_size,
            extra_ignore_dirs=frozenset(cfg.scanner.extra_ignore_dirs),
        )
        chunkers = ChunkerRegistry(
            max_lines=cfg.scanner.max_chunk_lines,
            max_chars=cfg.scanner.max_chunk_chars,
        )
        self._pipeline = IndexingPipeline(
            self._metadata,
            self._store,
            self._provider,
            scanner=scanner,
            chunkers=chunkers,
            path_mapper=self._paths,
            max_concurrency=cfg.embedding.max_concurrency,
            embed_timeout=cfg.embedding.timeout,
            embed_batch_size=cfg.embedding.batch_size,
        )
        self._search = SearchService(
            self._provider,
            self._store,
            self._metadata,
            timeout=cfg.embedding.timeout,
        )
        self._watcher = FolderWatcher(
            self._pipeline,
            self._metadata,
            debounce_seconds=cfg.watcher.debounce_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, *, start_watcher: bool | None = None) -> None:
        """Open both stores, check the collection and recover interrupted scans.

        Raises:
            DimensionMismatchError: The collection exists with another size.
            ConfigError: Misconfigured backend.
            EmbeddingError / VectorStoreError: A backend is unreachable.
        """
        async with self._open_lock:
            if self._opened:
                return
            await self._metadata.open()
            await self._store.connect()
            connect = getattr(self._provider, "connect", None)
            if connect is not None:
                await connect()
            await self._store.ensure_collection(self._provider.dimensions)
            await self._metadata.reset_interrupted_scans()
            self._opened = True
            logger.info(
                "Code index open (collection %s, model %s, %d dimensions)",
                self._store.collection_name,
                self._provider.model_name,
                self._provider.dimensions,
            )

        if start_watcher if start_watcher is not None else self._config.watcher.enabled:
            await self._watcher.start()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        await self._watcher.stop()
        await self._store.close()
        close_provider = getattr(self._provider, "close", None)
        if close_provider is not None:
            await close_provider()
        await self._metadata.close()

    async def __aenter__(self) -> CodeIndexAsync:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def add_folder(self, path: str, description: str | None = None) -> AddFolderResult:
        """Register *path* for indexing. Registering twice is not an error."""
        try:
            clean = validate_index_path(path)
        except InvalidPathError as e:
            return AddFolderResult(success=False, message=str(e))

        try:
            existing = await self._metadata.get_folder_by_path(clean)
            if existing is not None:
                return self._already_registered(existing)

            local = self._paths.to_local(clean)
            if not await asyncio.to_thread(os.path.isdir, local):
                return AddFolderResult(success=False, message=f"Folder does not exist or is not a directory: {clean}")

            try:
                folder = await self._metadata.add_folder(clean, description or "")
            except FolderExistsError:
                existing = await self._metadata.get_folder_by_path(clean)
                if existing is None:
                    raise
                return self._already_registered(existing)
        except _EXPECTED_ERRORS as e:
            return AddFolderResult(success=False, message=f"Failed to register {clean}: {e}")

        return AddFolderResult(
            success=True,
            message=f"Registered {clean}; run a scan to index it",
            folder=_folder_info(folder),
        )

    async def remove_folder(self, path: str) -> RemoveFolderResult:
        """Unregister *path* and delete every point and record beneath it."""
        clean = normalize_path(path)
        try:
            folder = await self._metadata.get_folder_by_path(clean)
            if folder is None:
                return RemoveFolderResult(success=False, message=f"Folder not registered: {clean}", folder_path=clean)

            await self._watcher.unwatch_folder(folder.id)
            removed = await self._pipeline.remove_folder(folder)
        except _EXPECTED_ERRORS as e:
            return RemoveFolderResult(success=False, message=f"Failed to remove {clean}: {e}", folder_path=clean)

        return RemoveFolderResult(
            success=True,
            message=f"Removed {clean} ({removed} files)",
            folder_path=clean,
            files_removed=removed,
        )

    async def scan(self, path: str) -> ScanResult:
        """Scan a registered folder now and wait for the result."""
        clean = normalize_path(path)
        try:
            folder = await self._metadata.get_folder_by_path(clean)
            if folder is None:
                return ScanResult(success=False, message=f"Folder not registered: {clean}", folder_path=clean)
            stats = await self._pipeline.scan_folder(folder)
        except ScanAlreadyRunningError as e:
            return ScanResult(success=False, message=str(e), folder_path=clean, in_progress=True)
        except _EXPECTED_ERRORS as e:
            return ScanResult(success=False, message=f"Scan of {clean} failed: {e}", folder_path=clean)

        if stats.cancelled:
            return ScanResult(
                success=False, message=f"Scan of {clean} cancelled: folder was removed", folder_path=clean
            )

        if self._watcher.is_running:
            refreshed = await self._metadata.get_folder(folder.id)
            if refreshed is not None:
                await self._watcher.watch_folder(refreshed)

        message = f"Scanned {clean}: {stats.indexed} indexed, {stats.updated} updated, {stats.deleted} deleted"
        if stats.failed:
            message += f", {stats.failed} failed (will retry on next scan)"
        if stats.unreadable:
            message += f", {len(stats.unreadable)} unreadable (not re-read)"
        return ScanResult(
            success=True,
            message=message,
            folder_path=clean,
            indexed=stats.indexed,
            updated=stats.updated,
            skipped=stats.skipped,
            deleted=stats.deleted,
            failed=stats.failed,
            total_files=stats.total_files,
            chunks_embedded=stats.chunks_embedded,
            errors=list(stats.errors),
            unreadable=list(stats.unreadable),
        )

    # ------------------------------------------------------------------
    # Search and status
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        *,
        limit: int | None = 10,
        folder_path: str | None = None,
        retrieve: str = "chunk",
    ) -> SearchResult:
        folder = normalize_path(folder_path) if folder_path else None
        try:
            hits = await self._search.search(query, limit=limit, folder_path=folder, retrieve=retrieve)
        except (ValueError, *_EXPECTED_ERRORS) as e:
            return SearchResult(success=False, message=f"Search failed: {e}", query=query, retrieve=retrieve)
        return SearchResult(
            success=True,
            message=f"{len(hits)} results",
            query=query,
            retrieve=retrieve,
            hits=hits,
        )

    async def status(self) -> StatusResult:
        try:
            stats = await self._metadata.get_status()
        except _EXPECTED_ERRORS as e:
            return StatusResult(success=False, message=f"Failed to read status: {e}")
        return StatusResult(
            success=True,
            message=f"{stats.total_folders} folders, {stats.total_files} files",
            folders=[_folder_info(folder) for folder in stats.folders],
            total_files=stats.total_files,
            total_size=stats.total_size,
            total_chunks=stats.total_chunks,
            watcher_running=self._watcher.is_running,
        )

    # ------------------------------------------------------------------
    # Watcher
    # ------------------------------------------------------------------

    async def start_watcher(self) -> None:
        await self._watcher.start()

    async def stop_watcher(self) -> None:
        await self._watcher.stop()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> CodeIndexConfig:
        return self._config

    @property
    def metadata(self) -> MetadataStore:
        return self._metadata

    @property
    def vector_store(self) -> VectorStore:
        return self._store

    @property
    def pipeline(self) -> IndexingPipeline:
        return self._pipeline

    @property
    def watcher(self) -> FolderWatcher:
        return self._watcher

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _already_registered(folder: IndexedFolder) -> AddFolderResult:
        return AddFolderResult(
            success=True,
            message=f"Folder already registered: {folder.path}",
            folder=_folder_info(folder),
            already_registered=True,
        )


def _folder_info(folder: IndexedFolder) -> FolderInfo:
    return FolderInfo(
        id=folder.id,
        path=folder.path,
        status=folder.status,
        enabled=folder.enabled,
        description=folder.description or None,
        file_count=folder.file_count,
        total_size=folder.total_size,
        last_scan_at=folder.last_scan_at,
        error_message=folder.error_message,
    )
