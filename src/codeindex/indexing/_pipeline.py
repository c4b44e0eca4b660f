"""IndexingPipeline — keeps the metadata store and the vector store in step with disk."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import posixpath
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from codeindex.exceptions import (
    EmbeddingError,
    FolderNotFoundError,
    ScanAlreadyRunningError,
    VectorStoreError,
)
from codeindex.models import FileChunk, FolderStatus, IndexedFile
from codeindex.paths import PathMapper, is_within, normalize_path
from codeindex.scanner import ChunkerRegistry, Scanner
from codeindex.scanner.languages import is_ignored_dir
from codeindex.search._service import embed_texts
from codeindex.search.filters import eq
from codeindex.search.types import VectorPoint, point_id

if TYPE_CHECKING:
    from codeindex.models import IndexedFolder
    from codeindex.scanner import Chunk, ScannedFile
    from codeindex.search.protocols import EmbeddingProvider, VectorStore
    from codeindex.store import MetadataStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_EMBED_BATCH_SIZE = 64


@dataclass
class ScanStats:
    """Counters for one scan or one incremental batch."""

    indexed: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    failed: int = 0
    chunks_embedded: int = 0
    total_files: int = 0
    errors: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)
    cancelled: bool = False

    def fail(self, path: str, error: object) -> None:
        self.failed += 1
        self.errors.append(f"{path}: {error}")


class IndexingPipeline:
    """Scans folders, embeds changed files and writes both stores in order.

    For every new or changed file all chunks are embedded first.  Only when
    every chunk has a vector are the file's old points deleted, the new
    points upserted and finally the file record and its chunk rows saved in
    one transaction.  The stored content hash therefore only advances once
    both stores hold the new content, and any failure along the way leaves
    the old hash behind so the next scan retries the file.

    Work on one folder is serialized by a per-folder :class:`asyncio.Lock`.
    An explicit :meth:`scan_folder` while a full scan of the same folder is
    running raises :class:`ScanAlreadyRunningError`; incremental
    :meth:`index_paths` batches wait for the lock instead.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        store: VectorStore,
        provider: EmbeddingProvider,
        *,
        scanner: Scanner | None = None,
        chunkers: ChunkerRegistry | None = None,
        path_mapper: PathMapper | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        embed_timeout: float = 30.0,
        embed_batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
    ) -> None:
        self._metadata = metadata
        self._store = store
        self._provider = provider
        self._scanner = scanner if scanner is not None else Scanner()
        self._chunkers = chunkers if chunkers is not None else ChunkerRegistry()
        self._paths = path_mapper if path_mapper is not None else PathMapper()
        self._embed_timeout = embed_timeout
        self._embed_batch_size = max(1, embed_batch_size)
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

        self._locks: dict[str, asyncio.Lock] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._scanning: set[str] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def scanner(self) -> Scanner:
        return self._scanner

    @property
    def path_mapper(self) -> PathMapper:
        return self._paths

    def is_scanning(self, folder_id: str) -> bool:
        """Return whether a full scan of *folder_id* is in progress."""
        return folder_id in self._scanning

    # ------------------------------------------------------------------
    # Full scan
    # ------------------------------------------------------------------

    async def scan_folder(self, folder: IndexedFolder) -> ScanStats:
        """Bring the index for *folder* in line with what is on disk.

        Raises:
            ScanAlreadyRunningError: A full scan of this folder is running.
            FolderNotFoundError: The folder no longer exists on disk; the
                folder is marked ``error``.
        """
        if folder.id in self._scanning:
            msg = f"Scan already running for {folder.path}"
            raise ScanAlreadyRunningError(msg)

        self._scanning.add(folder.id)
        cancel = asyncio.Event()
        self._cancel_events[folder.id] = cancel
        try:
            async with self._lock_for(folder.id):
                if cancel.is_set():
                    return ScanStats(cancelled=True)
                return await self._scan_locked(folder, cancel)
        finally:
            self._scanning.discard(folder.id)
            if self._cancel_events.get(folder.id) is cancel:
                del self._cancel_events[folder.id]

    async def _scan_locked(self, folder: IndexedFolder, cancel: asyncio.Event) -> ScanStats:
        stats = ScanStats()
        await self._metadata.update_folder_status(folder.id, FolderStatus.SCANNING)
        local_root = self._paths.to_local(folder.path)
        logger.info("Scanning %s", folder.path)

        try:
            if not await asyncio.to_thread(os.path.isdir, local_root):
                msg = f"Folder no longer exists or is not a directory: {folder.path}"
                raise FolderNotFoundError(msg)

            report = await self._scanner.scan(local_root, folder.path)
            stats.unreadable.extend(report.unreadable)
            existing = {record.path: record for record in await self._metadata.list_files(folder.id)}

            for scanned in report.files:
                if cancel.is_set():
                    stats.cancelled = True
                    break
                await self._index_file(folder, scanned, existing.get(scanned.path), stats)

            if not stats.cancelled:
                seen = {scanned.path for scanned in report.files}
                for path, record in existing.items():
                    if path in seen or any(is_within(path, gone) for gone in report.unreadable):
                        continue
                    if cancel.is_set():
                        stats.cancelled = True
                        break
                    await self._remove_file(record, stats)
        except Exception as e:
            await self._mark_error(folder, str(e))
            raise

        if stats.cancelled:
            logger.info("Scan of %s cancelled", folder.path)
            return stats

        finished = await self._metadata.finish_scan(folder.id)
        stats.total_files = finished.file_count
        logger.info(
            "Scanned %s: %d indexed, %d updated, %d skipped, %d deleted, %d failed",
            folder.path,
            stats.indexed,
            stats.updated,
            stats.skipped,
            stats.deleted,
            stats.failed,
        )
        return stats

    # ------------------------------------------------------------------
    # Incremental updates (watcher)
    # ------------------------------------------------------------------

    async def index_paths(self, folder: IndexedFolder, paths: list[str]) -> ScanStats:
        """Re-index specific host *paths* beneath *folder*.

        Existing files are indexed, updated or skipped by hash; directories
        are walked; paths that no longer exist have their records (and
        anything beneath them) removed.  Waits for any scan in progress.
        """
        stats = ScanStats()
        async with self._lock_for(folder.id):
            if await self._metadata.get_folder(folder.id) is None:
                logger.debug("Folder %s was removed; dropping %d paths", folder.path, len(paths))
                return stats

            local_root = self._paths.to_local(folder.path)
            for raw in paths:
                host_path = normalize_path(raw)
                if not is_within(host_path, folder.path) or host_path == folder.path:
                    logger.debug("Ignoring %s: not beneath %s", host_path, folder.path)
                    continue
                await self._index_path(folder, host_path, local_root, stats)

            refreshed = await self._metadata.refresh_folder_counts(folder.id)
            stats.total_files = refreshed.file_count

        logger.debug(
            "Updated %s from %d paths: %d indexed, %d updated, %d deleted, %d failed",
            folder.path,
            len(paths),
            stats.indexed,
            stats.updated,
            stats.deleted,
            stats.failed,
        )
        return stats

    async def _index_path(
        self,
        folder: IndexedFolder,
        host_path: str,
        local_root: str,
        stats: ScanStats,
    ) -> None:
        local_path = self._paths.to_local(host_path)
        relative = posixpath.relpath(host_path, folder.path)

        if await asyncio.to_thread(os.path.isdir, local_path):
            if any(is_ignored_dir(part, self._scanner.extra_ignore_dirs) for part in relative.split("/")):
                return
            report = await self._scanner.scan(local_path, host_path)
            stats.unreadable.extend(report.unreadable)
            seen: set[str] = set()
            for scanned in report.files:
                nested = dataclasses.replace(
                    scanned, relative_path=posixpath.join(relative, scanned.relative_path)
                )
                seen.add(nested.path)
                existing = await self._metadata.get_file_by_path(folder.id, nested.path)
                await self._index_file(folder, nested, existing, stats)
            for record in await self._metadata.list_files_under(folder.id, host_path):
                if record.path not in seen and not any(is_within(record.path, u) for u in report.unreadable):
                    await self._remove_file(record, stats)
            return

        if await asyncio.to_thread(os.path.isfile, local_path):
            existing = await self._metadata.get_file_by_path(folder.id, host_path)
            try:
                scanned = await self._scanner.scan_file(local_path, local_root, folder.path)
            except OSError as e:
                logger.warning("Cannot read %s: %s", host_path, e)
                stats.fail(host_path, e)
                return
            if scanned is None:
                # No longer eligible (too large, binary, or not a file)
                if existing is not None:
                    await self._remove_file(existing, stats)
                return
            await self._index_file(folder, scanned, existing, stats)
            return

        for record in await self._metadata.list_files_under(folder.id, host_path):
            await self._remove_file(record, stats)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_folder(self, folder: IndexedFolder) -> int:
        """Delete every point and record for *folder*. Returns files removed.

        A scan in progress is asked to stop and is waited for first.
        Vector points go before metadata so a failure leaves records that
        a later removal can still find.
        """
        cancel = self._cancel_events.get(folder.id)
        if cancel is not None:
            cancel.set()

        async with self._lock_for(folder.id):
            await self._store.delete_by_filter(eq("folder_id", folder.id))
            removed = await self._metadata.remove_folder(folder.id)

        self._locks.pop(folder.id, None)
        logger.info("Removed %s (%d files)", folder.path, removed)
        return removed

    # ------------------------------------------------------------------
    # Per-file work
    # ------------------------------------------------------------------

    async def _index_file(
        self,
        folder: IndexedFolder,
        scanned: ScannedFile,
        existing: IndexedFile | None,
        stats: ScanStats,
    ) -> None:
        if existing is not None and existing.content_hash == scanned.content_hash:
            stats.skipped += 1
            return

        try:
            content = await self._scanner.read(scanned.local_path)
        except OSError as e:
            logger.warning("Cannot read %s: %s", scanned.path, e)
            stats.fail(scanned.path, e)
            return
        if existing is not None and existing.content_hash == content.content_hash:
            stats.skipped += 1
            return

        record = IndexedFile(
            id=existing.id if existing is not None else str(uuid.uuid4()),
            folder_id=folder.id,
            path=scanned.path,
            relative_path=scanned.relative_path,
            language=scanned.language,
            content_hash=content.content_hash,
            size=content.size,
            modified_at=scanned.modified_at,
        )
        # Blank files are recorded without chunks or points
        try:
            chunks = self._chunkers.chunk_text(scanned.relative_path, content.text) if content.text.strip() else []
        except Exception as e:
            logger.warning("Could not chunk %s", scanned.path, exc_info=True)
            stats.fail(scanned.path, e)
            return

        try:
            vectors = await self._embed_chunks(scanned.path, chunks)
        except EmbeddingError as e:
            stats.fail(scanned.path, e)
            return

        points = [
            VectorPoint(
                id=point_id(record.id, chunk.chunk_num),
                vector=vector,
                payload=self._payload(folder, record, chunk),
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
        try:
            await self._store.delete_by_filter(eq("file_id", record.id))
            if points:
                await self._store.upsert(points)
        except VectorStoreError as e:
            logger.warning("Vector store write failed for %s: %s", scanned.path, e)
            stats.fail(scanned.path, e)
            return

        rows = [
            FileChunk(
                file_id=record.id,
                folder_id=folder.id,
                chunk_num=chunk.chunk_num,
                start_line=chunk.start_line,
                end_line=chunk.end_line,
                content=chunk.content,
                vector_id=point.id,
            )
            for chunk, point in zip(chunks, points, strict=True)
        ]
        try:
            await self._metadata.save_file(record, rows)
        except SQLAlchemyError as e:
            logger.warning("Metadata write failed for %s: %s", scanned.path, e)
            stats.fail(scanned.path, e)
            return

        if existing is None:
            stats.indexed += 1
            logger.debug("Indexed %s (%d chunks)", scanned.path, len(chunks))
        else:
            stats.updated += 1
            logger.debug("Updated %s (%d chunks)", scanned.path, len(chunks))
        stats.chunks_embedded += len(chunks)

    async def _embed_chunks(self, path: str, chunks: list[Chunk]) -> list[list[float]]:
        """Embed every chunk or raise :class:`EmbeddingError` naming the failures.

        Chunks go to the provider in batches of *embed_batch_size*, each batch
        holding one slot of the shared semaphore.
        """
        size = self._embed_batch_size
        batches = [chunks[i : i + size] for i in range(0, len(chunks), size)]

        async def _embed_batch(batch: list[Chunk]) -> list[list[float]]:
            async with self._semaphore:
                return await embed_texts(
                    self._provider, [c.content for c in batch], timeout=self._embed_timeout
                )

        results = await asyncio.gather(*(_embed_batch(b) for b in batches), return_exceptions=True)

        vectors: list[list[float]] = []
        failures: list[tuple[list[Chunk], BaseException]] = []
        for batch, result in zip(batches, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append((batch, result))
            else:
                vectors.extend(result)

        if failures:
            for batch, error in failures:
                logger.warning(
                    "Failed to embed chunks %d-%d (lines %d-%d) of %s: %s",
                    batch[0].chunk_num,
                    batch[-1].chunk_num,
                    batch[0].start_line,
                    batch[-1].end_line,
                    path,
                    error,
                )
            failed = sum(len(batch) for batch, _ in failures)
            msg = f"{failed} of {len(chunks)} chunks failed to embed: {failures[0][1]}"
            raise EmbeddingError(msg)
        return vectors

    async def _remove_file(self, record: IndexedFile, stats: ScanStats) -> None:
        try:
            await self._store.delete_by_filter(eq("file_id", record.id))
        except VectorStoreError as e:
            logger.warning("Could not delete points for %s: %s", record.path, e)
            stats.fail(record.path, e)
            return
        await self._metadata.delete_file(record.id)
        stats.deleted += 1
        logger.debug("Deleted %s", record.path)

    @staticmethod
    def _payload(folder: IndexedFolder, record: IndexedFile, chunk: Chunk) -> dict[str, object]:
        return {
            "file_id": record.id,
            "folder_id": folder.id,
            "folder_path": folder.path,
            "file_path": record.path,
            "relative_path": record.relative_path,
            "language": record.language,
            "chunk_num": chunk.chunk_num,
            "start_line": chunk.start_line,
            "end_line": chunk.end_line,
            "content": chunk.content,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_for(self, folder_id: str) -> asyncio.Lock:
        lock = self._locks.get(folder_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[folder_id] = lock
        return lock

    async def _mark_error(self, folder: IndexedFolder, message: str) -> None:
        logger.error("Scan of %s failed: %s", folder.path, message)
        try:
            await self._metadata.update_folder_status(folder.id, FolderStatus.ERROR, message)
        except (FolderNotFoundError, SQLAlchemyError):
            logger.warning("Could not record scan failure for %s", folder.path, exc_info=True)
