"""MetadataStore — durable record of indexed folders, files and chunks."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import delete, event, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import select

from codeindex.exceptions import FolderExistsError, FolderNotFoundError
from codeindex.models import FileChunk, FolderStatus, IndexedFile, IndexedFolder

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_DB_FILENAME = "codeindex.db"


@dataclass
class IndexStats:
    """Aggregate counts across every registered folder."""

    folders: list[IndexedFolder] = field(default_factory=list)
    total_files: int = 0
    total_size: int = 0
    total_chunks: int = 0

    @property
    def total_folders(self) -> int:
        return len(self.folders)


class MetadataStore:
    """Folder/file/chunk records on an async SQLAlchemy engine.

    Defaults to a SQLite database in *data_dir* opened in WAL mode.  Pass
    *url* for any other SQLAlchemy async URL, or *engine* to share an
    existing engine (the store then does not dispose it on close).

    Every public method runs in its own session and commits on success.
    ``save_file`` is the only path that advances a file's stored hash, and
    it writes the file record and all of its chunks in one transaction.
    """

    def __init__(
        self,
        *,
        data_dir: str | Path | None = None,
        url: str | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._data_dir = Path(data_dir) if data_dir is not None else None
        self._url = url
        self._engine: AsyncEngine | None = engine
        self._owns_engine = engine is None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the engine (if needed) and the tables."""
        if self._session_factory is not None:
            return
        async with self._init_lock:
            if self._session_factory is not None:
                return

            if self._engine is None:
                self._engine = self._create_engine()

            async with self._engine.begin() as conn:
                for model in (IndexedFolder, IndexedFile, FileChunk):
                    table = model.__table__  # type: ignore[unresolved-attribute]
                    await conn.run_sync(lambda c, t=table: t.create(c, checkfirst=True))

            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

    async def close(self) -> None:
        """Dispose the engine if this store created it."""
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        self._session_factory = None

    def _create_engine(self) -> AsyncEngine:
        if self._url is not None:
            return create_async_engine(self._url, echo=False)

        data_dir = self._data_dir or Path.home() / ".codeindex"
        data_dir.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{data_dir / _DB_FILENAME}",
            echo=False,
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[union-attr]
            cursor.execute("PRAGMA journal_mode=WAL")
            result = cursor.fetchone()
            if result[0].lower() != "wal":
                logger.warning("WAL mode not active, got: %s", result[0])
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA synchronous=FULL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            msg = "MetadataStore is not open. Call open() first."
            raise RuntimeError(msg)
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def add_folder(self, path: str, description: str = "") -> IndexedFolder:
        """Register *path*. Raises ``FolderExistsError`` if already registered."""
        folder = IndexedFolder(path=path, description=description)
        try:
            async with self.session() as session:
                session.add(folder)
        except IntegrityError:
            msg = f"Folder already registered: {path}"
            raise FolderExistsError(msg) from None
        logger.info("Registered folder %s (%s)", path, folder.id)
        return folder

    async def get_folder(self, folder_id: str) -> IndexedFolder | None:
        async with self.session() as session:
            return await session.get(IndexedFolder, folder_id)

    async def get_folder_by_path(self, path: str) -> IndexedFolder | None:
        async with self.session() as session:
            result = await session.execute(
                select(IndexedFolder).where(IndexedFolder.path == path)
            )
            return result.scalars().first()

    async def list_folders(self, status: FolderStatus | None = None) -> list[IndexedFolder]:
        """List folders ordered by path, optionally restricted to one *status*."""
        stmt = select(IndexedFolder)
        if status is not None:
            stmt = stmt.where(IndexedFolder.status == status.value)
        async with self.session() as session:
            result = await session.execute(stmt.order_by(IndexedFolder.path))  # type: ignore[arg-type]
            return list(result.scalars().all())

    async def update_folder_status(
        self,
        folder_id: str,
        status: FolderStatus,
        error_message: str | None = None,
    ) -> IndexedFolder:
        """Set *status* (and the error message, cleared unless given)."""
        async with self.session() as session:
            folder = await self._require_folder(session, folder_id)
            folder.status = status.value
            folder.error_message = error_message
            folder.updated_at = datetime.now(UTC)
            session.add(folder)
        return folder

    async def refresh_folder_counts(self, folder_id: str) -> IndexedFolder:
        """Recompute the folder's file count and total size from its file rows."""
        async with self.session() as session:
            folder = await self._require_folder(session, folder_id)
            count, size = await self._file_totals(session, folder_id)
            folder.file_count = count
            folder.total_size = size
            folder.updated_at = datetime.now(UTC)
            session.add(folder)
        return folder

    async def finish_scan(self, folder_id: str) -> IndexedFolder:
        """Mark the folder ``active``, refresh its counts and stamp the scan time."""
        now = datetime.now(UTC)
        async with self.session() as session:
            folder = await self._require_folder(session, folder_id)
            count, size = await self._file_totals(session, folder_id)
            folder.status = FolderStatus.ACTIVE.value
            folder.error_message = None
            folder.file_count = count
            folder.total_size = size
            folder.last_scan_at = now
            folder.updated_at = now
            session.add(folder)
        return folder

    async def remove_folder(self, folder_id: str) -> int:
        """Delete the folder with all its files and chunks. Returns files removed."""
        async with self.session() as session:
            folder = await self._require_folder(session, folder_id)
            count, _ = await self._file_totals(session, folder_id)
            await session.execute(delete(FileChunk).where(FileChunk.folder_id == folder_id))  # type: ignore[arg-type]
            await session.execute(delete(IndexedFile).where(IndexedFile.folder_id == folder_id))  # type: ignore[arg-type]
            await session.delete(folder)
        logger.info("Removed folder %s with %d file records", folder_id, count)
        return count

    async def reset_interrupted_scans(self) -> list[IndexedFolder]:
        """Flag folders left in ``scanning`` (by a crash) as ``error``."""
        async with self.session() as session:
            result = await session.execute(
                select(IndexedFolder).where(IndexedFolder.status == FolderStatus.SCANNING.value)
            )
            folders = list(result.scalars().all())
            for folder in folders:
                folder.status = FolderStatus.ERROR.value
                folder.error_message = "Previous scan was interrupted; run a scan to repair the index"
                session.add(folder)
        for folder in folders:
            logger.warning("Folder %s was left scanning; marked as error", folder.path)
        return folders

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def list_files(self, folder_id: str) -> list[IndexedFile]:
        async with self.session() as session:
            result = await session.execute(
                select(IndexedFile)
                .where(IndexedFile.folder_id == folder_id)
                .order_by(IndexedFile.path)  # type: ignore[arg-type]
            )
            return list(result.scalars().all())

    async def get_file_by_path(self, folder_id: str, path: str) -> IndexedFile | None:
        async with self.session() as session:
            result = await session.execute(
                select(IndexedFile).where(
                    IndexedFile.folder_id == folder_id,
                    IndexedFile.path == path,
                )
            )
            return result.scalars().first()

    async def list_files_under(self, folder_id: str, path: str) -> list[IndexedFile]:
        """Files whose path is *path* itself or lies beneath it."""
        prefix = path.rstrip("/") + "/"
        async with self.session() as session:
            result = await session.execute(
                select(IndexedFile).where(
                    IndexedFile.folder_id == folder_id,
                    or_(IndexedFile.path == path, IndexedFile.path.startswith(prefix, autoescape=True)),  # type: ignore[attr-defined]
                )
            )
            return list(result.scalars().all())

    async def save_file(self, record: IndexedFile, chunks: list[FileChunk]) -> IndexedFile:
        """Insert or replace *record* and replace all of its chunks atomically."""
        record.chunk_count = len(chunks)
        record.indexed_at = datetime.now(UTC)
        async with self.session() as session:
            merged = await session.merge(record)
            await session.flush()
            await session.execute(delete(FileChunk).where(FileChunk.file_id == record.id))  # type: ignore[arg-type]
            for chunk in chunks:
                chunk.file_id = record.id
                chunk.folder_id = record.folder_id
                session.add(chunk)
        return merged

    async def delete_file(self, file_id: str) -> bool:
        """Delete a file record and its chunks. Returns True if it existed."""
        async with self.session() as session:
            record = await session.get(IndexedFile, file_id)
            if record is None:
                return False
            await session.execute(delete(FileChunk).where(FileChunk.file_id == file_id))  # type: ignore[arg-type]
            await session.delete(record)
        return True

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def list_chunks(self, file_id: str) -> list[FileChunk]:
        """List all chunks for *file_id*, ordered by chunk number."""
        async with self.session() as session:
            result = await session.execute(
                select(FileChunk)
                .where(FileChunk.file_id == file_id)
                .order_by(FileChunk.chunk_num)  # type: ignore[arg-type]
            )
            return list(result.scalars().all())

    async def count_chunks(self, folder_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(FileChunk)
        if folder_id is not None:
            stmt = stmt.where(FileChunk.folder_id == folder_id)
        async with self.session() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self) -> IndexStats:
        """Aggregate folder, file and chunk totals."""
        folders = await self.list_folders()
        async with self.session() as session:
            files = await session.execute(
                select(func.count(), func.coalesce(func.sum(IndexedFile.size), 0)).select_from(
                    IndexedFile
                )
            )
            total_files, total_size = files.one()
            chunks = await session.execute(select(func.count()).select_from(FileChunk))
            total_chunks = chunks.scalar_one()
        return IndexStats(
            folders=folders,
            total_files=int(total_files),
            total_size=int(total_size),
            total_chunks=int(total_chunks),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    async def _require_folder(session: AsyncSession, folder_id: str) -> IndexedFolder:
        folder = await session.get(IndexedFolder, folder_id)
        if folder is None:
            msg = f"Folder not found: {folder_id}"
            raise FolderNotFoundError(msg)
        return folder

    @staticmethod
    async def _file_totals(session: AsyncSession, folder_id: str) -> tuple[int, int]:
        result = await session.execute(
            select(func.count(), func.coalesce(func.sum(IndexedFile.size), 0))
            .select_from(IndexedFile)
            .where(IndexedFile.folder_id == folder_id)
        )
        count, size = result.one()
        return int(count), int(size)
