"""FolderWatcher — turns live filesystem changes into debounced index updates."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import TYPE_CHECKING

from watchfiles import Change, awatch

from codeindex.events import EventBus, EventType, FileEvent
from codeindex.models import FolderStatus
from codeindex.scanner.languages import is_ignored_dir

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from codeindex.indexing import IndexingPipeline, ScanStats
    from codeindex.models import IndexedFolder
    from codeindex.store import MetadataStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5


class FolderWatcher:
    """Watches every active folder and re-indexes what changed.

    One ``watchfiles.awatch`` task runs per folder.  Each raw change is
    emitted on the :class:`~codeindex.events.EventBus` as a
    :class:`~codeindex.events.FileEvent`; the watcher's own handler records
    it in a per-folder pending map (latest event per path wins) and
    (re)schedules a flush *debounce_seconds* later, so a burst of saves
    becomes one call to :meth:`IndexingPipeline.index_paths`.

    Failures in the watch loop, in handlers and during indexing are logged
    and never stop other folders from being watched.
    """

    def __init__(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        event_bus: EventBus | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._metadata = metadata
        self._debounce = debounce_seconds
        self._bus = event_bus if event_bus is not None else EventBus()
        self._running = False

        self._folders: dict[str, IndexedFolder] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._stop_events: dict[str, asyncio.Event] = {}

        # folder id → {host path → latest event type}
        self._pending: dict[str, dict[str, EventType]] = {}
        self._flush_timers: dict[str, asyncio.Task[None]] = {}
        self._flushing: set[asyncio.Task[None]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watched_folders(self) -> list[str]:
        """Host paths of the folders currently watched."""
        return sorted(folder.path for folder in self._folders.values())

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    def pending_paths(self, folder_id: str) -> dict[str, EventType]:
        """Changes recorded for *folder_id* that have not been flushed yet."""
        return dict(self._pending.get(folder_id, {}))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start watching every ``active`` folder."""
        if self._running:
            return
        self._running = True
        self._unsubscribe = self._bus.subscribe(self._on_event, EventType.FILE_CHANGED, EventType.FILE_DELETED)
        await self.sync()
        logger.info("Watcher started (%d folders)", len(self._folders))

    async def stop(self) -> None:
        """Stop all watch loops and wait for in-flight index updates."""
        if not self._running:
            return
        self._running = False
        for folder_id in list(self._folders):
            await self.unwatch_folder(folder_id)
        if self._flushing:
            await asyncio.gather(*self._flushing, return_exceptions=True)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.info("Watcher stopped")

    async def sync(self, folders: Iterable[IndexedFolder] | None = None) -> None:
        """Align the watched set with *folders* (default: all ``active`` folders)."""
        if folders is None:
            folders = await self._metadata.list_folders(FolderStatus.ACTIVE)
        wanted = {folder.id: folder for folder in folders}
        for folder_id in list(self._folders):
            if folder_id not in wanted:
                await self.unwatch_folder(folder_id)
        for folder in wanted.values():
            await self.watch_folder(folder)

    async def watch_folder(self, folder: IndexedFolder) -> bool:
        """Start watching *folder*. Returns False if not running or the path is missing."""
        if not self._running:
            return False
        if folder.id in self._tasks:
            self._folders[folder.id] = folder
            return True

        local_root = self._pipeline.path_mapper.to_local(folder.path)
        if not await asyncio.to_thread(os.path.isdir, local_root):
            logger.warning("Not watching %s: %s is not a directory", folder.path, local_root)
            return False

        stop_event = asyncio.Event()
        self._folders[folder.id] = folder
        self._stop_events[folder.id] = stop_event
        self._tasks[folder.id] = asyncio.create_task(
            self._watch_loop(folder, local_root, stop_event),
            name=f"codeindex-watch-{folder.id}",
        )
        logger.debug("Watching %s at %s", folder.path, local_root)
        return True

    async def unwatch_folder(self, folder_id: str) -> bool:
        """Stop watching *folder_id* and drop its pending changes."""
        folder = self._folders.pop(folder_id, None)
        stop_event = self._stop_events.pop(folder_id, None)
        task = self._tasks.pop(folder_id, None)
        timer = self._flush_timers.pop(folder_id, None)
        dropped = self._pending.pop(folder_id, None)

        if timer is not None:
            timer.cancel()
        if stop_event is not None:
            stop_event.set()
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if dropped:
            logger.debug("Dropped %d pending changes for %s", len(dropped), folder_id)
        if folder is not None:
            logger.debug("Stopped watching %s", folder.path)
        return task is not None

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    async def _watch_loop(self, folder: IndexedFolder, local_root: str, stop_event: asyncio.Event) -> None:
        try:
            async for changes in awatch(
                local_root,
                watch_filter=self._make_filter(local_root),
                stop_event=stop_event,
            ):
                await self._handle_changes(folder, changes)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Watch loop for %s stopped", folder.path, exc_info=True)

    def _make_filter(self, local_root: str) -> Callable[[Change, str], bool]:
        scanner = self._pipeline.scanner

        def _should_watch(change: Change, path: str) -> bool:
            relative = os.path.relpath(path, local_root).replace(os.sep, "/")
            if relative == "." or relative.startswith("../"):
                return False
            if any(is_ignored_dir(part, scanner.extra_ignore_dirs) for part in relative.split("/")):
                return False
            # A deleted path may have been a directory with indexed files beneath it
            if change == Change.deleted:
                return True
            return scanner.is_eligible_path(relative) or os.path.isdir(path)

        return _should_watch

    async def _handle_changes(self, folder: IndexedFolder, changes: Iterable[tuple[Change, str]]) -> None:
        """Emit one :class:`FileEvent` per raw change."""
        mapper = self._pipeline.path_mapper
        for change, local_path in changes:
            event_type = EventType.FILE_DELETED if change == Change.deleted else EventType.FILE_CHANGED
            event = FileEvent(
                event_type=event_type,
                path=mapper.to_host(local_path),
                folder_id=folder.id,
                local_path=local_path,
            )
            logger.debug("Change detected: %s %s", event_type.value, event.path)
            await self._bus.emit(event)

    async def _on_event(self, event: FileEvent) -> None:
        if event.folder_id not in self._folders:
            return
        self._pending.setdefault(event.folder_id, {})[event.path] = event.event_type
        self._schedule_flush(event.folder_id)

    def _schedule_flush(self, folder_id: str) -> None:
        timer = self._flush_timers.get(folder_id)
        if timer is not None and not timer.done():
            timer.cancel()
        self._flush_timers[folder_id] = asyncio.create_task(
            self._delayed_flush(folder_id),
            name=f"codeindex-flush-{folder_id}",
        )

    async def _delayed_flush(self, folder_id: str) -> None:
        await asyncio.sleep(self._debounce)
        # From here on a new event schedules a fresh timer instead of cancelling this one
        current = asyncio.current_task()
        if self._flush_timers.get(folder_id) is current:
            del self._flush_timers[folder_id]
        if current is not None:
            self._flushing.add(current)
            current.add_done_callback(self._flushing.discard)
        await self.flush(folder_id)

    async def flush(self, folder_id: str) -> ScanStats | None:
        """Index every pending change for *folder_id* now."""
        pending = self._pending.pop(folder_id, None)
        folder = self._folders.get(folder_id)
        if not pending or folder is None:
            return None

        logger.info("Re-indexing %d changed paths in %s", len(pending), folder.path)
        try:
            stats = await self._pipeline.index_paths(folder, sorted(pending))
        except Exception:
            logger.warning("Failed to re-index changes in %s", folder.path, exc_info=True)
            return None
        if stats.failed:
            logger.warning("%d files failed to re-index in %s: %s", stats.failed, folder.path, stats.errors)
        return stats
