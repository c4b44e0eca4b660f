"""CodeIndex — synchronous wrapper around CodeIndexAsync."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

from codeindex._codeindex_async import CodeIndexAsync

if TYPE_CHECKING:
    from codeindex.config import CodeIndexConfig
    from codeindex.paths import PathMapper
    from codeindex.search.protocols import EmbeddingProvider, VectorStore
    from codeindex.store import MetadataStore
    from codeindex.types import (
        AddFolderResult,
        RemoveFolderResult,
        ScanResult,
        SearchResult,
        StatusResult,
    )


class CodeIndex:
    """Synchronous code index backed by a private event loop in a background thread.

    The watcher and every store client live on that loop, so the index can
    be used from plain sync code or from inside an unrelated event loop.

    Usage::

        with CodeIndex() as index:
            index.add_folder("/home/me/project")
            index.scan("/home/me/project")
            for hit in index.search("parse the config file").hits:
                print(hit.file_path, hit.start_line)
    """

    def __init__(
        self,
        config: CodeIndexConfig | None = None,
        *,
        metadata_store: MetadataStore | None = None,
        vector_store: VectorStore | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        path_mapper: PathMapper | None = None,
        start_watcher: bool | None = None,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        try:
            self._async = self._run(
                self._async_init(
                    config,
                    metadata_store=metadata_store,
                    vector_store=vector_store,
                    embedding_provider=embedding_provider,
                    path_mapper=path_mapper,
                    start_watcher=start_watcher,
                )
            )
        except BaseException:
            self._stop_loop()
            raise

    @staticmethod
    async def _async_init(
        config: CodeIndexConfig | None,
        *,
        start_watcher: bool | None,
        **components: Any,
    ) -> CodeIndexAsync:
        index = CodeIndexAsync(config, **components)
        await index.open(start_watcher=start_watcher)
        return index

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the index, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async.close())
        finally:
            self._stop_loop()

    def __enter__(self) -> CodeIndex:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Operations (sync)
    # ------------------------------------------------------------------

    def add_folder(self, path: str, description: str | None = None) -> AddFolderResult:
        return self._run(self._async.add_folder(path, description))

    def remove_folder(self, path: str) -> RemoveFolderResult:
        return self._run(self._async.remove_folder(path))

    def scan(self, path: str) -> ScanResult:
        return self._run(self._async.scan(path))

    def search(
        self,
        query: str,
        *,
        limit: int | None = 10,
        folder_path: str | None = None,
        retrieve: str = "chunk",
    ) -> SearchResult:
        return self._run(
            self._async.search(query, limit=limit, folder_path=folder_path, retrieve=retrieve)
        )

    def status(self) -> StatusResult:
        return self._run(self._async.status())

    def start_watcher(self) -> None:
        self._run(self._async.start_watcher())

    def stop_watcher(self) -> None:
        self._run(self._async.stop_watcher())

    @property
    def watcher_running(self) -> bool:
        return self._async.watcher.is_running
