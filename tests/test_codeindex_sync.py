"""Tests for CodeIndex — the synchronous facade on its private event loop."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

import pytest

from codeindex import CodeIndex
from codeindex.config import CodeIndexConfig, WatcherCfg
from codeindex.search.stores.local import LocalVectorStore
from codeindex.store import MetadataStore

from tests.conftest import FakeEmbedding, write_files

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def sync_index(tmp_path: Path) -> Iterator[CodeIndex]:
    index = CodeIndex(
        CodeIndexConfig(watcher=WatcherCfg(enabled=False)),
        metadata_store=MetadataStore(data_dir=tmp_path / "sync-data"),
        vector_store=LocalVectorStore(),
        embedding_provider=FakeEmbedding(),
    )
    yield index
    index.close()


class TestCodeIndex:
    def test_full_workflow(self, sync_index: CodeIndex, project: Path) -> None:
        write_files(project, {"server.go": "func handleRequest(w, r) {\n\tserve(w, r)\n}\n"})

        added = sync_index.add_folder(str(project))
        assert added.success

        scanned = sync_index.scan(str(project))
        assert scanned.success
        assert scanned.indexed == 1

        result = sync_index.search("handle request serve")
        assert result.success
        assert result.hits[0].relative_path == "server.go"

        status = sync_index.status()
        assert status.total_files == 1
        assert status.folders[0].enabled

        removed = sync_index.remove_folder(str(project))
        assert removed.success
        assert sync_index.status().total_folders == 0

    def test_watcher_toggle(self, sync_index: CodeIndex) -> None:
        assert not sync_index.watcher_running
        sync_index.start_watcher()
        assert sync_index.watcher_running
        sync_index.stop_watcher()
        assert not sync_index.watcher_running

    def test_close_is_idempotent(self, sync_index: CodeIndex) -> None:
        sync_index.close()
        sync_index.close()

    def test_context_manager(self, tmp_path: Path) -> None:
        with CodeIndex(
            CodeIndexConfig(watcher=WatcherCfg(enabled=False)),
            metadata_store=MetadataStore(data_dir=tmp_path / "ctx-data"),
            vector_store=LocalVectorStore(),
            embedding_provider=FakeEmbedding(),
        ) as index:
            assert index.status().success
