"""Tests for IndexingPipeline — scans, incremental updates and removal across both stores."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from codeindex.exceptions import FolderNotFoundError, ScanAlreadyRunningError
from codeindex.indexing import IndexingPipeline
from codeindex.models import FolderStatus
from codeindex.scanner import ChunkerRegistry
from codeindex.search.filters import eq
from codeindex.search.types import point_id

from tests.conftest import write_files

if TYPE_CHECKING:
    from pathlib import Path

    from codeindex.models import IndexedFolder
    from codeindex.search.stores.local import LocalVectorStore
    from codeindex.store import MetadataStore

    from tests.conftest import FakeEmbedding


def _go(name: str, lines: int) -> str:
    body = "".join(f"\tx{i} := {i}\n" for i in range(lines - 2))
    return f"func {name}() {{\n{body}}}\n"


async def _assert_consistent(metadata: MetadataStore, store: LocalVectorStore, folder: IndexedFolder) -> None:
    """Every chunk row has exactly one point and no point lacks a row."""
    chunk_ids: set[str] = set()
    for record in await metadata.list_files(folder.id):
        chunks = await metadata.list_chunks(record.id)
        assert record.chunk_count == len(chunks)
        for chunk in chunks:
            assert chunk.vector_id == point_id(record.id, chunk.chunk_num)
            assert store.has(chunk.vector_id)
            chunk_ids.add(chunk.vector_id)
    assert await store.count(eq("folder_id", folder.id)) == len(chunk_ids)


@pytest.fixture
async def folder(metadata: MetadataStore, project: Path) -> IndexedFolder:
    return await metadata.add_folder(str(project))


# =========================================================================
# Full scans
# =========================================================================


class TestScanFolder:
    @pytest.mark.asyncio
    async def test_first_scan_indexes_everything(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.go": _go("a", 50), "b.go": _go("b", 10), "pkg/c.py": "def c():\n    pass\n"})

        stats = await pipeline.scan_folder(folder)

        assert (stats.indexed, stats.updated, stats.skipped, stats.deleted, stats.failed) == (3, 0, 0, 0, 0)
        assert stats.total_files == 3
        assert stats.chunks_embedded == await metadata.count_chunks(folder.id)
        refreshed = await metadata.get_folder(folder.id)
        assert refreshed is not None
        assert refreshed.status == FolderStatus.ACTIVE
        assert refreshed.file_count == 3
        assert refreshed.last_scan_at is not None
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_edit_one_file_scenario(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.go": _go("a", 50), "b.go": _go("b", 10)})
        first = await pipeline.scan_folder(folder)
        assert (first.indexed, first.updated, first.skipped) == (2, 0, 0)

        (project / "a.go").write_text(_go("renamed", 50))
        second = await pipeline.scan_folder(folder)

        assert (second.indexed, second.updated, second.skipped) == (0, 1, 1)
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_rescan_without_changes_embeds_nothing(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.go": _go("a", 20), "b.py": "x = 1\n"})
        await pipeline.scan_folder(folder)
        calls = len(provider.calls)
        points = len(vector_store)

        stats = await pipeline.scan_folder(folder)

        assert stats.skipped == 2
        assert stats.chunks_embedded == 0
        assert len(provider.calls) == calls
        assert len(vector_store) == points

    @pytest.mark.asyncio
    async def test_only_changed_file_is_reembedded(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.py": "alpha = 1\n", "b.py": "beta = 2\n"})
        await pipeline.scan_folder(folder)
        provider.calls.clear()

        (project / "b.py").write_text("beta = 3\n")
        await pipeline.scan_folder(folder)

        assert provider.calls == ["beta = 3\n"]

    @pytest.mark.asyncio
    async def test_shrinking_file_leaves_no_stale_points(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        pipeline = IndexingPipeline(metadata, vector_store, provider, chunkers=ChunkerRegistry(max_lines=2))
        write_files(project, {"m.go": "".join(f"line{i}\n" for i in range(10))})
        await pipeline.scan_folder(folder)
        (record,) = await metadata.list_files(folder.id)
        assert record.chunk_count == 5

        (project / "m.go").write_text("line0\nline1\nline2\n")
        stats = await pipeline.scan_folder(folder)

        assert stats.updated == 1
        (record,) = await metadata.list_files(folder.id)
        assert record.chunk_count == 2
        assert not vector_store.has(point_id(record.id, 4))
        assert len(vector_store) == 2
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_deleted_files_are_removed_from_both_stores(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.py": "a = 1\n", "sub/b.py": "b = 2\n"})
        await pipeline.scan_folder(folder)
        gone = await metadata.get_file_by_path(folder.id, str(project / "sub" / "b.py"))
        assert gone is not None

        (project / "sub" / "b.py").unlink()
        stats = await pipeline.scan_folder(folder)

        assert stats.deleted == 1
        assert await metadata.get_file_by_path(folder.id, gone.path) is None
        assert await vector_store.count(eq("file_id", gone.id)) == 0
        assert stats.total_files == 1
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_chunks_reconstruct_file(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        pipeline = IndexingPipeline(metadata, vector_store, provider, chunkers=ChunkerRegistry(max_lines=7))
        source = "".join(f"def f{i}():\n    return {i}\n\n" for i in range(10))
        write_files(project, {"mod.py": source})

        await pipeline.scan_folder(folder)

        (record,) = await metadata.list_files(folder.id)
        chunks = await metadata.list_chunks(record.id)
        assert len(chunks) > 1
        assert "".join(c.content for c in chunks) == source

    @pytest.mark.asyncio
    async def test_blank_file_recorded_without_points(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"empty.py": "\n\n"})

        stats = await pipeline.scan_folder(folder)

        assert stats.indexed == 1
        (record,) = await metadata.list_files(folder.id)
        assert record.chunk_count == 0
        assert len(vector_store) == 0

    @pytest.mark.asyncio
    async def test_payload_describes_chunk(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"pkg/a.py": "value = 1\n"})
        await pipeline.scan_folder(folder)

        (record,) = await metadata.list_files(folder.id)
        payload = vector_store.payload(point_id(record.id, 0))
        assert payload == {
            "file_id": record.id,
            "folder_id": folder.id,
            "folder_path": folder.path,
            "file_path": record.path,
            "relative_path": "pkg/a.py",
            "language": "python",
            "chunk_num": 0,
            "start_line": 1,
            "end_line": 1,
            "content": "value = 1\n",
        }


# =========================================================================
# Failures
# =========================================================================


class TestScanFailures:
    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_old_version(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.py": "original = 1\n", "b.py": "other = 2\n"})
        await pipeline.scan_folder(folder)
        before = await metadata.get_file_by_path(folder.id, str(project / "a.py"))
        assert before is not None

        (project / "a.py").write_text("original = 1\nexplode = 2\n")
        provider.fail_on = {"explode"}
        stats = await pipeline.scan_folder(folder)

        assert stats.failed == 1
        assert stats.skipped == 1
        assert stats.errors and str(project / "a.py") in stats.errors[0]
        after = await metadata.get_file_by_path(folder.id, before.path)
        assert after is not None
        assert after.content_hash == before.content_hash
        payload = vector_store.payload(point_id(before.id, 0))
        assert payload is not None
        assert payload["content"] == "original = 1\n"
        refreshed = await metadata.get_folder(folder.id)
        assert refreshed is not None
        assert refreshed.status == FolderStatus.ACTIVE

        provider.fail_on = set()
        retry = await pipeline.scan_folder(folder)
        assert retry.updated == 1
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_new_file_that_fails_is_not_recorded(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"bad.py": "explode = 1\n", "good.py": "fine = 1\n"})
        provider.fail_on = {"explode"}

        stats = await pipeline.scan_folder(folder)

        assert (stats.indexed, stats.failed) == (1, 1)
        assert [r.relative_path for r in await metadata.list_files(folder.id)] == ["good.py"]
        assert len(vector_store) == 1

    @pytest.mark.asyncio
    async def test_unreadable_files_are_reported_and_kept(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        write_files(project, {"a.py": "a = 1\n", "locked.py": "locked = 1\n"})
        await pipeline.scan_folder(folder)
        locked = str(project / "locked.py")
        scan_file = pipeline.scanner._scan_file_sync

        def deny_locked(local_path: str, local_root: str, host_root: str):
            if local_path == locked:
                raise PermissionError(13, "Permission denied", local_path)
            return scan_file(local_path, local_root, host_root)

        monkeypatch.setattr(pipeline.scanner, "_scan_file_sync", deny_locked)

        stats = await pipeline.scan_folder(folder)

        assert stats.unreadable == [locked]
        assert (stats.skipped, stats.deleted, stats.failed) == (1, 0, 0)
        assert await metadata.get_file_by_path(folder.id, locked) is not None
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_carriage_return_python_file_is_indexed(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"good.py": "good = 1\n"})
        (project / "cr.py").write_bytes(b"import os\rimport sys\rdef f():\r    return 1\r")

        stats = await pipeline.scan_folder(folder)

        assert (stats.indexed, stats.failed) == (2, 0)
        refreshed = await metadata.get_folder(folder.id)
        assert refreshed is not None
        assert refreshed.status == FolderStatus.ACTIVE
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_chunker_error_fails_only_that_file(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        class Exploding:
            extensions = frozenset({".go"})

            def boundaries(self, path: str, lines: list[str]) -> list[int]:
                raise IndexError("list index out of range")

        chunkers = ChunkerRegistry()
        chunkers.register(Exploding())
        pipeline = IndexingPipeline(metadata, vector_store, provider, chunkers=chunkers)
        write_files(project, {"a.py": "a = 1\n", "b.go": "package b\n"})

        stats = await pipeline.scan_folder(folder)

        assert (stats.indexed, stats.failed) == (1, 1)
        assert str(project / "b.go") in stats.errors[0]
        refreshed = await metadata.get_folder(folder.id)
        assert refreshed is not None
        assert refreshed.status == FolderStatus.ACTIVE
        assert [r.relative_path for r in await metadata.list_files(folder.id)] == ["a.py"]

    @pytest.mark.asyncio
    async def test_chunks_are_embedded_in_batches(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        pipeline = IndexingPipeline(
            metadata,
            vector_store,
            provider,
            chunkers=ChunkerRegistry(max_lines=1),
            embed_batch_size=2,
        )
        write_files(project, {"a.go": "a\nb\nc\nd\ne\n"})

        stats = await pipeline.scan_folder(folder)

        assert stats.chunks_embedded == 5
        assert provider.batches == [2, 2, 1]
        assert provider.calls == ["a\n", "b\n", "c\n", "d\n", "e\n"]
        assert len(vector_store) == 5

    @pytest.mark.asyncio
    async def test_failed_batch_fails_the_whole_file(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        pipeline = IndexingPipeline(
            metadata,
            vector_store,
            provider,
            chunkers=ChunkerRegistry(max_lines=1),
            embed_batch_size=2,
        )
        write_files(project, {"a.go": "a\nb\nexplode\nd\n"})
        provider.fail_on = {"explode"}

        stats = await pipeline.scan_folder(folder)

        assert stats.failed == 1
        assert "2 of 4 chunks failed to embed" in stats.errors[0]
        assert await metadata.list_files(folder.id) == []
        assert len(vector_store) == 0

    @pytest.mark.asyncio
    async def test_embedding_timeout_is_a_file_failure(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        pipeline = IndexingPipeline(metadata, vector_store, provider, embed_timeout=0.05)
        provider.delay = 0.5
        write_files(project, {"slow.py": "slow = 1\n"})

        stats = await pipeline.scan_folder(folder)

        assert stats.failed == 1
        assert "timed out" in stats.errors[0]
        assert await metadata.list_files(folder.id) == []

    @pytest.mark.asyncio
    async def test_vanished_folder_is_marked_error(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        project.rmdir()

        with pytest.raises(FolderNotFoundError):
            await pipeline.scan_folder(folder)

        refreshed = await metadata.get_folder(folder.id)
        assert refreshed is not None
        assert refreshed.status == FolderStatus.ERROR
        assert refreshed.error_message is not None
        assert "no longer exists" in refreshed.error_message
        assert not pipeline.is_scanning(folder.id)


# =========================================================================
# Concurrency and cancellation
# =========================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_scan_of_same_folder_is_rejected(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.py": "a = 1\n"})
        provider.delay = 0.05
        first = asyncio.create_task(pipeline.scan_folder(folder))
        await asyncio.sleep(0)
        assert pipeline.is_scanning(folder.id)

        with pytest.raises(ScanAlreadyRunningError):
            await pipeline.scan_folder(folder)

        stats = await first
        assert stats.indexed == 1
        assert not pipeline.is_scanning(folder.id)

    @pytest.mark.asyncio
    async def test_distinct_folders_scan_concurrently(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        folder: IndexedFolder,
        project: Path,
        tmp_path: Path,
    ) -> None:
        other_root = tmp_path / "other"
        write_files(project, {"a.py": "a = 1\n"})
        write_files(other_root, {"b.py": "b = 1\n"})
        other = await metadata.add_folder(str(other_root))

        results = await asyncio.gather(pipeline.scan_folder(folder), pipeline.scan_folder(other))

        assert [r.indexed for r in results] == [1, 1]

    @pytest.mark.asyncio
    async def test_index_paths_waits_for_running_scan(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.py": "a = 1\n"})
        provider.delay = 0.05
        scan = asyncio.create_task(pipeline.scan_folder(folder))
        await asyncio.sleep(0)

        batch = await pipeline.index_paths(folder, [str(project / "a.py")])

        assert scan.done()
        assert (await scan).indexed == 1
        assert batch.skipped == 1

    @pytest.mark.asyncio
    async def test_remove_folder_cancels_scan(
        self,
        pipeline: IndexingPipeline,
        provider: FakeEmbedding,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {f"f{i}.py": f"value_{i} = {i}\n" for i in range(8)})
        provider.delay = 0.05
        scan = asyncio.create_task(pipeline.scan_folder(folder))
        await asyncio.sleep(0.01)

        removed = await pipeline.remove_folder(folder)
        stats = await scan

        assert stats.cancelled
        assert stats.indexed < 8
        assert removed == stats.indexed
        assert await metadata.get_folder(folder.id) is None
        assert len(vector_store) == 0


# =========================================================================
# Incremental updates
# =========================================================================


class TestIndexPaths:
    @pytest.mark.asyncio
    async def test_new_changed_and_deleted_files(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"keep.py": "keep = 1\n", "edit.py": "edit = 1\n", "drop.py": "drop = 1\n"})
        await pipeline.scan_folder(folder)

        write_files(project, {"new.py": "new = 1\n", "edit.py": "edit = 2\n"})
        (project / "drop.py").unlink()
        stats = await pipeline.index_paths(
            folder,
            [str(project / "new.py"), str(project / "edit.py"), str(project / "drop.py"), str(project / "keep.py")],
        )

        assert (stats.indexed, stats.updated, stats.deleted, stats.skipped) == (1, 1, 1, 1)
        assert stats.total_files == 3
        refreshed = await metadata.get_folder(folder.id)
        assert refreshed is not None
        assert refreshed.file_count == 3
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_new_directory_is_walked(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        await pipeline.scan_folder(folder)
        write_files(project, {"pkg/a.py": "a = 1\n", "pkg/sub/b.go": "package sub\n", "pkg/node_modules/x.js": "x\n"})

        stats = await pipeline.index_paths(folder, [str(project / "pkg")])

        assert stats.indexed == 2
        rel = sorted(r.relative_path for r in await metadata.list_files(folder.id))
        assert rel == ["pkg/a.py", "pkg/sub/b.go"]

    @pytest.mark.asyncio
    async def test_deleted_directory_removes_everything_beneath(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"pkg/a.py": "a = 1\n", "pkg/b.py": "b = 1\n", "pkgx/c.py": "c = 1\n"})
        await pipeline.scan_folder(folder)

        for name in ("a.py", "b.py"):
            (project / "pkg" / name).unlink()
        (project / "pkg").rmdir()
        stats = await pipeline.index_paths(folder, [str(project / "pkg")])

        assert stats.deleted == 2
        assert [r.relative_path for r in await metadata.list_files(folder.id)] == ["pkgx/c.py"]
        await _assert_consistent(metadata, vector_store, folder)

    @pytest.mark.asyncio
    async def test_file_no_longer_eligible_is_removed(
        self,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        provider: FakeEmbedding,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        from codeindex.scanner import Scanner

        pipeline = IndexingPipeline(metadata, vector_store, provider, scanner=Scanner(max_file_size=50))
        write_files(project, {"a.py": "a = 1\n"})
        await pipeline.scan_folder(folder)

        (project / "a.py").write_text("a = 1\n" * 20)
        stats = await pipeline.index_paths(folder, [str(project / "a.py")])

        assert stats.deleted == 1
        assert await metadata.list_files(folder.id) == []
        assert len(vector_store) == 0

    @pytest.mark.asyncio
    async def test_paths_outside_folder_are_ignored(
        self,
        pipeline: IndexingPipeline,
        folder: IndexedFolder,
        project: Path,
        tmp_path: Path,
    ) -> None:
        write_files(tmp_path, {"elsewhere.py": "x = 1\n"})
        stats = await pipeline.index_paths(folder, [str(tmp_path / "elsewhere.py"), str(project)])
        assert (stats.indexed, stats.deleted, stats.failed) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_removed_folder_drops_batch(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        folder: IndexedFolder,
        project: Path,
    ) -> None:
        write_files(project, {"a.py": "a = 1\n"})
        await pipeline.remove_folder(folder)

        stats = await pipeline.index_paths(folder, [str(project / "a.py")])

        assert stats.indexed == 0
        assert await metadata.list_files(folder.id) == []


# =========================================================================
# Removal
# =========================================================================


class TestRemoveFolder:
    @pytest.mark.asyncio
    async def test_cascade_leaves_other_folders(
        self,
        pipeline: IndexingPipeline,
        metadata: MetadataStore,
        vector_store: LocalVectorStore,
        folder: IndexedFolder,
        project: Path,
        tmp_path: Path,
    ) -> None:
        other_root = tmp_path / "other"
        write_files(project, {"a.py": "a = 1\n", "b.py": "b = 1\n"})
        write_files(other_root, {"c.py": "c = 1\n"})
        other = await metadata.add_folder(str(other_root))
        await pipeline.scan_folder(folder)
        await pipeline.scan_folder(other)

        removed = await pipeline.remove_folder(folder)

        assert removed == 2
        assert await vector_store.count(eq("folder_id", folder.id)) == 0
        assert await vector_store.count(eq("folder_id", other.id)) == 1
        assert await metadata.count_chunks(folder.id) == 0
        await _assert_consistent(metadata, vector_store, other)
