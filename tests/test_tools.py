"""Tests for CodeIndexTools — the code_index_* tool contract."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from codeindex.tools import CodeIndexTools

from tests.conftest import write_files

if TYPE_CHECKING:
    from pathlib import Path

    from codeindex import CodeIndexAsync


@pytest.fixture
def tools(index: CodeIndexAsync) -> CodeIndexTools:
    return CodeIndexTools(index)


# =========================================================================
# Folder tools
# =========================================================================


class TestFolderTools:
    @pytest.mark.asyncio
    async def test_add_folder(self, tools: CodeIndexTools, project: Path) -> None:
        result = await tools.code_index_add_folder(str(project), "demo")

        assert result["success"] is True
        assert result["folderPath"] == str(project)
        assert result["status"] == "pending"
        assert result["alreadyRegistered"] is False
        assert result["folderId"]

        again = await tools.code_index_add_folder(str(project))
        assert again["alreadyRegistered"] is True
        assert again["folderId"] == result["folderId"]

    @pytest.mark.asyncio
    async def test_add_folder_error(self, tools: CodeIndexTools) -> None:
        result = await tools.code_index_add_folder("not/absolute")
        assert result == {"success": False, "error": "Folder path must be absolute: not/absolute"}

    @pytest.mark.asyncio
    async def test_scan(self, tools: CodeIndexTools, project: Path) -> None:
        write_files(project, {"a.py": "a = 1\n", "b.go": "package b\n", "notes.txt": "skip\n"})
        await tools.code_index_add_folder(str(project))

        result = await tools.code_index_scan(str(project))

        assert result["success"] is True
        assert result["filesIndexed"] == 2
        assert result["filesUpdated"] == 0
        assert result["filesSkipped"] == 0
        assert result["filesDeleted"] == 0
        assert result["filesFailed"] == 0
        assert result["totalFiles"] == 2
        assert "errors" not in result

    @pytest.mark.asyncio
    async def test_scan_reports_errors(self, tools: CodeIndexTools, provider, project: Path) -> None:
        write_files(project, {"a.py": "explode = 1\n"})
        await tools.code_index_add_folder(str(project))
        provider.fail_on = {"explode"}

        result = await tools.code_index_scan(str(project))

        assert result["filesFailed"] == 1
        assert len(result["errors"]) == 1

    @pytest.mark.asyncio
    async def test_scan_reports_unreadable_files(
        self, tools: CodeIndexTools, index: CodeIndexAsync, project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write_files(project, {"a.py": "a = 1\n", "locked.py": "locked = 1\n"})
        await tools.code_index_add_folder(str(project))
        scanner = index.pipeline.scanner
        scan_file = scanner._scan_file_sync
        locked = str(project / "locked.py")

        def deny_locked(local_path: str, local_root: str, host_root: str):
            if local_path == locked:
                raise PermissionError(13, "Permission denied", local_path)
            return scan_file(local_path, local_root, host_root)

        monkeypatch.setattr(scanner, "_scan_file_sync", deny_locked)

        result = await tools.code_index_scan(str(project))

        assert result["success"] is True
        assert result["filesIndexed"] == 1
        assert result["unreadable"] == [locked]
        assert "1 unreadable" in result["message"]

    @pytest.mark.asyncio
    async def test_scan_unregistered(self, tools: CodeIndexTools, project: Path) -> None:
        result = await tools.code_index_scan(str(project))
        assert result["success"] is False
        assert "not registered" in result["error"]
        assert "inProgress" not in result

    @pytest.mark.asyncio
    async def test_remove_folder(self, tools: CodeIndexTools, project: Path) -> None:
        write_files(project, {"a.py": "a = 1\n"})
        await tools.code_index_add_folder(str(project))
        await tools.code_index_scan(str(project))

        result = await tools.code_index_remove_folder(str(project))

        assert result["success"] is True
        assert result["filesRemoved"] == 1
        assert result["folderPath"] == str(project)


# =========================================================================
# Search and status tools
# =========================================================================


class TestSearchAndStatusTools:
    @pytest.mark.asyncio
    async def test_search_result_shape(self, tools: CodeIndexTools, project: Path) -> None:
        write_files(project, {"auth.py": "def login(user, password):\n    return check(user, password)\n"})
        await tools.code_index_add_folder(str(project))
        await tools.code_index_scan(str(project))

        result = await tools.code_index_search("login user password", limit=3)

        assert result["success"] is True
        assert result["query"] == "login user password"
        assert result["retrieveMode"] == "chunk"
        assert result["count"] == 1
        (hit,) = result["results"]
        assert set(hit) == {
            "filePath",
            "relativePath",
            "folderPath",
            "language",
            "score",
            "startLine",
            "endLine",
            "content",
            "fullFileRetrieved",
        }
        assert hit["relativePath"] == "auth.py"
        assert hit["startLine"] == 1
        assert hit["endLine"] == 2
        assert hit["fullFileRetrieved"] is False

    @pytest.mark.asyncio
    async def test_search_full_mode(self, tools: CodeIndexTools, project: Path) -> None:
        write_files(project, {"a.py": "alpha = 1\n"})
        await tools.code_index_add_folder(str(project))
        await tools.code_index_scan(str(project))

        result = await tools.code_index_search("alpha", retrieve="full", folderPath=str(project))

        assert result["retrieveMode"] == "full"
        assert result["results"][0]["fullFileRetrieved"] is True
        assert result["results"][0]["content"] == "alpha = 1\n"

    @pytest.mark.asyncio
    async def test_search_error(self, tools: CodeIndexTools) -> None:
        result = await tools.code_index_search("")
        assert result["success"] is False
        assert "error" in result

    @pytest.mark.asyncio
    async def test_status(self, tools: CodeIndexTools, project: Path) -> None:
        write_files(project, {"a.py": "a = 1\n"})
        await tools.code_index_add_folder(str(project))
        await tools.code_index_scan(str(project))

        result = await tools.code_index_status()

        assert result["success"] is True
        assert result["totalFolders"] == 1
        assert result["totalFiles"] == 1
        assert result["totalSize"] == 6
        assert result["watcherRunning"] is False
        (folder,) = result["folders"]
        assert folder["folderPath"] == str(project)
        assert folder["fileCount"] == 1
        assert folder["enabled"] is True
        assert folder["status"] == "active"
        assert folder["lastScan"] is not None
        assert folder["error"] is None


# =========================================================================
# Definitions and LangChain
# =========================================================================


class TestDefinitions:
    def test_definitions(self, tools: CodeIndexTools) -> None:
        names = [d["name"] for d in tools.definitions()]
        assert names == [
            "code_index_add_folder",
            "code_index_remove_folder",
            "code_index_scan",
            "code_index_search",
            "code_index_status",
        ]
        assert all(d["description"] for d in tools.definitions())

    @pytest.mark.asyncio
    async def test_langchain_tools(self, tools: CodeIndexTools, project: Path) -> None:
        pytest.importorskip("langchain_core")

        lc_tools = {t.name: t for t in tools.as_langchain_tools()}

        assert set(lc_tools) == {d["name"] for d in tools.definitions()}
        search_args = lc_tools["code_index_search"].args
        assert {"query", "limit", "folderPath", "retrieve"} <= set(search_args)

        result = await lc_tools["code_index_add_folder"].ainvoke({"folderPath": str(project)})
        assert result["success"] is True
