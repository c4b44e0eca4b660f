"""CodeIndexTools — the ``code_index_*`` agent tools returning JSON-able dicts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:
    from langchain_core.tools import BaseTool

    from codeindex._codeindex_async import CodeIndexAsync
    from codeindex.types import FolderInfo


# ------------------------------------------------------------------
# Descriptions shared by the dict tools and their LangChain wrappers
# ------------------------------------------------------------------

_DESCRIPTIONS: dict[str, str] = {
    "code_index_add_folder": (
        "Register a folder for semantic code indexing. The path must be "
        "absolute. Registering the same folder twice returns the existing "
        "registration. Run code_index_scan afterwards to index its files."
    ),
    "code_index_remove_folder": (
        "Unregister a folder and delete everything indexed beneath it."
    ),
    "code_index_scan": (
        "Scan a registered folder now: new and changed files are embedded, "
        "deleted files are removed from the index and unchanged files are "
        "skipped. Returns per-outcome file counts."
    ),
    "code_index_search": (
        "Search indexed code by meaning, not just text pattern. For example, "
        "'retry with backoff' finds code that retries failed requests even if "
        "it never uses those words. Use retrieve='full' to get whole files "
        "instead of the matching chunk."
    ),
    "code_index_status": (
        "List indexed folders with their status, file counts and last scan "
        "time, plus index totals and whether the watcher is running."
    ),
}


def _error(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


def _folder_dict(folder: FolderInfo) -> dict[str, Any]:
    return {
        "folderPath": folder.path,
        "fileCount": folder.file_count,
        "enabled": folder.enabled,
        "status": folder.status,
        "lastScan": folder.last_scan_at.isoformat() if folder.last_scan_at else None,
        "error": folder.error_message,
    }


class CodeIndexTools:
    """Agent-facing tool functions over a :class:`CodeIndexAsync`.

    Parameter names are camelCase because they are the tool contract seen by
    the calling agent.  Every result carries ``success``; failures add
    ``error`` with a readable message.

    Usage::

        tools = CodeIndexTools(index)
        await tools.code_index_search("where are sessions created", limit=5)
    """

    def __init__(self, index: CodeIndexAsync) -> None:
        self.index = index

    async def code_index_add_folder(
        self,
        folderPath: Annotated[str, "Absolute path of the folder to index"],  # noqa: N803
        description: Annotated[str | None, "Optional note about what the folder contains"] = None,
    ) -> dict[str, Any]:
        result = await self.index.add_folder(folderPath, description)
        if not result.success or result.folder is None:
            return _error(result.message)
        return {
            "success": True,
            "folderPath": result.folder.path,
            "folderId": result.folder.id,
            "status": result.folder.status,
            "alreadyRegistered": result.already_registered,
            "message": result.message,
        }

    async def code_index_remove_folder(
        self,
        folderPath: Annotated[str, "Absolute path of a registered folder"],  # noqa: N803
    ) -> dict[str, Any]:
        result = await self.index.remove_folder(folderPath)
        if not result.success:
            return _error(result.message)
        return {
            "success": True,
            "folderPath": result.folder_path,
            "filesRemoved": result.files_removed,
            "message": result.message,
        }

    async def code_index_scan(
        self,
        folderPath: Annotated[str, "Absolute path of a registered folder"],  # noqa: N803
    ) -> dict[str, Any]:
        result = await self.index.scan(folderPath)
        if not result.success:
            response = _error(result.message)
            if result.in_progress:
                response["inProgress"] = True
            return response
        response = {
            "success": True,
            "folderPath": result.folder_path,
            "filesIndexed": result.indexed,
            "filesUpdated": result.updated,
            "filesSkipped": result.skipped,
            "filesDeleted": result.deleted,
            "filesFailed": result.failed,
            "totalFiles": result.total_files,
            "message": result.message,
        }
        if result.errors:
            response["errors"] = result.errors
        if result.unreadable:
            response["unreadable"] = result.unreadable
        return response

    async def code_index_search(
        self,
        query: Annotated[str, "Natural language description of the code you are looking for"],
        limit: Annotated[int, "Maximum number of results (1-50)"] = 10,
        folderPath: Annotated[str | None, "Only search this registered folder"] = None,  # noqa: N803
        retrieve: Annotated[str, "'chunk' for the matching lines, 'full' for whole files"] = "chunk",
    ) -> dict[str, Any]:
        result = await self.index.search(query, limit=limit, folder_path=folderPath, retrieve=retrieve)
        if not result.success:
            return _error(result.message)
        return {
            "success": True,
            "query": result.query,
            "retrieveMode": result.retrieve,
            "count": len(result.hits),
            "results": [
                {
                    "filePath": hit.file_path,
                    "relativePath": hit.relative_path,
                    "folderPath": hit.folder_path,
                    "language": hit.language,
                    "score": hit.score,
                    "startLine": hit.start_line,
                    "endLine": hit.end_line,
                    "content": hit.content,
                    "fullFileRetrieved": hit.full_file,
                }
                for hit in result.hits
            ],
        }

    async def code_index_status(self) -> dict[str, Any]:
        result = await self.index.status()
        if not result.success:
            return _error(result.message)
        return {
            "success": True,
            "folders": [_folder_dict(folder) for folder in result.folders],
            "totalFolders": result.total_folders,
            "totalFiles": result.total_files,
            "totalSize": result.total_size,
            "watcherRunning": result.watcher_running,
        }

    # ------------------------------------------------------------------
    # LangChain
    # ------------------------------------------------------------------

    def as_langchain_tools(self) -> list[BaseTool]:
        """Wrap every tool as a LangChain ``StructuredTool`` (requires ``langchain-core``)."""
        try:
            from langchain_core.tools import StructuredTool
        except ImportError as e:
            msg = "langchain-core is required for as_langchain_tools(). Install with: pip install codeindex[langchain]"
            raise ImportError(msg) from e

        return [
            StructuredTool.from_function(
                coroutine=getattr(self, name),
                name=name,
                description=description,
            )
            for name, description in _DESCRIPTIONS.items()
        ]

    def definitions(self) -> list[dict[str, str]]:
        """Name and description of every tool."""
        return [{"name": name, "description": description} for name, description in _DESCRIPTIONS.items()]
