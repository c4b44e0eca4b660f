"""Scanner — walks a folder and fingerprints every eligible source file."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import posixpath
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from codeindex.scanner.languages import (
    detect_language,
    is_binary_extension,
    is_ignored_dir,
    is_ignored_path,
    looks_binary,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class ScannedFile:
    """An eligible file found on disk.

    Attributes:
        path: Absolute path as recorded in metadata (host view).
        local_path: Where this process reads the file (after path mapping).
        relative_path: Posix path relative to the folder root.
        language: Language detected from the extension.
        content_hash: SHA-256 hex digest of the full file bytes.
        size: Size in bytes.
        modified_at: Last modification time (UTC).
    """

    path: str
    local_path: str
    relative_path: str
    language: str
    content_hash: str
    size: int
    modified_at: datetime


@dataclass
class ScanReport:
    """Outcome of walking one folder."""

    files: list[ScannedFile] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)
    skipped: int = 0


@dataclass(frozen=True, slots=True)
class FileContent:
    """Decoded text of a file, hashed from the exact bytes it was decoded from."""

    text: str
    content_hash: str
    size: int


class Scanner:
    """Finds indexable files beneath a folder.

    Files are eligible when their extension is in the language map, no
    directory component is ignored, they are no larger than *max_file_size*,
    and they do not look binary.  Unreadable files are logged and reported
    separately; they never abort a walk.

    Disk work runs in a worker thread via :func:`asyncio.to_thread`.
    """

    def __init__(
        self,
        *,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        extra_ignore_dirs: frozenset[str] | set[str] = frozenset(),
    ) -> None:
        self.max_file_size = max_file_size
        self.extra_ignore_dirs = frozenset(extra_ignore_dirs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def scan(self, local_root: str, host_root: str) -> ScanReport:
        """Walk *local_root* and return every eligible file, keyed by host path."""
        return await asyncio.to_thread(self._scan_sync, local_root, host_root)

    async def scan_file(self, local_path: str, local_root: str, host_root: str) -> ScannedFile | None:
        """Fingerprint a single file. Returns ``None`` if it is not eligible.

        Raises ``OSError`` if the file exists but cannot be read.
        """
        return await asyncio.to_thread(self._scan_file_sync, local_path, local_root, host_root)

    async def read(self, local_path: str) -> FileContent:
        """Read and decode a file, hashing the same bytes that were decoded."""
        return await asyncio.to_thread(self._read_sync, local_path)

    def is_eligible_path(self, relative_path: str) -> bool:
        """Cheap name-only check, used to filter watcher events."""
        return (
            detect_language(relative_path) is not None
            and not is_binary_extension(relative_path)
            and not is_ignored_path(relative_path, self.extra_ignore_dirs)
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _scan_sync(self, local_root: str, host_root: str) -> ScanReport:
        report = ScanReport()

        def _on_walk_error(err: OSError) -> None:
            logger.warning("Cannot read directory %s: %s", err.filename, err)
            if err.filename:
                report.unreadable.append(self._host_path(str(err.filename), local_root, host_root))

        for dirpath, dirnames, filenames in os.walk(local_root, onerror=_on_walk_error):
            dirnames[:] = sorted(d for d in dirnames if not is_ignored_dir(d, self.extra_ignore_dirs))
            for name in sorted(filenames):
                local_path = os.path.join(dirpath, name)
                try:
                    scanned = self._scan_file_sync(local_path, local_root, host_root)
                except OSError as e:
                    logger.warning("Skipping unreadable file %s: %s", local_path, e)
                    report.unreadable.append(self._host_path(local_path, local_root, host_root))
                    continue
                if scanned is None:
                    report.skipped += 1
                    continue
                report.files.append(scanned)

        logger.debug(
            "Scanned %s: %d eligible, %d skipped, %d unreadable",
            local_root,
            len(report.files),
            report.skipped,
            len(report.unreadable),
        )
        return report

    def _scan_file_sync(self, local_path: str, local_root: str, host_root: str) -> ScannedFile | None:
        relative = Path(local_path).relative_to(local_root).as_posix()
        if not self.is_eligible_path(relative):
            return None

        path = Path(local_path)
        if path.is_symlink() or not path.is_file():
            return None
        stat = path.stat()
        if stat.st_size > self.max_file_size:
            logger.debug("Skipping %s: %d bytes exceeds limit", local_path, stat.st_size)
            return None

        digest = hashlib.sha256()
        with path.open("rb") as f:
            head = f.read(64 * 1024)
            if looks_binary(head):
                return None
            digest.update(head)
            for block in iter(lambda: f.read(64 * 1024), b""):
                digest.update(block)

        return ScannedFile(
            path=self._host_path(local_path, local_root, host_root),
            local_path=local_path,
            relative_path=relative,
            language=detect_language(relative) or "",
            content_hash=digest.hexdigest(),
            size=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
        )

    @staticmethod
    def _read_sync(local_path: str) -> FileContent:
        data = Path(local_path).read_bytes()
        return FileContent(
            text=data.decode("utf-8", errors="replace"),
            content_hash=hashlib.sha256(data).hexdigest(),
            size=len(data),
        )

    @staticmethod
    def _host_path(local_path: str, local_root: str, host_root: str) -> str:
        relative = Path(local_path).relative_to(local_root).as_posix()
        if relative == ".":
            return host_root
        return posixpath.join(host_root, relative)
