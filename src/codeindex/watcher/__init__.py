"""Filesystem watcher — debounced, incremental index updates."""

from codeindex.watcher._watcher import DEFAULT_DEBOUNCE_SECONDS, FolderWatcher

__all__ = ["DEFAULT_DEBOUNCE_SECONDS", "FolderWatcher"]
