"""Chunkers — split file text into line-bounded, boundary-aligned chunks."""

from __future__ import annotations

import posixpath

from codeindex.scanner.chunking._base import (
    DEFAULT_MAX_CHARS,
    DEFAULT_MAX_LINES,
    Chunk,
    Chunker,
    split_keepends,
    split_lines,
)
from codeindex.scanner.chunking.lines import LineChunker
from codeindex.scanner.chunking.python import PythonChunker


class ChunkerRegistry:
    """Maps file extensions to chunkers, falling back to :class:`LineChunker`."""

    def __init__(
        self,
        *,
        max_lines: int = DEFAULT_MAX_LINES,
        max_chars: int = DEFAULT_MAX_CHARS,
    ) -> None:
        self.max_lines = max_lines
        self.max_chars = max_chars
        self._default: Chunker = LineChunker()
        self._ext_map: dict[str, Chunker] = {}
        self.register(PythonChunker())

    def register(self, chunker: Chunker) -> None:
        """Register a chunker for each of its extensions."""
        for ext in chunker.extensions:
            self._ext_map[ext.lower()] = chunker

    def get(self, path: str) -> Chunker:
        """Look up a chunker by file path extension (case-insensitive)."""
        ext = posixpath.splitext(path)[1].lower()
        return self._ext_map.get(ext, self._default)

    def chunk_text(self, path: str, text: str) -> list[Chunk]:
        """Split *text* of the file at *path* into chunks.

        Deterministic for a given text and limits.  Concatenating the chunk
        contents in order reproduces *text* exactly.
        """
        lines = split_keepends(text)
        boundaries = self.get(path).boundaries(path, lines)
        return split_lines(lines, boundaries, max_lines=self.max_lines, max_chars=self.max_chars)


__all__ = [
    "DEFAULT_MAX_CHARS",
    "DEFAULT_MAX_LINES",
    "Chunk",
    "Chunker",
    "ChunkerRegistry",
    "LineChunker",
    "PythonChunker",
    "split_keepends",
    "split_lines",
]
