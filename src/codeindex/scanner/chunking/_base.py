"""Chunker protocol, the Chunk value type and the shared line splitter."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

DEFAULT_MAX_LINES = 200
DEFAULT_MAX_CHARS = 8000


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous line range of one file's text.

    Attributes:
        chunk_num: 0-based position of the chunk within its file.
        start_line: First line (1-indexed, inclusive).
        end_line: Last line (1-indexed, inclusive).
        content: The exact text of those lines, line endings included.
    """

    chunk_num: int
    start_line: int
    end_line: int
    content: str


@runtime_checkable
class Chunker(Protocol):
    """Protocol for language-aware chunkers.

    A chunker only proposes *preferred* chunk start lines.  Sizing, hard cuts
    and the contiguous partition are handled by :func:`split_lines`, so every
    chunker yields chunks that concatenate back to the original text.
    """

    @property
    def extensions(self) -> frozenset[str]:
        """File extensions this chunker handles (e.g. ``{".py"}``)."""
        ...

    def boundaries(self, path: str, lines: list[str]) -> list[int]:
        """Return sorted 1-indexed line numbers where a new chunk may start."""
        ...


def split_lines(
    lines: list[str],
    boundaries: list[int],
    *,
    max_lines: int = DEFAULT_MAX_LINES,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> list[Chunk]:
    """Partition *lines* into chunks bounded by *max_lines* and *max_chars*.

    Each chunk is grown as far as the limits allow and then cut at the last
    preferred boundary inside that window.  Without one, it is cut at the
    limit.  A single line longer than *max_chars* becomes its own chunk.
    An empty file yields one empty chunk.
    """
    if max_lines < 1:
        msg = f"max_lines must be >= 1, got {max_lines}"
        raise ValueError(msg)
    if not lines:
        return [Chunk(chunk_num=0, start_line=1, end_line=1, content="")]

    total = len(lines)
    chunks: list[Chunk] = []
    start = 1
    while start <= total:
        limit = start
        size = len(lines[start - 1])
        while (
            limit < total
            and limit - start + 1 < max_lines
            and size + len(lines[limit]) <= max_chars
        ):
            size += len(lines[limit])
            limit += 1

        end = limit
        if limit < total:
            # Last boundary b with start < b <= limit + 1; the chunk ends at b - 1.
            idx = bisect.bisect_right(boundaries, limit + 1) - 1
            if idx >= 0 and boundaries[idx] > start:
                end = boundaries[idx] - 1

        chunks.append(
            Chunk(
                chunk_num=len(chunks),
                start_line=start,
                end_line=end,
                content="".join(lines[start - 1 : end]),
            )
        )
        start = end + 1
    return chunks


def split_keepends(text: str) -> list[str]:
    """Split *text* on ``\\n`` only, keeping line endings.

    Unlike :meth:`str.splitlines` this never breaks on form feeds or unicode
    separators, so line numbers agree with editors.
    """
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines
