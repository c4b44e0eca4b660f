"""LineChunker — language-agnostic boundaries from blank lines and closing braces."""

from __future__ import annotations


class LineChunker:
    """Prefers to start chunks right after a blank line or a column-0 ``}``.

    In brace languages (Go, JS/TS, Java, C, Rust) a top-level ``}`` closes a
    declaration and blank lines separate declarations, so these boundaries
    usually fall between functions.  Used for every extension without a
    dedicated chunker.
    """

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset()

    def boundaries(self, path: str, lines: list[str]) -> list[int]:
        result: list[int] = []
        for i in range(1, len(lines)):
            previous = lines[i - 1]
            if not lines[i].strip():
                continue
            if not previous.strip() or previous.startswith("}"):
                result.append(i + 1)
        return result
