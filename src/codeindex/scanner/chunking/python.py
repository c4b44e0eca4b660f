"""PythonChunker — stdlib ast-based boundaries."""

from __future__ import annotations

import ast
import logging
import re

from codeindex.scanner.chunking.lines import LineChunker

logger = logging.getLogger(__name__)

# ast also breaks lines on a lone CR; line numbers here count LF only
_BARE_CR = re.compile(r"\r(?!\n)")


class PythonChunker:
    """Starts chunks at top-level statements and at statements in class bodies.

    Decorators and the comment block directly above a definition stay with
    it.  Source that does not parse falls back to :class:`LineChunker`.
    """

    def __init__(self) -> None:
        self._fallback = LineChunker()

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset({".py", ".pyi"})

    def boundaries(self, path: str, lines: list[str]) -> list[int]:
        source = "".join(lines)
        if not source.strip():
            return []
        try:
            tree = ast.parse(_BARE_CR.sub(" ", source), filename=path)
        except (SyntaxError, ValueError):
            logger.debug("Could not parse %s; using line boundaries", path)
            return self._fallback.boundaries(path, lines)

        starts: set[int] = set()
        self._visit_body(tree.body, lines, starts)
        return sorted(s for s in starts if 1 < s <= len(lines))

    def _visit_body(self, body: list[ast.stmt], lines: list[str], starts: set[int]) -> None:
        for node in body:
            starts.add(self._start_line(node, lines))
            if isinstance(node, ast.ClassDef):
                self._visit_body(node.body, lines, starts)

    @staticmethod
    def _start_line(node: ast.stmt, lines: list[str]) -> int:
        line = node.lineno
        decorators = getattr(node, "decorator_list", None)
        if decorators:
            line = min(line, *(d.lineno for d in decorators))
        # Pull attached comments along with the definition
        while line > 1 and lines[line - 2].lstrip().startswith("#"):
            line -= 1
        return line
