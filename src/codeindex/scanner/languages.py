"""Language detection, ignore rules and binary detection for scanned files."""

from __future__ import annotations

import posixpath
from pathlib import Path

# =============================================================================
# Supported extensions → language
# =============================================================================

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    # Programming languages
    ".go": "go",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript", ".cjs": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".c": "c", ".h": "c",
    ".cpp": "cpp", ".cc": "cpp", ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".rs": "rust",
    ".swift": "swift",
    ".kt": "kotlin",
    ".m": "objective-c",
    ".scala": "scala",
    ".r": "r",
    ".sql": "sql",
    ".sh": "shell", ".bash": "shell",
    # Data/Config
    ".yaml": "yaml", ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".xml": "xml",
    # Web
    ".html": "html",
    ".css": "css", ".scss": "scss", ".less": "less",
    ".vue": "vue",
    # Documentation
    ".md": "markdown",
}

# =============================================================================
# Ignore rules
# =============================================================================

IGNORED_DIRS: frozenset[str] = frozenset({
    ".git", "node_modules", "vendor", "dist", "build", "out", ".next",
    ".vscode", ".idea", "__pycache__", ".venv", "venv", ".tox",
    ".mypy_cache", ".pytest_cache", ".ruff_cache",
})

# Binary file extensions that should never be read
BINARY_EXTENSIONS: frozenset[str] = frozenset({
    ".zip", ".tar", ".gz", ".exe", ".dll", ".so", ".class", ".jar", ".war",
    ".7z", ".bin", ".dat", ".obj", ".o", ".a", ".lib", ".wasm", ".pyc", ".pyo",
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff",
    ".pdf", ".ttf", ".otf", ".woff", ".woff2", ".eot",
})

_BINARY_SNIFF_BYTES = 4096


# =============================================================================
# Helpers
# =============================================================================


def detect_language(path: str) -> str | None:
    """Return the language for *path* by extension, or ``None`` if unsupported."""
    ext = posixpath.splitext(path)[1].lower()
    return LANGUAGE_BY_EXTENSION.get(ext)


def is_ignored_dir(name: str, extra: frozenset[str] = frozenset()) -> bool:
    """Whether a directory named *name* should be skipped during a walk."""
    return name in IGNORED_DIRS or name in extra


def is_ignored_path(relative_path: str, extra: frozenset[str] = frozenset()) -> bool:
    """Whether any directory component of *relative_path* is ignored."""
    parts = Path(relative_path).parts[:-1]
    return any(is_ignored_dir(part, extra) for part in parts)


def looks_binary(data: bytes) -> bool:
    """Check a content sample for binary indicators (null bytes, control chars)."""
    sample = data[:_BINARY_SNIFF_BYTES]
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    non_printable = sum(1 for byte in sample if byte < 9 or (13 < byte < 32))
    return (non_printable / len(sample)) > 0.3


def is_binary_extension(path: str) -> bool:
    return posixpath.splitext(path)[1].lower() in BINARY_EXTENSIONS
