"""Scanner — eligible-file discovery, fingerprinting and chunking."""

from codeindex.scanner._scanner import (
    DEFAULT_MAX_FILE_SIZE,
    FileContent,
    ScannedFile,
    Scanner,
    ScanReport,
)
from codeindex.scanner.chunking import Chunk, ChunkerRegistry
from codeindex.scanner.languages import LANGUAGE_BY_EXTENSION, IGNORED_DIRS, detect_language

__all__ = [
    "DEFAULT_MAX_FILE_SIZE",
    "IGNORED_DIRS",
    "LANGUAGE_BY_EXTENSION",
    "Chunk",
    "ChunkerRegistry",
    "FileContent",
    "ScanReport",
    "ScannedFile",
    "Scanner",
    "detect_language",
]
