"""Custom exception hierarchy for codeindex."""


class CodeIndexError(Exception):
    """Base exception for all codeindex errors."""


class ConfigError(CodeIndexError, ValueError):
    """Raised when configuration is missing, invalid, or forbidden."""


class DimensionMismatchError(ConfigError):
    """Raised when a collection exists with a different vector size than the provider's."""

    def __init__(self, collection: str, expected: int, actual: int) -> None:
        self.collection = collection
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Collection {collection!r} has vector size {actual}, "
            f"but the embedding provider produces {expected}. "
            "Use a different collection or the matching embedding model."
        )


class FolderNotFoundError(CodeIndexError):
    """Raised when a folder path is not registered or does not exist on disk."""


class FolderExistsError(CodeIndexError):
    """Raised when registering a folder path that is already registered."""


class InvalidPathError(CodeIndexError):
    """Raised when a path is relative, a system root, or otherwise unsafe to index."""


class ScanAlreadyRunningError(CodeIndexError):
    """Raised when a scan is requested for a folder that is already scanning."""


class EmbeddingError(CodeIndexError):
    """Raised when the embedding provider fails, times out, or returns bad data."""


class VectorStoreError(CodeIndexError):
    """Raised on vector store failures (unreachable, timeout, rejected write)."""

