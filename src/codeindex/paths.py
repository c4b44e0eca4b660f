"""Path utilities: host/local prefix mapping and index-path validation."""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from codeindex.exceptions import InvalidPathError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from codeindex.config import PathMappingCfg

logger = logging.getLogger(__name__)

# Never indexable, exactly or at any depth below
_PROTECTED_TREES: tuple[str, ...] = (
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/lib64",
    "/proc",
    "/sbin",
    "/sys",
)

# Never indexable themselves; subdirectories are allowed (temp dirs, /usr/local/src, ...)
_PROTECTED_ROOTS: frozenset[str] = frozenset(
    [
        "/",
        "/usr",
        "/var",
        "/tmp",
        "/var/tmp",
        "/private",
        "/System",
        "/Library",
        "/Applications",
        "/Volumes",
        "/cores",
    ]
)


def normalize_path(path: str) -> str:
    """Normalize an absolute path.

    - Resolves .. and . references
    - Removes double slashes
    - Removes trailing slash (except for root)

    Examples:
        normalize_path("/foo//bar") -> "/foo/bar"
        normalize_path("/foo/../bar/") -> "/bar"
    """
    path = posixpath.normpath(path.strip())
    # normpath keeps a leading "//" as POSIX allows
    if path.startswith("//"):
        path = "/" + path.lstrip("/")
    return path


def is_within(path: str, prefix: str) -> bool:
    """Return whether *path* equals *prefix* or lies below it.

    Matching respects path components: ``/srv/app`` is not within ``/srv/ap``.
    """
    if prefix == "/":
        return path.startswith("/")
    return path == prefix or path.startswith(prefix + "/")


def validate_index_path(path: str) -> str:
    """Validate a folder path for registration and return it normalized.

    Raises:
        InvalidPathError: The path is empty, relative, contains a null byte,
            or names a protected system location.
    """
    if not path or not path.strip():
        msg = "Folder path must not be empty"
        raise InvalidPathError(msg)
    if "\x00" in path:
        msg = f"Folder path contains a null byte: {path!r}"
        raise InvalidPathError(msg)
    if not path.strip().startswith("/"):
        msg = f"Folder path must be absolute: {path}"
        raise InvalidPathError(msg)

    clean = normalize_path(path)
    if clean in _PROTECTED_ROOTS:
        msg = f"Refusing to index system directory: {clean}"
        raise InvalidPathError(msg)
    for tree in _PROTECTED_TREES:
        if is_within(clean, tree):
            msg = f"Refusing to index system directory: {clean} (under {tree})"
            raise InvalidPathError(msg)
    return clean


class PathMapper:
    """Translates paths between the host's view and this process's view.

    Folders are registered and reported by host path; files are read
    through the local path (e.g. a bind mount inside a container).  Each
    mapping is a ``host_prefix -> local_prefix`` pair; the longest matching
    prefix wins in either direction.  With no mappings both translations
    are the identity.
    """

    def __init__(self, mappings: Iterable[tuple[str, str]] = ()) -> None:
        pairs: list[tuple[str, str]] = []
        for host, local in mappings:
            if not host or not local:
                logger.warning("Ignoring incomplete path mapping %r -> %r", host, local)
                continue
            pairs.append((normalize_path(host), normalize_path(local)))
        self._mappings = pairs
        if pairs:
            logger.info("Path mappings: %s", ", ".join(f"{host} -> {local}" for host, local in pairs))

    @classmethod
    def from_config(cls, mappings: Iterable[PathMappingCfg]) -> PathMapper:
        return cls((m.host, m.local) for m in mappings)

    @property
    def has_mappings(self) -> bool:
        return bool(self._mappings)

    @property
    def mappings(self) -> list[tuple[str, str]]:
        """The configured ``(host, local)`` pairs, normalized."""
        return list(self._mappings)

    def to_local(self, host_path: str) -> str:
        """Translate a host path into the path this process can read."""
        return self._translate(host_path, direction=0)

    def to_host(self, local_path: str) -> str:
        """Translate a locally observed path back to its host path."""
        return self._translate(local_path, direction=1)

    def is_mapped_local(self, local_path: str) -> bool:
        """Return whether *local_path* lies under a mapped local prefix."""
        clean = normalize_path(local_path)
        return any(is_within(clean, local) for _, local in self._mappings)

    def _translate(self, path: str, *, direction: int) -> str:
        if not self._mappings:
            return path
        clean = normalize_path(path)
        best: tuple[str, str] | None = None
        for pair in self._mappings:
            source = pair[direction]
            if is_within(clean, source) and (best is None or len(source) > len(best[0])):
                best = (source, pair[1 - direction])
        if best is None:
            return path
        source, target = best
        rest = clean[len(source) :].lstrip("/")
        return posixpath.join(target, rest) if rest else target
