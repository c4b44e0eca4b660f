"""LocalVectorStore — in-process usearch HNSW vector store."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

import numpy as np
from usearch.index import Index

from codeindex.exceptions import DimensionMismatchError
from codeindex.search.filters import FilterExpression, matches
from codeindex.search.types import DeleteResult, UpsertResult, VectorPoint, VectorSearchResult

logger = logging.getLogger(__name__)

_INDEX_FILE = "vectors.usearch"
_META_FILE = "vectors_meta.json"


class LocalVectorStore:
    """In-process vector store backed by a usearch HNSW index.

    Implements the ``VectorStore`` protocol for local development and
    tests.  Payload filters are evaluated in Python with
    :func:`~codeindex.search.filters.matches`.

    With *directory* set, the index is loaded on :meth:`connect` and written
    back after every upsert or delete, so it survives restarts alongside a
    persistent metadata store.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(
        self,
        *,
        collection: str = "code_index",
        dimension: int | None = None,
        directory: str | Path | None = None,
    ) -> None:
        self._collection = collection
        self._dimension = dimension
        self._directory = Path(directory) if directory is not None else None
        self._lock = threading.Lock()
        self._index: Index | None = None
        self._next_key: int = 0

        # key → (point id, payload)
        self._key_to_point: dict[int, tuple[str, dict[str, Any]]] = {}
        # point id → usearch key
        self._id_to_key: dict[str, int] = {}

        if dimension is not None:
            self._index = self._new_index(dimension)

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def ensure_collection(self, dimension: int) -> None:
        """Create the index on first use; reject a different dimension later."""
        if self._dimension is None:
            self._dimension = dimension
            self._index = self._new_index(dimension)
            return
        if self._dimension != dimension:
            raise DimensionMismatchError(self._collection, expected=dimension, actual=self._dimension)

    async def upsert(self, points: list[VectorPoint]) -> UpsertResult:
        """Insert or overwrite points by id."""
        index = self._require_index()
        for point in points:
            if len(point.vector) != self._dimension:
                raise DimensionMismatchError(
                    self._collection, expected=len(point.vector), actual=self._dimension or 0
                )
            if point.id in self._id_to_key:
                self._remove_by_id(point.id)

            key = self._next_key
            self._next_key += 1
            with self._lock:
                index.add(key, np.array(point.vector, dtype=np.float32))
            self._key_to_point[key] = (point.id, dict(point.payload))
            self._id_to_key[point.id] = key

        self._persist()
        return UpsertResult(upserted_count=len(points))

    async def search(
        self,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[VectorSearchResult]:
        """Search for the *k* nearest points."""
        index = self._require_index()
        if len(self) == 0:
            return []

        # Filtered searches scan every candidate so matches are never cut off
        effective_k = len(self) if filter is not None else min(k, len(self))
        with self._lock:
            found = index.search(np.array(vector, dtype=np.float32), effective_k)

        results: list[VectorSearchResult] = []
        for match_key, distance in zip(found.keys.tolist(), found.distances.tolist(), strict=True):
            entry = self._key_to_point.get(int(match_key))
            if entry is None:
                continue
            point_id, payload = entry
            if filter is not None and not matches(filter, payload):
                continue
            results.append(VectorSearchResult(id=point_id, score=1.0 - float(distance), payload=dict(payload)))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:k]

    async def delete_by_filter(self, filter: FilterExpression) -> DeleteResult:  # noqa: A002
        """Delete every point whose payload matches *filter*."""
        doomed = [pid for pid, payload in self._key_to_point.values() if matches(filter, payload)]
        for point_id in doomed:
            self._remove_by_id(point_id)
        if doomed:
            self._persist()
        return DeleteResult(deleted_count=len(doomed))

    async def count(self, filter: FilterExpression | None = None) -> int:  # noqa: A002
        if filter is None:
            return len(self)
        return sum(1 for _, payload in self._key_to_point.values() if matches(filter, payload))

    async def connect(self) -> None:
        """Load a previously persisted index, if any."""
        if self._directory is not None and (self._directory / _META_FILE).exists():
            self._load()

    async def close(self) -> None:
        """Persist the index if a directory is configured."""
        self._persist()

    @property
    def collection_name(self) -> str:
        """Return the collection name."""
        return self._collection

    # ------------------------------------------------------------------
    # Local-specific methods
    # ------------------------------------------------------------------

    def has(self, point_id: str) -> bool:
        """Return whether *point_id* is present in the store."""
        return point_id in self._id_to_key

    def payload(self, point_id: str) -> dict[str, Any] | None:
        key = self._id_to_key.get(point_id)
        if key is None:
            return None
        return dict(self._key_to_point[key][1])

    def __len__(self) -> int:
        """Return the number of stored points."""
        return len(self._key_to_point)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self._directory is None or self._index is None:
            return
        self._directory.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._index.save(str(self._directory / _INDEX_FILE))

        sidecar: dict[str, Any] = {
            "collection": self._collection,
            "dimension": self._dimension,
            "next_key": self._next_key,
            "points": {str(k): {"id": pid, "payload": payload} for k, (pid, payload) in self._key_to_point.items()},
        }
        with (self._directory / _META_FILE).open("w") as f:
            json.dump(sidecar, f)

    def _load(self) -> None:
        assert self._directory is not None
        with (self._directory / _META_FILE).open() as f:
            sidecar = json.load(f)

        dimension = int(sidecar["dimension"])
        if self._dimension is not None and self._dimension != dimension:
            raise DimensionMismatchError(self._collection, expected=self._dimension, actual=dimension)

        self._dimension = dimension
        self._index = self._new_index(dimension)
        with self._lock:
            self._index.load(str(self._directory / _INDEX_FILE))

        self._next_key = sidecar["next_key"]
        self._key_to_point = {}
        self._id_to_key = {}
        for k_str, entry in sidecar.get("points", {}).items():
            key = int(k_str)
            self._key_to_point[key] = (entry["id"], entry["payload"])
            self._id_to_key[entry["id"]] = key
        logger.debug("Loaded %d points from %s", len(self), self._directory)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _new_index(dimension: int) -> Index:
        return Index(ndim=dimension, metric="cos", dtype="f32")

    def _require_index(self) -> Index:
        if self._index is None:
            msg = "Collection not initialised. Call ensure_collection() first."
            raise RuntimeError(msg)
        return self._index

    def _remove_by_id(self, point_id: str) -> bool:
        """Remove a single point by id. Returns True if found."""
        key = self._id_to_key.pop(point_id, None)
        if key is None:
            return False
        self._key_to_point.pop(key, None)
        if self._index is not None:
            with self._lock:
                self._index.remove(key)
        return True
