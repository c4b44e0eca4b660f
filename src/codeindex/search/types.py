"""Search layer data types — vector points, store results and search hits."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

# Namespace for deterministic point ids (file id + chunk number)
POINT_NAMESPACE = uuid.UUID("6f1c1a52-3d0e-4b8e-9a57-1f0c2d9e7b11")


def point_id(file_id: str, chunk_num: int) -> str:
    """Deterministic vector point id for chunk *chunk_num* of *file_id*."""
    return str(uuid.uuid5(POINT_NAMESPACE, f"{file_id}:{chunk_num}"))


# ------------------------------------------------------------------
# Vector data
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorPoint:
    """A vector with its id and payload, ready for storage.

    Attributes:
        id: Point id (see :func:`point_id`).
        vector: Embedding vector.
        payload: Chunk metadata stored alongside the vector, enough to
            render a search hit without touching the metadata store.
    """

    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorSearchResult:
    """A single result from a VectorStore search.

    Attributes:
        id: Identifier of the matched point.
        score: Similarity score (higher is more similar).
        payload: Payload stored with the point.
    """

    id: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Result of a vector upsert operation."""

    upserted_count: int


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Result of a vector delete operation.

    ``deleted_count`` is ``None`` when the store does not report it.
    """

    deleted_count: int | None = None


# ------------------------------------------------------------------
# User-facing search hit
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SearchHit:
    """One search result as returned by :class:`~codeindex.search.SearchService`.

    Attributes:
        file_path: Absolute path of the matched file.
        relative_path: Path relative to the owning folder.
        folder_path: The owning folder's path.
        language: Detected language.
        score: Cosine similarity, higher is more similar.
        chunk_num: Sequence number of the matching chunk.
        start_line: First line of the matching chunk.
        end_line: Last line of the matching chunk.
        content: Chunk text, or the whole file in ``full`` mode.
        full_file: Whether *content* is the reconstructed full file.
    """

    file_path: str
    relative_path: str
    folder_path: str
    language: str
    score: float
    chunk_num: int
    start_line: int
    end_line: int
    content: str
    full_file: bool = False
