"""Search layer protocols — async-first interfaces for embedding and vector storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from codeindex.search.filters import FilterExpression
    from codeindex.search.types import (
        DeleteResult,
        UpsertResult,
        VectorPoint,
        VectorSearchResult,
    )


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Async-first protocol for text-to-vector embedding.

    Implementations convert text into fixed-dimension float vectors
    suitable for similarity search.  Failures raise
    :class:`~codeindex.exceptions.EmbeddingError`.
    """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Async-first protocol for one vector store collection.

    ``ensure_collection`` must run before any read or write.  Writes are
    acknowledged only once durable in the store.  Failures raise
    :class:`~codeindex.exceptions.VectorStoreError`.
    """

    async def ensure_collection(self, dimension: int) -> None:
        """Create the collection if absent; verify its vector size otherwise."""
        ...

    async def upsert(self, points: list[VectorPoint]) -> UpsertResult:
        """Insert or overwrite points by id."""
        ...

    async def search(
        self,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[VectorSearchResult]:
        """Return the *k* nearest points, best first, with their payloads."""
        ...

    async def delete_by_filter(self, filter: FilterExpression) -> DeleteResult:  # noqa: A002
        """Delete every point whose payload matches *filter*."""
        ...

    async def count(self, filter: FilterExpression | None = None) -> int:  # noqa: A002
        """Count points, optionally restricted by *filter*."""
        ...

    async def connect(self) -> None:
        """Open connection / initialize resources."""
        ...

    async def close(self) -> None:
        """Release connection / clean up resources."""
        ...

    @property
    def collection_name(self) -> str:
        """Name of the underlying collection."""
        ...
