"""QdrantVectorStore — Qdrant vector database backend."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client import models as qmodels
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from codeindex.exceptions import DimensionMismatchError, VectorStoreError
from codeindex.search.filters import FilterExpression, compile_qdrant
from codeindex.search.types import DeleteResult, UpsertResult, VectorPoint, VectorSearchResult

if TYPE_CHECKING:
    from collections.abc import Awaitable

logger = logging.getLogger(__name__)

_UPSERT_BATCH_SIZE = 256

# Payload keys used by cascading deletes and folder-scoped search
_INDEXED_PAYLOAD_KEYS = ("file_id", "folder_id", "folder_path")

_TRANSPORT_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.HTTPError, OSError)


class QdrantVectorStore:
    """Qdrant collection accessed through ``AsyncQdrantClient``.

    Collections use cosine distance.  Every write waits for the server to
    apply it (``wait=True``) so a successful return means the points are
    durable.  Client errors and timeouts are raised as
    :class:`~codeindex.exceptions.VectorStoreError`.

    Usage::

        store = QdrantVectorStore(url="http://localhost:6333", collection="code_index")
        await store.connect()
        await store.ensure_collection(768)
        await store.upsert([VectorPoint(id=..., vector=[...], payload={...})])
        await store.close()
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        collection: str = "code_index",
        api_key: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._url = url or os.environ.get("QDRANT_URL", "http://localhost:6333")
        self._collection = collection
        self._api_key = api_key or os.environ.get("QDRANT_API_KEY") or None
        self._timeout = timeout
        self._client: Any = None

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def ensure_collection(self, dimension: int) -> None:
        """Create the collection if missing; verify the vector size if present."""
        client = self._require_client()
        exists = await self._call("check collection", client.collection_exists(self._collection))
        if exists:
            info = await self._call("describe collection", client.get_collection(self._collection))
            actual = self._vector_size(info)
            if actual is not None and actual != dimension:
                raise DimensionMismatchError(self._collection, expected=dimension, actual=actual)
            logger.debug("Collection %s exists with %s dimensions", self._collection, actual)
            return

        await self._call(
            "create collection",
            client.create_collection(
                collection_name=self._collection,
                vectors_config=qmodels.VectorParams(size=dimension, distance=qmodels.Distance.COSINE),
            ),
        )
        for key in _INDEXED_PAYLOAD_KEYS:
            await self._call(
                "create payload index",
                client.create_payload_index(
                    collection_name=self._collection,
                    field_name=key,
                    field_schema=qmodels.PayloadSchemaType.KEYWORD,
                ),
            )
        logger.info("Created collection %s (%d dimensions, cosine)", self._collection, dimension)

    async def upsert(self, points: list[VectorPoint]) -> UpsertResult:
        """Batch upsert points. Chunks at 256 points per request."""
        client = self._require_client()
        total = 0
        for i in range(0, len(points), _UPSERT_BATCH_SIZE):
            batch = points[i : i + _UPSERT_BATCH_SIZE]
            structs = [qmodels.PointStruct(id=p.id, vector=p.vector, payload=p.payload) for p in batch]
            await self._call(
                "upsert points",
                client.upsert(collection_name=self._collection, points=structs, wait=True),
            )
            total += len(batch)
        return UpsertResult(upserted_count=total)

    async def search(
        self,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[VectorSearchResult]:
        """Query the collection for nearest points."""
        client = self._require_client()
        response = await self._call(
            "search",
            client.query_points(
                collection_name=self._collection,
                query=vector,
                limit=k,
                query_filter=compile_qdrant(filter) if filter is not None else None,
                with_payload=True,
            ),
        )
        return [
            VectorSearchResult(
                id=str(point.id),
                score=float(point.score),
                payload=dict(point.payload) if point.payload else {},
            )
            for point in response.points
        ]

    async def delete_by_filter(self, filter: FilterExpression) -> DeleteResult:  # noqa: A002
        """Delete all points matching *filter*."""
        client = self._require_client()
        await self._call(
            "delete points",
            client.delete(
                collection_name=self._collection,
                points_selector=qmodels.FilterSelector(filter=compile_qdrant(filter)),
                wait=True,
            ),
        )
        # Qdrant does not report how many points a filtered delete removed
        return DeleteResult(deleted_count=None)

    async def count(self, filter: FilterExpression | None = None) -> int:  # noqa: A002
        """Exact count of points, optionally restricted by *filter*."""
        client = self._require_client()
        result = await self._call(
            "count points",
            client.count(
                collection_name=self._collection,
                count_filter=compile_qdrant(filter) if filter is not None else None,
                exact=True,
            ),
        )
        return int(result.count)

    async def connect(self) -> None:
        """Create the async client."""
        if self._client is None:
            self._client = AsyncQdrantClient(
                url=self._url,
                api_key=self._api_key,
                timeout=int(self._timeout),
            )

    async def close(self) -> None:
        """Close the async client."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def collection_name(self) -> str:
        """Return the collection name."""
        return self._collection

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_client(self) -> Any:
        """Return the client, raising if not connected."""
        if self._client is None:
            msg = "Not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    async def _call(self, action: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except _TRANSPORT_ERRORS as e:
            msg = f"Qdrant failed to {action} on {self._collection!r} at {self._url}: {e}"
            raise VectorStoreError(msg) from e

    @staticmethod
    def _vector_size(info: Any) -> int | None:
        vectors = info.config.params.vectors
        if isinstance(vectors, dict):
            if not vectors:
                return None
            vectors = next(iter(vectors.values()))
        return getattr(vectors, "size", None)
