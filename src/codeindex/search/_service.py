"""SearchService — embeds a query and assembles chunk or full-file hits."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from codeindex.exceptions import EmbeddingError
from codeindex.search.filters import eq
from codeindex.search.types import SearchHit

if TYPE_CHECKING:
    from codeindex.search.protocols import EmbeddingProvider, VectorStore
    from codeindex.search.types import VectorSearchResult
    from codeindex.store import MetadataStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
RETRIEVE_MODES = ("chunk", "full")


async def embed_text(provider: EmbeddingProvider, text: str, *, timeout: float) -> list[float]:
    """Embed *text*, turning a timeout into :class:`EmbeddingError`."""
    try:
        return await asyncio.wait_for(provider.embed(text), timeout)
    except TimeoutError as e:
        msg = f"Embedding with {provider.model_name} timed out after {timeout:g}s"
        raise EmbeddingError(msg) from e


async def embed_texts(provider: EmbeddingProvider, texts: list[str], *, timeout: float) -> list[list[float]]:
    """Embed *texts* with one ``embed_batch`` call, allowing *timeout* per text."""
    budget = timeout * max(1, len(texts))
    try:
        vectors = await asyncio.wait_for(provider.embed_batch(texts), budget)
    except TimeoutError as e:
        msg = f"Embedding {len(texts)} texts with {provider.model_name} timed out after {budget:g}s"
        raise EmbeddingError(msg) from e
    if len(vectors) != len(texts):
        msg = f"{provider.model_name} returned {len(vectors)} vectors for {len(texts)} texts"
        raise EmbeddingError(msg)
    return vectors


def clamp_limit(limit: int | None) -> int:
    """Clamp a requested result count into ``1..MAX_LIMIT``."""
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(int(limit), MAX_LIMIT))


class SearchService:
    """Semantic search over the code index.

    ``chunk`` mode renders hits straight from the point payload.  ``full``
    mode rebuilds each hit's file from its chunk rows in the metadata store
    and falls back to the chunk text when that is not possible.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore,
        metadata: MetadataStore,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._provider = provider
        self._store = store
        self._metadata = metadata
        self._timeout = timeout

    async def search(
        self,
        query: str,
        *,
        limit: int | None = DEFAULT_LIMIT,
        folder_path: str | None = None,
        retrieve: str = "chunk",
    ) -> list[SearchHit]:
        """Return up to *limit* hits for *query*, best first.

        Raises:
            ValueError: Empty query or unknown *retrieve* mode.
            EmbeddingError: The query could not be embedded.
            VectorStoreError: The vector store search failed.
        """
        if not query or not query.strip():
            msg = "Query must not be empty"
            raise ValueError(msg)
        if retrieve not in RETRIEVE_MODES:
            msg = f"retrieve must be one of {', '.join(RETRIEVE_MODES)}, got {retrieve!r}"
            raise ValueError(msg)

        vector = await embed_text(self._provider, query, timeout=self._timeout)
        results = await self._store.search(
            vector,
            k=clamp_limit(limit),
            filter=eq("folder_path", folder_path) if folder_path else None,
        )

        full_texts: dict[str, str | None] = {}
        hits: list[SearchHit] = []
        for result in results:
            hit = self._to_hit(result)
            if retrieve == "full":
                file_id = str(result.payload.get("file_id", ""))
                if file_id not in full_texts:
                    full_texts[file_id] = await self._reconstruct(file_id)
                full_text = full_texts[file_id]
                if full_text is not None:
                    hit = dataclasses.replace(hit, content=full_text, full_file=True)
            hits.append(hit)

        logger.debug("Search %r returned %d hits (%s)", query, len(hits), retrieve)
        return hits

    async def _reconstruct(self, file_id: str) -> str | None:
        """Concatenate all chunks of *file_id* in order, or ``None`` on failure."""
        if not file_id:
            return None
        try:
            chunks = await self._metadata.list_chunks(file_id)
        except SQLAlchemyError:
            logger.warning("Could not load chunks for file %s; returning chunk text", file_id, exc_info=True)
            return None
        if not chunks:
            logger.warning("No chunk records for file %s; index may need a rescan", file_id)
            return None
        return "".join(chunk.content for chunk in chunks)

    @staticmethod
    def _to_hit(result: VectorSearchResult) -> SearchHit:
        payload = result.payload
        return SearchHit(
            file_path=str(payload.get("file_path", "")),
            relative_path=str(payload.get("relative_path", "")),
            folder_path=str(payload.get("folder_path", "")),
            language=str(payload.get("language", "")),
            score=result.score,
            chunk_num=int(payload.get("chunk_num", 0)),
            start_line=int(payload.get("start_line", 0)),
            end_line=int(payload.get("end_line", 0)),
            content=str(payload.get("content", "")),
        )
