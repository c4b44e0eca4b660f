"""Shared fixtures for codeindex tests."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
from typing import TYPE_CHECKING

import pytest

from codeindex.config import CodeIndexConfig, WatcherCfg
from codeindex.exceptions import EmbeddingError
from codeindex.indexing import IndexingPipeline
from codeindex.search.stores.local import LocalVectorStore
from codeindex.store import MetadataStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from codeindex._codeindex_async import CodeIndexAsync

FAKE_DIM = 64

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# =========================================================================
# Fake embedding provider
# =========================================================================


class FakeEmbedding:
    """Deterministic bag-of-words embedding.

    Each lowercase token is hashed into one of *dim* buckets, so texts that
    share words have a high cosine similarity.  Records every embedded text
    and the size of every batch, and raises ``EmbeddingError`` for texts
    containing any marker in ``fail_on``.
    """

    def __init__(self, dim: int = FAKE_DIM) -> None:
        self._dim = dim
        self.calls: list[str] = []
        self.batches: list[int] = []
        self.fail_on: set[str] = set()
        self.delay: float = 0.0

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        for marker in self.fail_on:
            if marker in text:
                msg = f"fake failure on {marker!r}"
                raise EmbeddingError(msg)
        return self.vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(len(texts))
        return [await self.embed(t) for t in texts]

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self._dim
        for token in _TOKEN_RE.findall(text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self._dim  # noqa: S324
            vec[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0:
            vec[0] = 1.0
            return vec
        return [v / norm for v in vec]

    @property
    def dimensions(self) -> int:
        return self._dim

    @property
    def model_name(self) -> str:
        return "fake-bow"


# =========================================================================
# Helpers
# =========================================================================


def write_files(root: Path, files: dict[str, str]) -> None:
    """Create *files* (relative path → content) beneath *root*."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def provider() -> FakeEmbedding:
    return FakeEmbedding()


@pytest.fixture
async def metadata(tmp_path: Path) -> AsyncIterator[MetadataStore]:
    """Metadata store on a temp-dir SQLite database."""
    store = MetadataStore(data_dir=tmp_path / "data")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def vector_store() -> LocalVectorStore:
    """In-process vector store sized for :class:`FakeEmbedding`."""
    store = LocalVectorStore()
    await store.ensure_collection(FAKE_DIM)
    return store


@pytest.fixture
def pipeline(
    metadata: MetadataStore,
    vector_store: LocalVectorStore,
    provider: FakeEmbedding,
) -> IndexingPipeline:
    return IndexingPipeline(metadata, vector_store, provider)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "proj"
    root.mkdir()
    return root


@pytest.fixture
async def index(tmp_path: Path, provider: FakeEmbedding) -> AsyncIterator[CodeIndexAsync]:
    """Opened CodeIndexAsync on temp SQLite + local vectors, watcher off."""
    from codeindex._codeindex_async import CodeIndexAsync

    config = CodeIndexConfig(watcher=WatcherCfg(enabled=False))
    ci = CodeIndexAsync(
        config,
        metadata_store=MetadataStore(data_dir=tmp_path / "index-data"),
        vector_store=LocalVectorStore(),
        embedding_provider=provider,
    )
    await ci.open()
    yield ci
    await ci.close()
