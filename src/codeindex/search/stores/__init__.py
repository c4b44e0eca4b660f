"""Vector store backends."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from codeindex.exceptions import ConfigError
from codeindex.search.stores.local import LocalVectorStore
from codeindex.search.stores.qdrant import QdrantVectorStore

if TYPE_CHECKING:
    from codeindex.config import VectorStoreCfg
    from codeindex.search.protocols import VectorStore


def create_vector_store(cfg: VectorStoreCfg, *, data_dir: str | Path | None = None) -> VectorStore:
    """Build the store named by ``cfg.backend``.

    The local backend persists under ``<data_dir>/vectors/<collection>``.
    """
    if cfg.backend == "qdrant":
        return QdrantVectorStore(
            url=cfg.url,
            collection=cfg.collection,
            api_key=cfg.api_key,
            timeout=cfg.timeout,
        )
    if cfg.backend == "local":
        directory = None
        if data_dir is not None:
            directory = Path(data_dir) / "vectors" / cfg.collection
        return LocalVectorStore(collection=cfg.collection, directory=directory)

    msg = f"Unknown vector store backend {cfg.backend!r}"
    raise ConfigError(msg)


__all__ = ["LocalVectorStore", "QdrantVectorStore", "create_vector_store"]
