"""Embedding providers — one backend chosen by configuration at construction time."""

from __future__ import annotations

from typing import TYPE_CHECKING

from codeindex.exceptions import ConfigError
from codeindex.search.providers.ollama import OllamaEmbedding
from codeindex.search.providers.openai import OpenAIEmbedding

if TYPE_CHECKING:
    from codeindex.config import EmbeddingCfg
    from codeindex.search.protocols import EmbeddingProvider


def create_embedding_provider(cfg: EmbeddingCfg) -> EmbeddingProvider:
    """Build the provider named by ``cfg.backend``."""
    if cfg.backend == "ollama":
        return OllamaEmbedding(
            model=cfg.model or "nomic-embed-text",
            base_url=cfg.base_url,
            dimensions=cfg.dimensions,
            timeout=cfg.timeout,
        )
    if cfg.backend == "openai":
        return OpenAIEmbedding(
            model=cfg.model or "text-embedding-3-small",
            dimensions=cfg.dimensions,
            base_url=cfg.base_url,
            timeout=cfg.timeout,
            batch_size=cfg.batch_size,
        )
    if cfg.backend == "sentence-transformers":
        from codeindex.search.providers.sentence_transformers import (
            SentenceTransformerEmbedding,
        )

        return SentenceTransformerEmbedding(cfg.model or "all-MiniLM-L6-v2")

    msg = f"Unknown embedding backend {cfg.backend!r}"
    raise ConfigError(msg)


__all__ = [
    "OllamaEmbedding",
    "OpenAIEmbedding",
    "create_embedding_provider",
]
