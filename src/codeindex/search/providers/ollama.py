"""OllamaEmbedding — async embedding provider backed by a local Ollama server."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from codeindex.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"

# Default dimensions per model when the user does not specify.
_MODEL_DEFAULTS: dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "snowflake-arctic-embed": 1024,
    "bge-m3": 1024,
}


class OllamaEmbedding:
    """Embedding provider for a locally hosted Ollama model server.

    Calls ``POST /api/embeddings`` with ``{"model", "prompt"}`` and reads
    ``{"embedding": [...]}``.  Every request is bounded by *timeout*;
    connection failures, timeouts, HTTP errors and malformed responses all
    raise :class:`~codeindex.exceptions.EmbeddingError`.

    Dimensions come from *dimensions*, the known-model table, or a probe
    embedding made by :meth:`connect`.

    Usage::

        provider = OllamaEmbedding(model="nomic-embed-text")
        await provider.connect()
        vector = await provider.embed("def main(): ...")
        await provider.close()
    """

    def __init__(
        self,
        *,
        model: str = "nomic-embed-text",
        base_url: str | None = None,
        dimensions: int | None = None,
        timeout: float = 30.0,
        connect_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._base_url = (base_url or os.environ.get("OLLAMA_URL") or DEFAULT_OLLAMA_URL).rstrip("/")
        self._dimensions = dimensions or _MODEL_DEFAULTS.get(model.split(":", 1)[0])
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string via the Ollama API."""
        data = await self._post("/api/embeddings", {"model": self._model, "prompt": text})
        vector = data.get("embedding")
        if not isinstance(vector, list) or not vector:
            msg = f"Ollama returned no embedding for model {self._model!r}"
            raise EmbeddingError(msg)
        if self._dimensions is not None and len(vector) != self._dimensions:
            msg = (
                f"Ollama model {self._model!r} returned {len(vector)} dimensions, "
                f"expected {self._dimensions}"
            )
            raise EmbeddingError(msg)
        return [float(x) for x in vector]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts, one request each."""
        return [await self.embed(text) for text in texts]

    @property
    def dimensions(self) -> int:
        """Return the embedding dimensionality."""
        if self._dimensions is not None:
            return self._dimensions
        msg = (
            f"Unknown dimensions for Ollama model {self._model!r}. "
            "Pass dimensions= or call connect() to detect them."
        )
        raise ValueError(msg)

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Check the server is reachable and detect dimensions if unknown."""
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Ollama is not reachable at {self._base_url}: {e}"
            raise EmbeddingError(msg) from e

        models = [m.get("name", "") for m in response.json().get("models", [])]
        if models and not any(name.split(":", 1)[0] == self._model.split(":", 1)[0] for name in models):
            logger.warning(
                "Model %s not listed by Ollama at %s (have: %s)",
                self._model,
                self._base_url,
                ", ".join(models),
            )

        if self._dimensions is None:
            probe = await self.embed("dimension probe")
            self._dimensions = len(probe)
            logger.info("Detected %d dimensions for Ollama model %s", self._dimensions, self._model)

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            msg = f"Ollama request to {path} timed out: {e}"
            raise EmbeddingError(msg) from e
        except httpx.HTTPStatusError as e:
            msg = f"Ollama returned HTTP {e.response.status_code} for {path}: {e.response.text}"
            raise EmbeddingError(msg) from e
        except (httpx.HTTPError, ValueError) as e:
            msg = f"Ollama request to {path} failed: {e}"
            raise EmbeddingError(msg) from e
