"""Search layer — embedding providers, vector stores and the search service."""

from codeindex.search._service import SearchService
from codeindex.search.protocols import EmbeddingProvider, VectorStore
from codeindex.search.stores import LocalVectorStore, QdrantVectorStore
from codeindex.search.types import SearchHit, VectorPoint, VectorSearchResult, point_id

__all__ = [
    "EmbeddingProvider",
    "LocalVectorStore",
    "QdrantVectorStore",
    "SearchHit",
    "SearchService",
    "VectorPoint",
    "VectorSearchResult",
    "VectorStore",
    "point_id",
]
