"""Indexing pipeline — scan, chunk, embed and write both stores."""

from codeindex.indexing._pipeline import DEFAULT_MAX_CONCURRENCY, IndexingPipeline, ScanStats

__all__ = ["DEFAULT_MAX_CONCURRENCY", "IndexingPipeline", "ScanStats"]
