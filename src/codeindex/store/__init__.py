"""Metadata store — folders, files and chunks in SQL."""

from codeindex.store.metadata import IndexStats, MetadataStore

__all__ = ["IndexStats", "MetadataStore"]
