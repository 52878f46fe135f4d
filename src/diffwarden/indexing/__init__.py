"""
Repository indexing.

Files are filtered, split into overlapping chunks, embedded and stored in a
vector collection per repository branch.
"""

from .chunker import TextChunker
from .embeddings import Embedder, OllamaEmbedder
from .file_filter import FileFilter, detect_language
from .indexer import PayloadIndexCache, RepositoryIndexer, iter_local_files, repository_namespace
from .models import (
    Chunk,
    IndexingStats,
    PayloadFilter,
    ScoredPoint,
    SourceFile,
    VectorPoint,
    make_chunk_id,
    namespace_for,
)
from .store import InMemoryVectorStore, QdrantVectorStore, VectorStore, create_vector_store

__all__ = [
    "Chunk",
    "Embedder",
    "FileFilter",
    "InMemoryVectorStore",
    "IndexingStats",
    "OllamaEmbedder",
    "PayloadFilter",
    "PayloadIndexCache",
    "QdrantVectorStore",
    "RepositoryIndexer",
    "ScoredPoint",
    "SourceFile",
    "TextChunker",
    "VectorPoint",
    "VectorStore",
    "create_vector_store",
    "detect_language",
    "iter_local_files",
    "make_chunk_id",
    "namespace_for",
    "repository_namespace",
]
