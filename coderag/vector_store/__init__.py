"""
Vector store abstractions and factories.
"""

from coderag.config import Settings
from coderag.errors import ConfigError
from coderag.vector_store.base import (
    Document,
    DocumentWithEmbedding,
    SearchOptions,
    SearchResult,
    VectorStore,
)
from coderag.vector_store.json_store import JsonVectorStore, cosine_similarity


def get_vector_store(settings: Settings) -> JsonVectorStore:
    """
    Factory to obtain configured VectorStore instance.
    Currently supports only the flat-file JSON backend.
    """
    backend = settings.vector_store_backend.lower()
    if backend == "json":
        return JsonVectorStore(
            path=settings.vector_store_path,
            collection_name=settings.collection_name,
            embedding_dimension=settings.embedding_dimension,
        )
    raise ConfigError(f"Unsupported vector store backend: {backend}")


__all__ = [
    "get_vector_store",
    "JsonVectorStore",
    "cosine_similarity",
    "Document",
    "DocumentWithEmbedding",
    "SearchOptions",
    "SearchResult",
    "VectorStore",
]
