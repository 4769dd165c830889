"""
Exception hierarchy shared by the RAG components.
"""

from __future__ import annotations


class CodeRAGError(Exception):
    """Base exception for all coderag operations."""


class ConfigError(CodeRAGError):
    """Bad or missing settings. Fatal to the operation that needed them."""


class BackendUnavailableError(CodeRAGError):
    """An embedding or LLM backend could not be reached or failed to answer."""


class EmbeddingBackendError(BackendUnavailableError):
    """The embedding backend failed for a batch of texts."""


class MalformedEmbeddingError(EmbeddingBackendError):
    """The embedding backend answered, but with unusable vectors."""


class StoreIOError(CodeRAGError):
    """Disk read/write/parse failure in the vector store."""


class StoreInitError(StoreIOError):
    """The vector store could not be opened or created at its path."""


class DimensionMismatchError(CodeRAGError):
    """A vector does not have the collection's embedding dimension."""

    def __init__(self, expected: int, actual: int, context: str = "") -> None:
        self.expected = expected
        self.actual = actual
        message = f"Expected embedding dimension {expected}, got {actual}"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)


class RetrievalError(CodeRAGError):
    """Query-time embedding or search failure; the prompt cannot be grounded."""


__all__ = [
    "CodeRAGError",
    "ConfigError",
    "BackendUnavailableError",
    "EmbeddingBackendError",
    "MalformedEmbeddingError",
    "StoreIOError",
    "StoreInitError",
    "DimensionMismatchError",
    "RetrievalError",
]
