"""
Vector store interface and shared types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

DEFAULT_SEARCH_LIMIT = 10

MetadataFilter = Dict[str, Any]


@dataclass(frozen=True)
class Document:
    id: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def file_path(self) -> str | None:
        return self.metadata.get("filePath")


@dataclass(frozen=True)
class DocumentWithEmbedding(Document):
    embedding: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class SearchResult:
    document: Document
    score: float


@dataclass
class SearchOptions:
    limit: int = DEFAULT_SEARCH_LIMIT
    min_score: Optional[float] = None
    filter: Optional[MetadataFilter] = None


@dataclass(frozen=True)
class CollectionMetadata:
    embedding_dimension: int
    created: str
    version: str

    def to_json(self) -> Dict[str, Any]:
        return {"embeddingDimension": self.embedding_dimension, "created": self.created, "version": self.version}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CollectionMetadata":
        return cls(
            embedding_dimension=int(data["embeddingDimension"]),
            created=str(data.get("created", "")),
            version=str(data.get("version", "")),
        )


class VectorStore(Protocol):
    async def initialize(self) -> None:
        ...

    async def add_documents(self, documents: List[DocumentWithEmbedding]) -> None:
        ...

    async def similarity_search(
        self, query_vector: List[float], options: SearchOptions | None = None
    ) -> List[SearchResult]:
        ...

    async def delete_documents(self, filter: MetadataFilter) -> int:
        ...

    async def get_document_count(self) -> int:
        ...

    async def close(self) -> None:
        ...


__all__ = [
    "Document",
    "DocumentWithEmbedding",
    "SearchResult",
    "SearchOptions",
    "CollectionMetadata",
    "MetadataFilter",
    "VectorStore",
    "DEFAULT_SEARCH_LIMIT",
]
