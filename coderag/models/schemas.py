from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

from coderag.rag.pipeline import RAGResponse
from coderag.vector_store.base import SearchResult


# Admin
class ReindexRequest(BaseModel):
    """Request to rebuild the workspace index."""

    mode: Literal["full"] = Field(default="full", description="Reindex mode")


class ReindexResponse(BaseModel):
    """Outcome of a reindex request."""

    status: Literal["completed", "already_in_progress", "cancelled", "disposed"]
    files_total: int = Field(0, ge=0)
    files_indexed: int = Field(0, ge=0)
    files_skipped: int = Field(0, ge=0)
    indexed_chunks: int = Field(0, ge=0, description="How many chunks were indexed")
    elapsed_sec: float | None = Field(None, ge=0, description="How long the run took")


class IndexStatusResponse(BaseModel):
    indexing: bool
    document_count: int = Field(..., ge=0)
    embedding_dimension: int | None = None
    created: str | None = None


# RAG
class AskRequest(BaseModel):
    """Question about the indexed workspace."""

    question: str = Field(..., min_length=1, description="User question")
    max_results: int | None = Field(default=None, gt=0, description="Override number of context chunks")
    min_score: float | None = Field(default=None, ge=0.0, le=1.0)
    filter: Dict[str, Any] | None = None
    system_prompt: str | None = None
    force_rag_only_mode: bool = False


class ContextChunk(BaseModel):
    chunk_id: str
    text: str
    metadata: Dict[str, Any]
    score: float

    @classmethod
    def from_result(cls, result: SearchResult) -> "ContextChunk":
        doc = result.document
        return cls(chunk_id=doc.id, text=doc.text, metadata=dict(doc.metadata), score=result.score)


class AskResponse(BaseModel):
    answer: str
    rag_only: bool
    stage: str
    model: str | None = None
    usage: Dict[str, int] | None = None
    context_chunks: List[ContextChunk]

    @classmethod
    def from_rag(cls, response: RAGResponse) -> "AskResponse":
        return cls(
            answer=response.content,
            rag_only=response.rag_only,
            stage=response.stage.value,
            model=response.model,
            usage=response.usage,
            context_chunks=[ContextChunk.from_result(r) for r in response.sources],
        )


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=10, gt=0)
    min_score: float | None = Field(default=None, ge=0.0, le=1.0)
    filter: Dict[str, Any] | None = None


class SearchResponse(BaseModel):
    results: List[ContextChunk]


__all__ = [
    "ReindexRequest",
    "ReindexResponse",
    "IndexStatusResponse",
    "AskRequest",
    "AskResponse",
    "ContextChunk",
    "SearchRequest",
    "SearchResponse",
]
