from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from coderag.container import Services
from coderag.models.schemas import (
    AskRequest,
    AskResponse,
    ContextChunk,
    IndexStatusResponse,
    ReindexRequest,
    ReindexResponse,
    SearchRequest,
    SearchResponse,
)
from coderag.rag.pipeline import RAGOptions
from coderag.vector_store.base import SearchOptions

router = APIRouter()
logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _check_admin_token(services: Services, x_admin_token: str | None) -> None:
    admin_token = services.settings.admin_token
    if not admin_token:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin token is not configured",
        )
    if x_admin_token != admin_token.get_secret_value():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def _rag_options(request: AskRequest) -> RAGOptions:
    return RAGOptions(
        max_results=request.max_results,
        min_score=request.min_score,
        filter=request.filter,
        system_prompt=request.system_prompt,
        force_rag_only_mode=request.force_rag_only_mode,
    )


@router.post("/admin/reindex", response_model=ReindexResponse, summary="Reindex workspace")
async def admin_reindex(
    reindex_request: ReindexRequest,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
    services: Services = Depends(get_services),
) -> ReindexResponse:
    _check_admin_token(services, x_admin_token)
    logger.info("Admin reindex requested", extra={"mode": reindex_request.mode})

    summary = await services.indexing_service.index_workspace()
    response = ReindexResponse(
        status=summary.status,
        files_total=summary.files_total,
        files_indexed=summary.files_indexed,
        files_skipped=summary.files_skipped,
        indexed_chunks=summary.chunks_indexed,
        elapsed_sec=round(summary.elapsed_sec, 2),
    )
    logger.info(
        "Admin reindex finished",
        extra={"status": response.status, "indexed_chunks": response.indexed_chunks},
    )
    return response


@router.get("/api/v1/index/status", response_model=IndexStatusResponse, summary="Index status")
async def index_status(services: Services = Depends(get_services)) -> IndexStatusResponse:
    metadata = await services.vector_store.get_metadata()
    return IndexStatusResponse(
        indexing=services.indexing_service.is_indexing,
        document_count=await services.vector_store.get_document_count(),
        embedding_dimension=metadata.embedding_dimension if metadata else None,
        created=metadata.created if metadata else None,
    )


@router.post("/api/v1/search", response_model=SearchResponse, summary="Semantic search over indexed chunks")
async def search(request: SearchRequest, services: Services = Depends(get_services)) -> SearchResponse:
    vector = await services.embedding_service.embed_query(request.query)
    results = await services.vector_store.similarity_search(
        vector,
        SearchOptions(limit=request.limit, min_score=request.min_score, filter=request.filter),
    )
    return SearchResponse(results=[ContextChunk.from_result(r) for r in results])


@router.post("/api/v1/ask", response_model=AskResponse, summary="Ask a question about the workspace")
async def ask(request: AskRequest, services: Services = Depends(get_services)) -> AskResponse:
    question = (request.question or "").strip()
    if not question:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question must not be empty")

    logger.info("Ask request", extra={"len": len(question)})
    response = await services.orchestrator.query(question, _rag_options(request))
    return AskResponse.from_rag(response)


@router.post("/api/v1/ask/stream", summary="Stream an answer as NDJSON chunks")
async def ask_stream(request: AskRequest, services: Services = Depends(get_services)) -> StreamingResponse:
    question = (request.question or "").strip()
    if not question:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question must not be empty")

    async def lines() -> AsyncIterator[str]:
        async for chunk in services.orchestrator.astream_query(question, _rag_options(request)):
            yield json.dumps(asdict(chunk), ensure_ascii=False) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


__all__ = ["router", "get_services"]
