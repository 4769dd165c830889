"""
RAG pipeline: embed the query, retrieve context, assemble the prompt, generate.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from coderag.config import Settings
from coderag.embeddings.service import EmbeddingService
from coderag.errors import CodeRAGError, RetrievalError
from coderag.llm.client import ChatMessage, ChatOptions, LLMClient
from coderag.vector_store.base import MetadataFilter, SearchOptions, SearchResult, VectorStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI coding assistant. Use the following code context to provide accurate "
    "and helpful responses. When referencing code from the context, cite the file path. If no "
    "context is provided or the context is insufficient, acknowledge this and provide the best "
    "general guidance you can."
)
NO_CONTEXT_NOTE = (
    "Note: No relevant code context was found in the workspace for this query. "
    "Please provide a general response based on your knowledge."
)
EMPTY_QUERY_MESSAGE = "Please provide a query to search for relevant code."
NO_RELEVANT_CONTEXT_MESSAGE = """## No Relevant Code Found

I searched for code related to: **{query}**

No code snippets with sufficient relevance were found in the indexed codebase. This could be because:

1. The code you're looking for might not exist in the indexed files
2. The query terms might not match the terminology used in the code
3. The workspace might not be fully indexed

### Suggestions:
- Try using different search terms
- Make sure your workspace is indexed
- Check that the file you're looking for matches the indexing include patterns"""


class QueryStage(str, Enum):
    IDLE = "idle"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    PROMPT_ASSEMBLY = "prompt_assembly"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RAGOptions:
    max_results: Optional[int] = None
    min_score: Optional[float] = None
    filter: Optional[MetadataFilter] = None
    include_system_prompt: bool = True
    system_prompt: Optional[str] = None
    force_rag_only_mode: bool = False
    chat: Optional[ChatOptions] = None


@dataclass
class RAGResponse:
    content: str
    sources: List[SearchResult] = field(default_factory=list)
    rag_only: bool = False
    stage: QueryStage = QueryStage.COMPLETED
    model: Optional[str] = None
    usage: Optional[Dict[str, int]] = None


@dataclass(frozen=True)
class StreamChunk:
    content: str
    done: bool
    error: Optional[str] = None


ChunkCallback = Callable[[StreamChunk], Union[None, Awaitable[None]]]


class _QueryTrace:
    """Per-call state machine; nothing survives between queries."""

    def __init__(self, log: logging.Logger) -> None:
        self.request_id = uuid.uuid4().hex[:12]
        self.stage = QueryStage.IDLE
        self._log = log

    def advance(self, stage: QueryStage) -> None:
        self._log.debug(
            "RAG query stage",
            extra={"request_id": self.request_id, "from": self.stage.value, "to": stage.value},
        )
        self.stage = stage


class RAGOrchestrator:
    """Answers questions about the workspace from retrieved code context."""

    def __init__(
        self,
        settings: Settings,
        embedding_service: EmbeddingService,
        vector_store: VectorStore,
        llm_client: LLMClient,
        logger_: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.llm_client = llm_client
        self.logger = logger_ or logging.getLogger(__name__)

    # --- Public API ---
    async def query(self, text: str, options: RAGOptions | None = None) -> RAGResponse:
        options = options or RAGOptions()
        trace = _QueryTrace(self.logger)
        if not text.strip():
            trace.advance(QueryStage.COMPLETED)
            return RAGResponse(content=EMPTY_QUERY_MESSAGE)

        try:
            rag_only = await self.should_use_rag_only_mode(options)
            results = await self.retrieve(text, options, trace)

            trace.advance(QueryStage.PROMPT_ASSEMBLY)
            if rag_only:
                content = self.format_rag_only_response(text, results)
                trace.advance(QueryStage.COMPLETED)
                return RAGResponse(content=content, sources=results, rag_only=True, stage=trace.stage)

            messages = self.assemble_prompt(text, results, options)
            trace.advance(QueryStage.GENERATING)
            response = await self.llm_client.chat(messages, options.chat)
        except CodeRAGError:
            trace.advance(QueryStage.FAILED)
            self.logger.exception("RAG query failed", extra={"request_id": trace.request_id})
            raise

        trace.advance(QueryStage.COMPLETED)
        return RAGResponse(
            content=response.content,
            sources=results,
            stage=trace.stage,
            model=response.model,
            usage=response.usage,
        )

    async def astream_query(self, text: str, options: RAGOptions | None = None) -> AsyncIterator[StreamChunk]:
        """
        Yield accumulated answer content; the last chunk has ``done=True``.

        Failures never raise out of the iterator. They arrive as the terminal
        chunk with ``error`` set, because the consumer may already be showing
        partial output.
        """
        options = options or RAGOptions()
        trace = _QueryTrace(self.logger)
        if not text.strip():
            trace.advance(QueryStage.COMPLETED)
            yield StreamChunk(content=EMPTY_QUERY_MESSAGE, done=True)
            return

        try:
            rag_only = await self.should_use_rag_only_mode(options)
            results = await self.retrieve(text, options, trace)
        except Exception as exc:
            trace.advance(QueryStage.FAILED)
            self.logger.exception("RAG retrieval failed", extra={"request_id": trace.request_id})
            yield StreamChunk(content="", done=True, error=f"Error retrieving code context: {exc}")
            return

        trace.advance(QueryStage.PROMPT_ASSEMBLY)
        if rag_only:
            trace.advance(QueryStage.COMPLETED)
            yield StreamChunk(content=self.format_rag_only_response(text, results), done=True)
            return

        messages = self.assemble_prompt(text, results, options)
        trace.advance(QueryStage.GENERATING)
        accumulated = ""
        try:
            async for delta in self.llm_client.stream_chat(messages, options.chat):
                accumulated += delta
                yield StreamChunk(content=accumulated, done=False)
        except Exception as exc:
            trace.advance(QueryStage.FAILED)
            self.logger.exception("RAG generation failed", extra={"request_id": trace.request_id})
            yield StreamChunk(content=accumulated, done=True, error=f"Error streaming response: {exc}")
            return

        trace.advance(QueryStage.COMPLETED)
        yield StreamChunk(content=accumulated, done=True)

    async def stream_query(
        self, text: str, on_chunk: ChunkCallback, options: RAGOptions | None = None
    ) -> None:
        async for chunk in self.astream_query(text, options):
            maybe_awaitable = on_chunk(chunk)
            if maybe_awaitable is not None:
                await maybe_awaitable

    # --- Steps ---
    async def should_use_rag_only_mode(self, options: RAGOptions | None = None) -> bool:
        if options is not None and options.force_rag_only_mode:
            return True
        if self.settings.rag_only_mode_forced or self.settings.llm_provider == "none":
            return True
        if self.settings.rag_only_mode_enabled:
            available = await self.llm_client.is_available()
            if not available:
                self.logger.info("LLM unavailable, falling back to RAG-only mode")
            return not available
        return False

    async def retrieve(
        self, text: str, options: RAGOptions | None = None, trace: _QueryTrace | None = None
    ) -> List[SearchResult]:
        options = options or RAGOptions()
        trace = trace or _QueryTrace(self.logger)

        trace.advance(QueryStage.EMBEDDING)
        try:
            query_vector = await self.embedding_service.embed_query(text)
        except CodeRAGError as exc:
            raise RetrievalError(f"Failed to embed query: {exc}") from exc

        trace.advance(QueryStage.RETRIEVING)
        search_options = SearchOptions(
            limit=options.max_results or self.settings.result_limit,
            min_score=options.min_score if options.min_score is not None else self.settings.min_relevance_score,
            filter=options.filter,
        )
        try:
            results = await self.vector_store.similarity_search(query_vector, search_options)
        except CodeRAGError as exc:
            raise RetrievalError(f"Failed to search vector store: {exc}") from exc

        self.logger.info(
            "Retrieved chunks",
            extra={
                "request_id": trace.request_id,
                "returned": len(results),
                "top_score": round(results[0].score, 3) if results else None,
                "min_score": search_options.min_score,
            },
        )
        return results

    def assemble_prompt(
        self, text: str, results: Sequence[SearchResult], options: RAGOptions | None = None
    ) -> List[ChatMessage]:
        options = options or RAGOptions()
        messages: List[ChatMessage] = []
        if options.include_system_prompt:
            messages.append({"role": "system", "content": options.system_prompt or DEFAULT_SYSTEM_PROMPT})

        if not results:
            messages.append({"role": "system", "content": NO_CONTEXT_NOTE})
            messages.append({"role": "user", "content": text})
            return messages

        blocks = ["Here is relevant code from the workspace:"]
        for result in results:
            blocks.append(f"{_location(result)} [Relevance: {result.score:.2f}]\n{_fenced(result)}")
        blocks.append("-----")
        blocks.append(f"User query: {text}")
        messages.append({"role": "user", "content": "\n\n".join(blocks)})
        return messages

    def format_rag_only_response(self, text: str, results: Sequence[SearchResult]) -> str:
        if not results:
            return NO_RELEVANT_CONTEXT_MESSAGE.format(query=text)

        if self.settings.llm_provider == "none" or self.settings.rag_only_mode_forced:
            header = "RAG-Only mode is active."
        else:
            header = "No LLM available."
        lines = [
            f"{header} Showing relevant codebase context for your query: **{text}**",
            "",
            "The following code snippets were found based on semantic similarity to your query. "
            "They are ranked by relevance score (higher is better).",
            "",
            "### Summary of Results",
            "",
        ]
        for idx, result in enumerate(results, start=1):
            name = PurePath(result.document.metadata.get("filePath") or result.document.id).name
            lines.append(f"{idx}. **{name}** - Relevance: {result.score:.2f}")

        lines.extend(["", "### Detailed Results", ""])
        for result in results:
            lines.append(f"#### {_location(result)}")
            lines.append(f"Relevance Score: {result.score:.2f}")
            lines.append("")
            lines.append(_fenced(result))
            lines.append("")
            lines.append("---")
            lines.append("")
        lines.append("**Note:** To get AI-powered explanations of this code, configure an LLM provider.")
        return "\n".join(lines)


def _location(result: SearchResult) -> str:
    meta = result.document.metadata
    location = f"File: {meta.get('filePath', result.document.id)}"
    if meta.get("startLine"):
        location += f" (Lines {meta.get('startLine')}-{meta.get('endLine')})"
    return location


def _fenced(result: SearchResult) -> str:
    language = result.document.metadata.get("language") or "text"
    return f"```{language}\n{result.document.text}\n```"


__all__ = [
    "RAGOrchestrator",
    "RAGOptions",
    "RAGResponse",
    "StreamChunk",
    "QueryStage",
    "DEFAULT_SYSTEM_PROMPT",
    "EMPTY_QUERY_MESSAGE",
    "NO_RELEVANT_CONTEXT_MESSAGE",
    "NO_CONTEXT_NOTE",
]
