"""
Explicit wiring of the RAG services, built once per process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from coderag.cache.embedding_cache import EmbeddingCache
from coderag.config import Settings
from coderag.embeddings.client import EmbeddingBackend, get_embedding_backend
from coderag.embeddings.service import EmbeddingService
from coderag.indexing.pipeline import IndexingService
from coderag.llm.client import LLMClient, get_llm_client
from coderag.rag.pipeline import RAGOrchestrator
from coderag.vector_store import get_vector_store
from coderag.vector_store.json_store import JsonVectorStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    cache: EmbeddingCache
    embedding_backend: EmbeddingBackend
    embedding_service: EmbeddingService
    vector_store: JsonVectorStore
    indexing_service: IndexingService
    llm_client: LLMClient
    orchestrator: RAGOrchestrator

    async def aclose(self) -> None:
        self.indexing_service.dispose()
        await self.cache.close()
        await self.vector_store.close()
        await self.embedding_backend.aclose()
        await self.llm_client.aclose()
        logger.info("Services closed")


def build_services(
    settings: Settings,
    embedding_backend: EmbeddingBackend | None = None,
    llm_client: LLMClient | None = None,
) -> Services:
    """
    Construct every service once; backends may be injected (tests, CLIs).
    Call ``await services.vector_store.initialize()`` before use.
    """
    cache = EmbeddingCache(settings.cache_dir)
    backend = embedding_backend or get_embedding_backend(settings)
    embedding_service = EmbeddingService(
        backend,
        cache=cache,
        dimension=settings.embedding_dimension,
        cache_enabled=settings.cache_enabled,
        cache_ttl=settings.cache_ttl_seconds,
        batch_size=settings.embed_batch_size,
    )
    vector_store = get_vector_store(settings)
    llm = llm_client or get_llm_client(settings)
    return Services(
        settings=settings,
        cache=cache,
        embedding_backend=backend,
        embedding_service=embedding_service,
        vector_store=vector_store,
        indexing_service=IndexingService(settings, embedding_service, vector_store),
        llm_client=llm,
        orchestrator=RAGOrchestrator(settings, embedding_service, vector_store, llm),
    )


async def open_services(settings: Settings, **overrides) -> Services:
    services = build_services(settings, **overrides)
    await services.vector_store.initialize()
    if settings.cache_enabled:
        services.cache.start_periodic_sweep()
    return services


__all__ = ["Services", "build_services", "open_services"]
