"""
Embedding service: cache-checked text -> vector conversion.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Optional, Sequence

from coderag.cache.embedding_cache import EmbeddingCache
from coderag.embeddings.client import EmbeddingBackend
from coderag.errors import MalformedEmbeddingError

DEFAULT_CACHE_TTL_SEC = 24 * 60 * 60

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Turns texts into vectors, consulting the cache before the backend.

    Misses are de-duplicated and sent to the backend in ``batch_size`` slices
    when it supports batching, one text per call otherwise. The output order
    always matches the input order.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        cache: EmbeddingCache | None = None,
        dimension: int | None = None,
        cache_enabled: bool = True,
        cache_ttl: float = DEFAULT_CACHE_TTL_SEC,
        batch_size: int = 64,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.dimension = dimension
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self.batch_size = batch_size

    def set_cache_enabled(self, enabled: bool) -> None:
        self.cache_enabled = enabled

    def set_cache_ttl(self, ttl: float) -> None:
        self.cache_ttl = ttl

    @property
    def model(self) -> str:
        return self.backend.model

    def cache_key(self, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"embedding:{self.model}:{digest}"

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []

        use_cache = self.cache_enabled and self.cache is not None
        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: Dict[str, List[int]] = {}

        for idx, text in enumerate(texts):
            if text in missing:
                missing[text].append(idx)
                continue
            cached = await self.cache.get(self.cache_key(text)) if use_cache else None
            if cached is not None and self._has_dimension(cached):
                results[idx] = cached
            else:
                missing[text] = [idx]

        hits = len(texts) - sum(len(v) for v in missing.values())
        if missing:
            unique_texts = list(missing)
            vectors = await self._embed_uncached(unique_texts)
            for text, vector in zip(unique_texts, vectors):
                for idx in missing[text]:
                    results[idx] = vector
                if use_cache:
                    await self.cache.set(self.cache_key(text), vector, self.cache_ttl)

        logger.debug(
            "Embedded texts",
            extra={"count": len(texts), "cache_hits": hits, "backend_texts": len(missing), "model": self.model},
        )
        return [vector for vector in results if vector is not None]

    async def embed_query(self, text: str) -> List[float]:
        vectors = await self.embed([text])
        return vectors[0]

    async def _embed_uncached(self, texts: List[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        if self.backend.supports_batch:
            for i in range(0, len(texts), self.batch_size):
                batch = texts[i : i + self.batch_size]
                vectors.extend(self._validate(await self.backend.embed(batch), len(batch)))
        else:
            for text in texts:
                vectors.extend(self._validate(await self.backend.embed([text]), 1))
        return vectors

    def _validate(self, vectors: List[List[float]], expected: int) -> List[List[float]]:
        if len(vectors) != expected:
            raise MalformedEmbeddingError(f"Backend returned {len(vectors)} vectors for {expected} texts")
        for vector in vectors:
            if not self._has_dimension(vector):
                raise MalformedEmbeddingError(
                    f"Backend returned a {len(vector)}-dimensional vector, expected {self.dimension}"
                )
        return vectors

    def _has_dimension(self, vector: List[float]) -> bool:
        return self.dimension is None or len(vector) == self.dimension


__all__ = ["EmbeddingService", "DEFAULT_CACHE_TTL_SEC"]
