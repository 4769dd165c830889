"""
Embedding backends: OpenAI (batched) and Ollama (one text per request).
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

import httpx
from openai import APIError, AsyncOpenAI

from coderag.config import Settings
from coderag.errors import ConfigError, EmbeddingBackendError, MalformedEmbeddingError

DEFAULT_EMBED_BATCH_SIZE = 64
DEFAULT_OLLAMA_TIMEOUT_SEC = 30.0

logger = logging.getLogger(__name__)


class EmbeddingBackend(Protocol):
    model: str
    supports_batch: bool

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...

    async def aclose(self) -> None:
        ...


def _check_vectors(raw: object, expected_count: int) -> List[List[float]]:
    if not isinstance(raw, list) or len(raw) != expected_count:
        raise MalformedEmbeddingError(
            f"Expected {expected_count} embeddings, got {len(raw) if isinstance(raw, list) else type(raw).__name__}"
        )
    vectors: List[List[float]] = []
    for item in raw:
        if not isinstance(item, list) or not item:
            raise MalformedEmbeddingError("Embedding is not a non-empty list of numbers")
        try:
            vectors.append([float(v) for v in item])
        except (TypeError, ValueError) as exc:
            raise MalformedEmbeddingError(f"Embedding contains non-numeric values: {exc}") from exc
    return vectors


class OpenAIEmbeddingBackend:
    supports_batch = True

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        dimensions: int | None = None,
        batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []

        embeddings: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i : i + self.batch_size])
            kwargs = {"model": self.model, "input": batch}
            # Only the text-embedding-3 family accepts a dimensions override.
            if self.dimensions and self.model.startswith("text-embedding-3"):
                kwargs["dimensions"] = self.dimensions
            try:
                response = await self.client.embeddings.create(**kwargs)
            except APIError as exc:
                raise EmbeddingBackendError(f"OpenAI embeddings request failed: {exc}") from exc
            embeddings.extend(_check_vectors([item.embedding for item in response.data], len(batch)))
        return embeddings

    async def aclose(self) -> None:
        await self.client.close()


class OllamaEmbeddingBackend:
    supports_batch = False

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout: float = DEFAULT_OLLAMA_TIMEOUT_SEC,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for text in texts:
            try:
                response = await self.client.post("/api/embeddings", json={"model": self.model, "prompt": text})
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPError as exc:
                raise EmbeddingBackendError(f"Ollama embeddings request failed: {exc}") from exc
            except ValueError as exc:
                raise MalformedEmbeddingError(f"Ollama returned invalid JSON: {exc}") from exc
            embedding = payload.get("embedding") if isinstance(payload, dict) else None
            vectors.extend(_check_vectors([embedding], 1))
        return vectors

    async def aclose(self) -> None:
        await self.client.aclose()


def get_embedding_backend(settings: Settings) -> EmbeddingBackend:
    """
    Factory to obtain the configured embedding backend.
    """
    provider = settings.embedding_provider.lower()
    if provider == "openai":
        if settings.openai_api_key is None:
            raise ConfigError("OPENAI_API_KEY is required for the openai embedding provider")
        return OpenAIEmbeddingBackend(
            model=settings.embedding_model_name,
            api_key=settings.openai_api_key.get_secret_value(),
            dimensions=settings.embedding_dimension,
            batch_size=settings.embed_batch_size,
        )
    if provider == "ollama":
        return OllamaEmbeddingBackend(model=settings.embedding_model_name, base_url=settings.ollama_url)
    raise ConfigError(f"Unsupported embedding provider: {provider}")


__all__ = [
    "EmbeddingBackend",
    "OpenAIEmbeddingBackend",
    "OllamaEmbeddingBackend",
    "get_embedding_backend",
    "DEFAULT_EMBED_BATCH_SIZE",
]
