"""
Shared test fixtures: fake embedding/LLM backends and isolated settings.
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from coderag.config import Settings, load_settings
from coderag.embeddings.service import EmbeddingService
from coderag.llm.client import ChatOptions, ChatResponse
from coderag.vector_store.json_store import JsonVectorStore

TEST_DIMENSION = 4


def hashed_vector(text: str, dimension: int = TEST_DIMENSION) -> List[float]:
    """Deterministic, never-zero vector derived from the text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [float(b) + 1.0 for b in digest[:dimension]]


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbeddingBackend:
    """
    Records every call. ``vectors`` pins specific texts; everything else gets
    a hashed vector. Texts containing ``broken_marker`` come back with the
    wrong dimension.
    """

    def __init__(
        self,
        dimension: int = TEST_DIMENSION,
        supports_batch: bool = True,
        vectors: Optional[Dict[str, List[float]]] = None,
        error: Optional[Exception] = None,
        broken_marker: Optional[str] = None,
        gate: Optional[asyncio.Event] = None,
        model: str = "fake-embed",
    ) -> None:
        self.dimension = dimension
        self.supports_batch = supports_batch
        self.vectors = dict(vectors or {})
        self.error = error
        self.broken_marker = broken_marker
        self.gate = gate
        self.model = model
        self.calls: List[List[str]] = []
        self.closed = False

    @property
    def texts_embedded(self) -> int:
        return sum(len(call) for call in self.calls)

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        vectors = []
        for text in texts:
            if self.broken_marker and self.broken_marker in text:
                vectors.append([1.0] * (self.dimension + 1))
            elif text in self.vectors:
                vectors.append(list(self.vectors[text]))
            else:
                vectors.append(hashed_vector(text, self.dimension))
        return vectors

    async def aclose(self) -> None:
        self.closed = True


class FakeLLMClient:
    """Scripted chat client; ``stream_error`` is raised after the parts are sent."""

    name = "Fake"

    def __init__(
        self,
        reply: str = "Fake answer",
        stream_parts: Sequence[str] = ("Hel", "lo"),
        available: bool = True,
        stream_error: Optional[Exception] = None,
        model: str = "fake-llm",
    ) -> None:
        self.reply = reply
        self.stream_parts = list(stream_parts)
        self.available = available
        self.stream_error = stream_error
        self.model = model
        self.chat_calls: List[List[Dict[str, str]]] = []
        self.stream_calls: List[List[Dict[str, str]]] = []

    async def chat(self, messages, options: ChatOptions | None = None) -> ChatResponse:
        self.chat_calls.append(list(messages))
        return ChatResponse(content=self.reply, model=self.model, usage={"total_tokens": 7})

    async def stream_chat(self, messages, options: ChatOptions | None = None):
        self.stream_calls.append(list(messages))
        for part in self.stream_parts:
            yield part
        if self.stream_error is not None:
            raise self.stream_error

    async def is_available(self) -> bool:
        return self.available

    async def aclose(self) -> None:
        return None


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        _env_file=None,
        workspace_root=str(tmp_path / "workspace"),
        vector_store_path=str(tmp_path / "store"),
        cache_dir=str(tmp_path / "cache"),
        embedding_dimension=TEST_DIMENSION,
        llm_provider="openai",
        openai_api_key="sk-test",
        chunk_size=200,
        chunk_overlap=20,
        min_chunk_size=1,
        min_relevance_score=0.0,
    )
    values.update(overrides)
    return load_settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    (tmp_path / "workspace").mkdir()
    return make_settings(tmp_path)


@pytest.fixture
def backend() -> FakeEmbeddingBackend:
    return FakeEmbeddingBackend()


@pytest.fixture
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def embedding_service(backend) -> EmbeddingService:
    return EmbeddingService(backend, dimension=TEST_DIMENSION, cache_enabled=False)


@pytest.fixture
def store(tmp_path) -> JsonVectorStore:
    return JsonVectorStore(tmp_path / "store", embedding_dimension=TEST_DIMENSION)


@pytest.fixture
def workspace(settings):
    """A small workspace with a few source files and some noise to exclude."""
    base = Path(settings.workspace_root)
    files = {
        "src/app.py": "def main():\n    return 'hello'\n",
        "src/util.ts": "export const add = (a: number, b: number) => a + b;\n",
        "docs/README.md": "# Project\n\nSome documentation.\n",
        "node_modules/lib/index.js": "module.exports = {};\n",
        "data.bin": "not source\n",
    }
    for rel, content in files.items():
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return base
