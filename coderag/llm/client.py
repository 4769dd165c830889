"""
Chat LLM clients behind a single capability interface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx
from openai import APIError, AsyncOpenAI

from coderag.config import Settings
from coderag.errors import BackendUnavailableError, ConfigError

DEFAULT_LLM_MODEL = "gpt-4.1-mini"
DEFAULT_TEMPERATURE = 0.2
RAG_ONLY_PLACEHOLDER = "RAG-Only mode is active. No LLM is being used. Please check the RAG results instead."

ChatMessage = Dict[str, str]

logger = logging.getLogger(__name__)


@dataclass
class ChatOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[List[str]] = None


@dataclass
class ChatResponse:
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None


class LLMClient(Protocol):
    name: str
    model: str

    async def chat(self, messages: List[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        ...

    def stream_chat(self, messages: List[ChatMessage], options: ChatOptions | None = None) -> AsyncIterator[str]:
        ...

    async def is_available(self) -> bool:
        ...

    async def aclose(self) -> None:
        ...


class OpenAIChatClient:
    name = "OpenAI"

    def __init__(
        self,
        model: str = DEFAULT_LLM_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        api_key: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.client = client or AsyncOpenAI(api_key=api_key)

    def _kwargs(self, messages: List[ChatMessage], options: ChatOptions | None) -> Dict[str, Any]:
        options = options or ChatOptions()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "temperature": options.temperature if options.temperature is not None else self.temperature,
            "messages": messages,
        }
        if options.max_tokens:
            kwargs["max_tokens"] = options.max_tokens
        if options.stop:
            kwargs["stop"] = options.stop
        return kwargs

    async def chat(self, messages: List[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        try:
            response = await self.client.chat.completions.create(**self._kwargs(messages, options))
        except (APIError, httpx.HTTPError) as exc:
            raise BackendUnavailableError(f"OpenAI chat request failed: {exc}") from exc

        choice = response.choices[0].message
        usage = None
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return ChatResponse(content=choice.content or "", model=response.model or self.model, usage=usage)

    async def stream_chat(
        self, messages: List[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[str]:
        try:
            stream = await self.client.chat.completions.create(**self._kwargs(messages, options), stream=True)
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    yield delta
        except (APIError, httpx.HTTPError) as exc:
            # Transport errors can surface mid-stream, after the request succeeded.
            raise BackendUnavailableError(f"OpenAI streaming request failed: {exc}") from exc

    async def is_available(self) -> bool:
        try:
            await self.client.models.retrieve(self.model)
        except (APIError, httpx.HTTPError):
            logger.warning("LLM availability check failed", extra={"model": self.model})
            return False
        return True

    async def aclose(self) -> None:
        await self.client.close()


class RagOnlyClient:
    """
    Placeholder used when no generative model is configured. It never makes
    network calls.
    """

    name = "RAG-Only Mode"

    def __init__(self, model: str = "rag-only") -> None:
        self.model = model

    async def chat(self, messages: List[ChatMessage], options: ChatOptions | None = None) -> ChatResponse:
        return ChatResponse(content=RAG_ONLY_PLACEHOLDER, model=self.model)

    async def stream_chat(
        self, messages: List[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[str]:
        yield RAG_ONLY_PLACEHOLDER

    async def is_available(self) -> bool:
        return False

    async def aclose(self) -> None:
        return None


def get_llm_client(settings: Settings) -> LLMClient:
    """
    Factory to obtain the configured chat client.
    """
    provider = settings.llm_provider.lower()
    if provider == "none":
        return RagOnlyClient()
    if provider == "openai":
        if settings.openai_api_key is None:
            raise ConfigError("OPENAI_API_KEY is required for the openai LLM provider")
        return OpenAIChatClient(
            model=settings.llm_model_name,
            temperature=settings.llm_temperature,
            api_key=settings.openai_api_key.get_secret_value(),
        )
    raise ConfigError(f"Unsupported LLM provider: {provider}")


__all__ = [
    "ChatMessage",
    "ChatOptions",
    "ChatResponse",
    "LLMClient",
    "OpenAIChatClient",
    "RagOnlyClient",
    "get_llm_client",
    "RAG_ONLY_PLACEHOLDER",
    "DEFAULT_LLM_MODEL",
]
