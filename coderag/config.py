"""
Application configuration loaded from environment variables.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Literal

from pydantic import Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coderag.errors import ConfigError

DEFAULT_INCLUDE_PATTERNS = ["**/*.{js,ts,jsx,tsx,py,java,c,cpp,cs,go,rb,php,html,css,md}"]
DEFAULT_EXCLUDE_PATTERNS = ["**/node_modules/**", "**/dist/**", "**/build/**", "**/.git/**"]


class Settings(BaseSettings):
    """Centralised application settings."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # LLM
    llm_provider: Literal["openai", "none"] = Field(default="openai", alias="LLM_PROVIDER")
    openai_api_key: SecretStr | None = Field(default=None, alias="OPENAI_API_KEY")
    llm_model_name: str = Field(default="gpt-4.1-mini", alias="LLM_MODEL_NAME")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0, alias="LLM_TEMPERATURE")

    # Embeddings
    embedding_provider: Literal["openai", "ollama"] = Field(default="openai", alias="EMBEDDING_PROVIDER")
    embedding_model_name: str = Field(default="text-embedding-3-small", alias="EMBEDDING_MODEL_NAME")
    embedding_dimension: int = Field(default=1536, gt=0, alias="EMBEDDING_DIMENSION")
    embed_batch_size: int = Field(default=64, gt=0, alias="EMBED_BATCH_SIZE")
    ollama_url: str = Field(default="http://localhost:11434", alias="OLLAMA_URL")

    # Embedding cache
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    cache_ttl_seconds: float = Field(default=24 * 60 * 60, ge=0, alias="CACHE_TTL_SECONDS")
    cache_dir: str = Field(default="./data/embedding_cache", alias="CACHE_DIR")

    # Vector store
    vector_store_backend: str = Field(default="json", alias="VECTOR_STORE_BACKEND")
    vector_store_path: str = Field(default="./data/vector_store", alias="VECTOR_STORE_PATH")
    collection_name: str = Field(default="documents", alias="COLLECTION_NAME")

    # Indexing
    workspace_root: str = Field(default=".", alias="WORKSPACE_ROOT")
    include_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS), alias="INCLUDE_PATTERNS")
    exclude_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS), alias="EXCLUDE_PATTERNS")
    chunk_size: int = Field(default=1000, gt=0, alias="CHUNK_SIZE")
    chunk_overlap: int = Field(default=200, ge=0, alias="CHUNK_OVERLAP")
    min_chunk_size: int = Field(default=100, ge=0, alias="MIN_CHUNK_SIZE")
    max_file_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0, alias="MAX_FILE_SIZE_BYTES")
    file_batch_size: int = Field(default=10, gt=0, alias="FILE_BATCH_SIZE")
    auto_reindex_on_save: bool = Field(default=False, alias="AUTO_REINDEX_ON_SAVE")

    # RAG
    rag_only_mode_enabled: bool = Field(default=False, alias="RAG_ONLY_MODE_ENABLED")
    rag_only_mode_forced: bool = Field(default=False, alias="RAG_ONLY_MODE_FORCED")
    min_relevance_score: float = Field(default=0.5, ge=0.0, le=1.0, alias="MIN_RELEVANCE_SCORE")
    result_limit: int = Field(default=5, gt=0, alias="RESULT_LIMIT")

    # Server
    admin_token: SecretStr | None = Field(default=None, alias="ADMIN_TOKEN")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


def load_settings(**overrides: Any) -> Settings:
    """
    Build a fresh Settings instance, raising ConfigError on invalid values.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


def setup_logging(level: str | None = None) -> logging.Logger:
    """
    Configure base logging for the app.
    """
    logging.basicConfig(
        level=(level or "INFO").upper(),
        format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    )
    return logging.getLogger("coderag")


def public_settings(settings: Settings) -> Dict[str, Any]:
    """
    Return settings without secrets for safe logging/inspection.
    """
    return settings.model_dump(
        exclude={"openai_api_key", "admin_token"},
        exclude_none=True,
    )


__all__ = [
    "Settings",
    "DEFAULT_INCLUDE_PATTERNS",
    "DEFAULT_EXCLUDE_PATTERNS",
    "load_settings",
    "get_settings",
    "reload_settings",
    "setup_logging",
    "public_settings",
]
