import pytest

from conftest import make_settings
from coderag.config import load_settings, public_settings
from coderag.embeddings.client import OllamaEmbeddingBackend, OpenAIEmbeddingBackend, get_embedding_backend
from coderag.errors import ConfigError
from coderag.llm.client import OpenAIChatClient, RagOnlyClient, get_llm_client
from coderag.vector_store import JsonVectorStore, get_vector_store


def test_defaults():
    settings = load_settings(_env_file=None)
    assert settings.chunk_size == 1000
    assert settings.chunk_overlap == 200
    assert settings.embedding_dimension == 1536
    assert settings.cache_ttl_seconds == 24 * 60 * 60
    assert settings.min_relevance_score == 0.5
    assert settings.vector_store_backend == "json"


def test_environment_aliases(monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "500")
    monkeypatch.setenv("RAG_ONLY_MODE_FORCED", "true")
    monkeypatch.setenv("INCLUDE_PATTERNS", '["**/*.py"]')

    settings = load_settings(_env_file=None)

    assert settings.chunk_size == 500
    assert settings.rag_only_mode_forced is True
    assert settings.include_patterns == ["**/*.py"]


def test_overlap_must_be_smaller_than_chunk_size():
    with pytest.raises(ConfigError):
        load_settings(_env_file=None, chunk_size=100, chunk_overlap=100)


def test_invalid_provider_is_a_config_error():
    with pytest.raises(ConfigError):
        load_settings(_env_file=None, embedding_provider="word2vec")


def test_public_settings_hide_secrets(tmp_path):
    settings = make_settings(tmp_path, admin_token="secret")
    public = public_settings(settings)
    assert "openai_api_key" not in public
    assert "admin_token" not in public
    assert public["embedding_dimension"] == 4


def test_vector_store_factory(tmp_path):
    assert isinstance(get_vector_store(make_settings(tmp_path)), JsonVectorStore)
    with pytest.raises(ConfigError):
        get_vector_store(make_settings(tmp_path, vector_store_backend="chroma"))


def test_embedding_backend_factory(tmp_path):
    assert isinstance(get_embedding_backend(make_settings(tmp_path)), OpenAIEmbeddingBackend)
    ollama = get_embedding_backend(make_settings(tmp_path, embedding_provider="ollama", ollama_url="http://ollama:11434/"))
    assert isinstance(ollama, OllamaEmbeddingBackend)
    assert ollama.base_url == "http://ollama:11434"
    assert ollama.supports_batch is False
    with pytest.raises(ConfigError):
        get_embedding_backend(make_settings(tmp_path, openai_api_key=None))


def test_llm_client_factory(tmp_path):
    assert isinstance(get_llm_client(make_settings(tmp_path)), OpenAIChatClient)
    assert isinstance(get_llm_client(make_settings(tmp_path, llm_provider="none")), RagOnlyClient)
    with pytest.raises(ConfigError):
        get_llm_client(make_settings(tmp_path, openai_api_key=None))
