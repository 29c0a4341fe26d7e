"""
LLM and embedding providers.

``create_llm_provider`` and ``create_embedding_provider`` select a provider
from the global configuration; both accept an explicit config for tests.
"""

from typing import Optional

from .base import LLMProvider, EmbeddingProvider
from .ollama_provider import OllamaProvider, OllamaEmbeddings
from ..error_handler import ConfigurationError

__all__ = [
    "LLMProvider",
    "EmbeddingProvider",
    "OllamaProvider",
    "OllamaEmbeddings",
    "create_llm_provider",
    "create_embedding_provider",
]


def create_llm_provider(config=None) -> LLMProvider:
    if config is None:
        from ..settings import settings
        config = settings.global_config
    if config.llm_provider != "ollama":
        raise ConfigurationError("llm", f"unsupported provider {config.llm_provider!r}")
    return OllamaProvider(model=config.llm_model, base_url=config.ollama_base_url)


def create_embedding_provider(config=None, timeout: Optional[float] = None) -> EmbeddingProvider:
    if config is None:
        from ..settings import settings
        config = settings.global_config
    if config.embeddings_provider != "ollama":
        raise ConfigurationError("embeddings", f"unsupported provider {config.embeddings_provider!r}")
    return OllamaEmbeddings(
        model=config.embeddings_model,
        base_url=config.ollama_base_url,
        timeout=timeout or config.embedding_timeout,
    )
