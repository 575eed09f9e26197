"""LLM relation extractors, one variant per provider."""

from typing import Optional

from concept_graph.config import Provider, Settings, settings as default_settings
from concept_graph.errors import ConfigError

from .anthropic_provider import AnthropicExtractor
from .base import RelationExtractor, classify_http_error
from .google_provider import GoogleExtractor
from .ollama_provider import OllamaExtractor
from .openai_provider import OpenAIExtractor
from .parsing import parse_relations

__all__ = [
    "Provider",
    "RelationExtractor",
    "OpenAIExtractor",
    "AnthropicExtractor",
    "GoogleExtractor",
    "OllamaExtractor",
    "classify_http_error",
    "create_extractor",
    "parse_relations",
]


def create_extractor(
    provider: Provider | str,
    settings: Optional[Settings] = None,
    model: Optional[str] = None,
) -> RelationExtractor:
    """Factory function to get a relation extractor by provider.

    Args:
        provider: Provider enum member or name ('openai', 'anthropic', 'google', 'ollama').
        settings: Settings to read keys, URLs and timeouts from.
        model: Model override. Defaults to the configured or provider default model.

    Returns:
        Relation extractor instance.

    Raises:
        ConfigError: If the provider is not supported.
    """
    settings = settings or default_settings
    try:
        provider = Provider(provider.lower() if isinstance(provider, str) else provider)
    except ValueError as e:
        available = ", ".join(p.value for p in Provider)
        raise ConfigError(f"Unknown LLM provider: {provider}. Available: {available}") from e

    model = model or settings.model_for(provider)
    base_url = settings.base_url_for(provider)
    timeout = settings.request_timeout

    if provider is Provider.OPENAI:
        return OpenAIExtractor(
            api_key=settings.api_key_for(provider),
            model=model,
            base_url=base_url,
            timeout=timeout,
        )
    if provider is Provider.ANTHROPIC:
        return AnthropicExtractor(
            api_key=settings.api_key_for(provider),
            model=model,
            base_url=base_url,
            timeout=timeout,
        )
    if provider is Provider.GOOGLE:
        return GoogleExtractor(
            api_key=settings.api_key_for(provider),
            model=model,
            base_url=base_url,
            timeout=timeout,
        )
    return OllamaExtractor(model=model, base_url=base_url, timeout=timeout)
