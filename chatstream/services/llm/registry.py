"""Provider registry - the configured providers, looked up by the provider field of a request."""

import logging

from chatstream.core.config import settings
from chatstream.core.exceptions import ProviderNotAvailableError
from chatstream.services.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: dict[str, BaseLLMProvider] = {}

    def register(self, provider: BaseLLMProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> BaseLLMProvider | None:
        return self._providers.get(name)

    def names(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def resolve(self, name: str, model: str | None = None) -> tuple[BaseLLMProvider, str]:
        """Look up a provider, falling back to the first registered one if it is unknown."""
        provider = self._providers.get(name)
        if provider:
            return provider, model or provider.default_model

        if not self._providers:
            raise ProviderNotAvailableError("No AI providers are configured")

        fallback = next(iter(self._providers.values()))
        logger.warning(
            f"Provider '{name}' not available, falling back to {fallback.name}/{fallback.default_model}"
        )
        return fallback, fallback.default_model

    def available_models(self) -> dict[str, list[dict]]:
        return {
            name: [{"id": m.id, "name": m.name, "description": m.description} for m in p.models]
            for name, p in self._providers.items()
        }


def create_default_registry() -> ProviderRegistry:
    """Create a registry with every provider that has credentials configured."""
    registry = ProviderRegistry()

    if settings.gemini_api_key:
        from chatstream.services.llm.gemini import GeminiProvider
        registry.register(GeminiProvider())

    if settings.openai_api_key:
        from chatstream.services.llm.openai_provider import OpenAIProvider
        registry.register(OpenAIProvider())

    if not registry.names():
        logger.warning("No AI provider API keys configured; turns will fail until one is set")
    return registry
