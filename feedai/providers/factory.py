from typing import Dict, Type

from feedai.errors import ConfigurationError
from feedai.model_router import KEYLESS_PROVIDERS, ProviderConfig
from feedai.providers.base import LLMProvider
from feedai.providers.groq_provider import GroqProvider
from feedai.providers.openai_compat import OpenAICompatibleProvider

PROVIDERS: Dict[str, Type[LLMProvider]] = {
    "openai": OpenAICompatibleProvider,
    "deepseek": OpenAICompatibleProvider,
    "gemini": OpenAICompatibleProvider,
    "ollama": OpenAICompatibleProvider,
    "custom": OpenAICompatibleProvider,
    "groq": GroqProvider,
}


def create_provider(config: ProviderConfig) -> LLMProvider:
    """Build the backend for `config.provider`. Raises ConfigurationError for unknown or unusable configs."""
    provider_cls = PROVIDERS.get(config.provider)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unknown provider '{config.provider}', expected one of {sorted(PROVIDERS)}"
        )
    if config.provider not in KEYLESS_PROVIDERS and not config.api_key:
        raise ConfigurationError(f"Provider '{config.provider}' requires an API key")
    if config.provider == "custom" and not config.base_url:
        raise ConfigurationError("Custom provider requires a base URL (CUSTOM_API_BASE_URL)")
    if not config.model:
        raise ConfigurationError(f"Provider '{config.provider}' has no model configured")
    return provider_cls(config)
