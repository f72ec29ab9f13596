"""
Backends that speak the OpenAI chat-completions protocol: OpenAI itself,
DeepSeek, Gemini (through Google's OpenAI-compatible endpoint), a local
Ollama server and any custom compatible gateway.
"""
import logging
from typing import Dict, List

import openai
from openai import AsyncOpenAI

from feedai.errors import ProviderError
from feedai.model_router import ProviderConfig
from feedai.providers.base import EMBEDDING_BUDGET, ChatResponse, LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = {
    "openai": None,  # SDK default
    "deepseek": "https://api.deepseek.com",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "ollama": "http://localhost:11434/v1",
}

EMBEDDING_MODELS = {
    "openai": "text-embedding-3-small",
    "gemini": "text-embedding-004",
    "ollama": "nomic-embed-text",
    "custom": "text-embedding-3-small",
}


class OpenAICompatibleProvider(LLMProvider):

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.name = config.provider
        base_url = config.base_url or DEFAULT_BASE_URLS.get(config.provider)
        # Ollama ignores the key but the SDK insists on one
        api_key = config.api_key or ("ollama" if config.provider == "ollama" else None)
        # Retries belong to the job queue backoff, not the SDK
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=config.timeout, max_retries=0)

    async def chat(self, messages: List[Dict[str, str]], **options) -> ChatResponse:
        params = {
            "model": self.model,
            "messages": messages,
            "max_tokens": options.get("max_tokens") or self.config.max_tokens,
            "temperature": options.get("temperature", self.config.temperature),
        }
        if options.get("response_format"):
            params["response_format"] = options["response_format"]

        try:
            completion = await self.client.chat.completions.create(**params)
        except openai.APIStatusError as e:
            raise ProviderError(e.message, provider=self.name, status_code=e.status_code) from e
        except openai.APIError as e:
            raise ProviderError(str(e), provider=self.name) from e

        usage = completion.usage
        return ChatResponse(
            content=completion.choices[0].message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def embed(self, text: str) -> List[float]:
        model = EMBEDDING_MODELS.get(self.name)
        if model is None:
            raise ProviderError("embeddings are not supported", provider=self.name)
        try:
            response = await self.client.embeddings.create(
                model=model,
                input=self.truncate(text, EMBEDDING_BUDGET),
            )
        except openai.APIStatusError as e:
            raise ProviderError(e.message, provider=self.name, status_code=e.status_code) from e
        except openai.APIError as e:
            raise ProviderError(str(e), provider=self.name) from e

        if response.usage:
            self.usage.input_tokens += response.usage.total_tokens
        return list(response.data[0].embedding)
