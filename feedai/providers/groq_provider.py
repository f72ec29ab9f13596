import logging
from typing import Dict, List

import groq
from groq import AsyncGroq

from feedai.errors import ProviderError
from feedai.model_router import ProviderConfig
from feedai.providers.base import ChatResponse, LLMProvider

logger = logging.getLogger(__name__)


class GroqProvider(LLMProvider):
    """Groq-hosted open models. Chat only; Groq offers no embeddings endpoint."""

    name = "groq"

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.client = AsyncGroq(api_key=config.api_key, timeout=config.timeout, max_retries=0)

    async def chat(self, messages: List[Dict[str, str]], **options) -> ChatResponse:
        params = {
            "model": self.model,
            "messages": messages,
            "max_tokens": options.get("max_tokens") or self.config.max_tokens,
            "temperature": options.get("temperature", self.config.temperature),
            "stream": False,
        }
        if options.get("response_format"):
            params["response_format"] = options["response_format"]

        try:
            completion = await self.client.chat.completions.create(**params)
        except groq.RateLimitError as e:
            logger.warning(f"Rate limit error for {self.model}: {e}")
            raise ProviderError(e.message, provider=self.name, status_code=e.status_code) from e
        except groq.APIStatusError as e:
            raise ProviderError(e.message, provider=self.name, status_code=e.status_code) from e
        except groq.APIError as e:
            raise ProviderError(str(e), provider=self.name) from e

        usage = completion.usage
        return ChatResponse(
            content=completion.choices[0].message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def embed(self, text: str) -> List[float]:
        raise ProviderError("embeddings are not supported", provider=self.name)
