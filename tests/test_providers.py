"""
Unit tests for the provider abstraction: scripted fake backend and mocked
vendor SDK clients. No network calls.

Run with: pytest tests/test_providers.py -v
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from fakes import FakeProvider
from feedai.errors import AnalysisFailed, ConfigurationError, ProviderError
from feedai.model_router import ProviderConfig, estimate_cost
from feedai.providers.base import (
    CATEGORIES,
    DEFAULT_CATEGORY,
    heuristic_importance,
    normalize_category,
    normalize_sentiment,
    parse_importance,
    split_keywords,
)
from feedai.providers.factory import create_provider
from feedai.providers.groq_provider import GroqProvider
from feedai.providers.openai_compat import OpenAICompatibleProvider
from feedai.providers.service import AnalysisService


def make_completion(content="ok", prompt_tokens=12, completion_tokens=3):
    """Mimics the chat-completion object returned by the openai and groq SDKs."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def mock_client(create):
    client = MagicMock()
    client.chat.completions.create = create
    return client


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

class TestParsing:
    @pytest.mark.parametrize("reply,expected", [("80", 0.8), (" 100\n", 1.0), ("0", 0.0), ("72.5", 0.725), ("150", 1.0)])
    def test_parse_importance(self, reply, expected):
        assert parse_importance(reply) == pytest.approx(expected)

    @pytest.mark.parametrize("reply", ["", "eighty", "Score: 80", "80/100"])
    def test_parse_importance_rejects_non_numeric(self, reply):
        with pytest.raises(ValueError):
            parse_importance(reply)

    def test_split_keywords_handles_both_comma_styles(self):
        assert split_keywords("AI, 大模型，agents ,, ") == ["AI", "大模型", "agents"]

    def test_normalize_category_exact(self):
        assert normalize_category("security") == "Security"

    def test_normalize_category_inside_sentence(self):
        assert normalize_category("The category is: Cloud/DevOps.") == "Cloud/DevOps"

    def test_normalize_category_unknown_falls_back(self):
        assert normalize_category("Cooking") == DEFAULT_CATEGORY
        assert DEFAULT_CATEGORY in CATEGORIES

    @pytest.mark.parametrize("reply,expected", [
        ("Positive", "positive"),
        ("negative.", "negative"),
        ("It is mostly neutral", "neutral"),
        ("unclear", "neutral"),
    ])
    def test_normalize_sentiment(self, reply, expected):
        assert normalize_sentiment(reply) == expected


class TestHeuristicImportance:
    def test_short_plain_text_hits_floor(self):
        assert heuristic_importance("hello") == 0.3

    def test_rich_long_text_hits_ceiling(self):
        text = "x" * 5000 + " 42 ```code``` [link](https://example.com)"
        assert heuristic_importance(text) == 0.9

    def test_features_add_up(self):
        # length share + 0.15 numerals + 0.15 link
        text = "a" * 2470 + " 2025 [docs](https://x.io)"
        assert heuristic_importance(text) == pytest.approx(min(len(text) / 5000, 0.4) + 0.3)


# ---------------------------------------------------------------------------
# Capabilities built on chat()
# ---------------------------------------------------------------------------

class TestCapabilities:
    def test_each_capability_parses_its_reply(self):
        provider = FakeProvider()

        async def run():
            return (
                await provider.summarize("text"),
                await provider.extract_keywords("text"),
                await provider.categorize("text"),
                await provider.analyze_sentiment("text"),
                await provider.score_importance("text"),
            )

        summary, keywords, category, sentiment, importance = asyncio.run(run())
        assert summary == "A short summary of the article."
        assert keywords == ["python", "asyncio", "job queues"]
        assert category == "Backend Development"
        assert sentiment == "positive"
        assert importance == pytest.approx(0.8)

    def test_usage_accumulates_per_instance(self):
        provider = FakeProvider()
        other = FakeProvider()
        asyncio.run(provider.summarize("text"))
        asyncio.run(provider.categorize("text"))
        assert provider.usage.input_tokens == 200
        assert provider.usage.output_tokens == 40
        assert other.usage.total_tokens == 0

    def test_importance_falls_back_on_unparseable_reply(self):
        provider = FakeProvider(replies={"importance": "quite important"})
        assert asyncio.run(provider.score_importance("short")) == 0.3

    def test_importance_falls_back_when_call_fails(self):
        provider = FakeProvider(fail={"importance"})
        text = "Release 2.0 notes " * 10
        assert asyncio.run(provider.score_importance(text)) == pytest.approx(heuristic_importance(text))

    def test_rate_importance_raises_on_backend_error(self):
        provider = FakeProvider(fail={"importance"})
        with pytest.raises(ProviderError):
            asyncio.run(provider.rate_importance("text"))

    def test_rate_importance_uses_heuristic_for_unparseable_reply(self):
        provider = FakeProvider(replies={"importance": "quite important"})
        assert asyncio.run(provider.rate_importance("short")) == 0.3

    def test_input_is_truncated_to_backend_budget(self):
        provider = FakeProvider(ProviderConfig(provider="ollama", model="llama3"))
        assert provider.max_input_chars == 16000
        assert len(provider.truncate("x" * 20000, 32000)) == 16000
        assert len(provider.truncate("x" * 20000, 8000)) == 8000


# ---------------------------------------------------------------------------
# AnalysisService
# ---------------------------------------------------------------------------

class TestAnalysisService:
    def test_all_facets_succeed(self):
        service = AnalysisService(FakeProvider())
        result = asyncio.run(service.analyze_article("text", ["summary", "keywords", "category", "sentiment", "importance"]))
        assert result.summary == "A short summary of the article."
        assert result.keywords == ["python", "asyncio", "job queues"]
        assert result.category == "Backend Development"
        assert result.sentiment == "positive"
        assert result.importance_score == pytest.approx(0.8)
        assert result.partial_errors == []
        assert result.total_tokens == 5 * 120
        assert result.cost == pytest.approx(estimate_cost("gpt-4o-mini", 600))

    def test_one_failing_facet_does_not_affect_others(self):
        service = AnalysisService(FakeProvider(fail={"sentiment"}))
        result = asyncio.run(service.analyze_article("text", ["summary", "keywords", "sentiment"]))
        assert result.summary == "A short summary of the article."
        assert result.keywords == ["python", "asyncio", "job queues"]
        assert result.sentiment is None
        assert len(result.partial_errors) == 1
        assert result.partial_errors[0].startswith("Sentiment: ")
        assert "sentiment unavailable" in result.partial_errors[0]

    def test_only_requested_facets_run(self):
        provider = FakeProvider()
        asyncio.run(AnalysisService(provider).analyze_article("text", ["category"]))
        assert provider.calls == ["category"]

    def test_all_facets_failing_raises(self):
        service = AnalysisService(FakeProvider(fail={"all"}))
        with pytest.raises(AnalysisFailed) as exc:
            asyncio.run(service.analyze_article("text", ["summary", "keywords"]))
        assert exc.value.errors[0].startswith("Summary: ")
        assert exc.value.errors[1].startswith("Keywords: ")
        assert str(exc.value).startswith("AI analysis failed: ")

    def test_unreachable_backend_fails_importance_too(self):
        service = AnalysisService(FakeProvider(fail={"all"}))
        with pytest.raises(AnalysisFailed) as exc:
            asyncio.run(service.analyze_article("text", ["summary", "importance"]))
        assert exc.value.errors[1].startswith("Importance: ")

    def test_reflection_spend_is_added_to_totals(self):
        analysis_provider = FakeProvider()
        reflection_provider = FakeProvider(ProviderConfig(provider="openai", model="gpt-4o", api_key="sk"))
        reflection_provider.usage.input_tokens = 300
        reflection_provider.usage.output_tokens = 60
        deep_analyzer = SimpleNamespace(reflection_provider=reflection_provider)

        result = asyncio.run(AnalysisService(analysis_provider, deep_analyzer).analyze_article("text", ["summary"]))

        assert result.input_tokens + result.output_tokens == 120
        assert result.reflection_tokens == 360
        assert result.total_tokens == 480
        assert result.total_cost == pytest.approx(estimate_cost("gpt-4o-mini", 120) + estimate_cost("gpt-4o", 360))

    def test_insights_without_deep_analyzer_is_a_partial_error(self):
        service = AnalysisService(FakeProvider())
        result = asyncio.run(service.analyze_article("text", ["summary", "insights"]))
        assert result.insights is None
        assert result.partial_errors == ["Insights: deep analysis is not configured"]

    def test_embed_and_chat_passthrough(self):
        provider = FakeProvider()
        service = AnalysisService(provider)
        assert asyncio.run(service.embed("text")) == [0.1, 0.2, 0.3]
        response = asyncio.run(service.chat([{"role": "user", "content": "Summarize this article: x"}]))
        assert response.tokens_used == 120
        assert provider.usage.total_tokens == 120


# ---------------------------------------------------------------------------
# Vendor backends (SDK clients mocked)
# ---------------------------------------------------------------------------

class TestOpenAICompatibleProvider:
    def test_vendor_default_base_url(self):
        provider = OpenAICompatibleProvider(ProviderConfig(provider="deepseek", model="deepseek-chat", api_key="sk"))
        assert "api.deepseek.com" in str(provider.client.base_url)

    def test_sdk_retries_are_disabled(self):
        provider = OpenAICompatibleProvider(ProviderConfig(provider="openai", model="gpt-4o", api_key="sk"))
        assert provider.client.max_retries == 0

    def test_explicit_base_url_wins(self):
        config = ProviderConfig(provider="custom", model="my-model", api_key="sk", base_url="https://llm.internal/v1")
        provider = OpenAICompatibleProvider(config)
        assert "llm.internal" in str(provider.client.base_url)

    def test_chat_returns_content_and_usage(self):
        provider = OpenAICompatibleProvider(ProviderConfig(provider="openai", model="gpt-4o", api_key="sk"))
        create = AsyncMock(return_value=make_completion("hello", 12, 3))
        provider.client = mock_client(create)

        response = asyncio.run(provider.chat([{"role": "user", "content": "hi"}], max_tokens=50, response_format={"type": "json_object"}))

        assert response.content == "hello"
        assert response.input_tokens == 12
        assert response.output_tokens == 3
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == 0.7
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_status_errors_become_provider_errors(self):
        provider = OpenAICompatibleProvider(ProviderConfig(provider="openai", model="gpt-4o", api_key="sk"))
        response = httpx.Response(429, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        provider.client = mock_client(AsyncMock(side_effect=openai.RateLimitError("Rate limit reached", response=response, body=None)))

        with pytest.raises(ProviderError) as exc:
            asyncio.run(provider.chat([{"role": "user", "content": "hi"}]))
        assert exc.value.status_code == 429
        assert exc.value.provider == "openai"

    def test_connection_errors_become_provider_errors(self):
        provider = OpenAICompatibleProvider(ProviderConfig(provider="ollama", model="llama3"))
        request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")
        provider.client = mock_client(AsyncMock(side_effect=openai.APIConnectionError(request=request)))

        with pytest.raises(ProviderError) as exc:
            asyncio.run(provider.chat([{"role": "user", "content": "hi"}]))
        assert exc.value.status_code is None


class TestGroqProvider:
    def test_chat_returns_content_and_usage(self):
        provider = GroqProvider(ProviderConfig(provider="groq", model="llama-3.1-8b-instant", api_key="gsk"))
        provider.client = mock_client(AsyncMock(return_value=make_completion("negative", 40, 1)))
        assert asyncio.run(provider.analyze_sentiment("text")) == "negative"
        assert provider.usage.total_tokens == 41

    def test_sdk_retries_are_disabled(self):
        provider = GroqProvider(ProviderConfig(provider="groq", model="llama-3.1-8b-instant", api_key="gsk"))
        assert provider.client.max_retries == 0

    def test_embed_is_unsupported(self):
        provider = GroqProvider(ProviderConfig(provider="groq", model="llama-3.1-8b-instant", api_key="gsk"))
        with pytest.raises(ProviderError):
            asyncio.run(provider.embed("text"))


# ---------------------------------------------------------------------------
# create_provider
# ---------------------------------------------------------------------------

class TestFactory:
    @pytest.mark.parametrize("provider,cls", [
        ("openai", OpenAICompatibleProvider),
        ("deepseek", OpenAICompatibleProvider),
        ("gemini", OpenAICompatibleProvider),
        ("groq", GroqProvider),
    ])
    def test_selects_backend_by_name(self, provider, cls):
        config = ProviderConfig(provider=provider, model="some-model", api_key="key")
        assert isinstance(create_provider(config), cls)

    def test_ollama_needs_no_key(self):
        assert isinstance(create_provider(ProviderConfig(provider="ollama", model="llama3")), OpenAICompatibleProvider)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            create_provider(ProviderConfig(provider="acme", model="x", api_key="k"))

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="requires an API key"):
            create_provider(ProviderConfig(provider="openai", model="gpt-4o"))

    def test_custom_requires_base_url(self):
        with pytest.raises(ConfigurationError, match="base URL"):
            create_provider(ProviderConfig(provider="custom", model="m", api_key="k"))
