import logging

import pytest

from feedai.errors import ConfigurationError
from feedai.model_router import (
    DEFAULT_PRICE_PER_1K,
    ModelRouter,
    estimate_cost,
    language_group,
    provider_for_model,
)
from feedai.settings import DEFAULT_MODEL_TABLE


def make_table(**overrides):
    table = {group: dict(stages) for group, stages in DEFAULT_MODEL_TABLE.items()}
    for key, model in overrides.items():
        group, stage = key.split("__")
        table[group][stage] = model
    return table


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    @pytest.mark.parametrize("language,group", [
        ("zh", "chinese"),
        ("zh-TW", "chinese"),
        ("en", "english"),
        ("fr", "english"),
        ("pt", "english"),
        ("ja", "other"),
        ("ru", "other"),
        ("other", "other"),
    ])
    def test_language_group(self, language, group):
        assert language_group(language) == group

    @pytest.mark.parametrize("model,provider", [
        ("gpt-4o", "openai"),
        ("gpt-5-preview", "openai"),
        ("deepseek-chat", "deepseek"),
        ("gemini-1.5-flash", "gemini"),
        ("llama-3.1-8b-instant", "groq"),
        ("llama3", "ollama"),
        ("my-finetune", "custom"),
    ])
    def test_provider_for_model(self, model, provider):
        assert provider_for_model(model) == provider

    def test_estimate_cost_uses_registry_price(self):
        assert estimate_cost("gpt-4o", 2000) == pytest.approx(0.01)

    def test_estimate_cost_unknown_model_uses_default_price(self):
        assert estimate_cost("my-finetune", 1000) == pytest.approx(DEFAULT_PRICE_PER_1K)

    def test_local_models_are_free(self):
        assert estimate_cost("llama3", 50000) == 0


# ---------------------------------------------------------------------------
# ModelRouter
# ---------------------------------------------------------------------------

class TestModelRouter:
    def test_default_policy(self, model_router):
        assert model_router.select("zh", "preliminary") == "deepseek-chat"
        assert model_router.select("en", "preliminary") == "gemini-1.5-flash"
        assert model_router.select("es", "analysis") == "gemini-1.5-pro"
        assert model_router.select("ja", "preliminary") == "gpt-4o-mini"

    def test_table_is_the_extension_point(self):
        router = ModelRouter(make_table(english__analysis="gpt-4o-mini"), credentials={"openai": "k", "deepseek": "k", "gemini": "k"})
        assert router.select("en", "analysis") == "gpt-4o-mini"

    def test_unknown_stage_raises(self, model_router):
        with pytest.raises(ValueError):
            model_router.select("en", "translation")

    def test_config_for_resolves_credentials(self, model_router):
        config = model_router.config_for("zh", "analysis")
        assert config.provider == "deepseek"
        assert config.model == "deepseek-chat"
        assert config.api_key == "sk-test"
        assert config.timeout == 5

    def test_validate_passes_with_all_credentials(self, model_router):
        model_router.validate()

    def test_validate_reports_missing_credential(self):
        router = ModelRouter(DEFAULT_MODEL_TABLE, credentials={"openai": "k", "gemini": "k"})
        with pytest.raises(ConfigurationError) as exc:
            router.validate()
        assert "deepseek-chat" in str(exc.value)
        assert "DEEPSEEK_API_KEY" in str(exc.value)

    def test_validate_reports_missing_cell(self):
        table = make_table()
        del table["other"]["reflection"]
        router = ModelRouter(table, credentials={"openai": "k", "deepseek": "k", "gemini": "k"})
        with pytest.raises(ConfigurationError, match="other - reflection"):
            router.validate()

    def test_config_for_fails_fast_before_any_call(self):
        router = ModelRouter(DEFAULT_MODEL_TABLE, credentials={})
        with pytest.raises(ConfigurationError):
            router.config_for("en", "preliminary")

    def test_local_models_need_no_credential(self):
        table = {group: {stage: "llama3" for stage in stages} for group, stages in DEFAULT_MODEL_TABLE.items()}
        ModelRouter(table, credentials={}).validate()

    def test_model_usage(self, model_router):
        usage = model_router.model_usage()
        assert usage["gpt-4o"]["languages"] == ["english", "other"]
        assert set(usage["gpt-4o"]["stages"]) == {"reflection", "analysis"}

    def test_validate_logs_model_usage(self, model_router, caplog):
        with caplog.at_level(logging.INFO, logger="feedai.model_router"):
            model_router.validate()
        assert "deepseek-chat: chinese / preliminary, analysis, reflection" in caplog.text
