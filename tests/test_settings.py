import pytest

from feedai.settings import DEFAULT_MODEL_TABLE, get_setting, load_settings, reset_settings_cache


@pytest.fixture
def env(monkeypatch):
    """Patch environment variables with a fresh settings cache before and after."""
    reset_settings_cache()
    yield monkeypatch
    reset_settings_cache()


class TestLoadSettings:
    def test_defaults(self, env):
        for key in ("AI_QUEUE_CONCURRENCY", "ANALYSIS_MODEL_EN", "ENABLE_DEEP_ANALYSIS", "MONITOR_MAX_COST"):
            env.delenv(key, raising=False)

        settings = load_settings()

        assert settings.concurrency == 3
        assert settings.model_table["english"] == DEFAULT_MODEL_TABLE["english"]
        assert settings.enable_deep_analysis is True
        assert settings.thresholds.max_cost_per_analysis == 0.02

    def test_environment_overrides(self, env):
        env.setenv("AI_QUEUE_CONCURRENCY", "8")
        env.setenv("AI_QUEUE_RETRY_DELAY", "2.5")
        env.setenv("ANALYSIS_MODEL_EN", "gpt-4o")
        env.setenv("ENABLE_DEEP_ANALYSIS", "false")
        env.setenv("MONITOR_MAX_QUEUE_BACKLOG", "500")

        settings = load_settings()

        assert settings.concurrency == 8
        assert settings.retry_base_delay == 2.5
        assert settings.model_table["english"]["analysis"] == "gpt-4o"
        assert settings.model_table["english"]["preliminary"] == "gemini-1.5-flash"
        assert settings.enable_deep_analysis is False
        assert settings.thresholds.max_queue_backlog == 500

    def test_google_key_is_accepted_for_gemini(self, env):
        env.delenv("GEMINI_API_KEY", raising=False)
        env.setenv("GOOGLE_API_KEY", "g-key")
        assert load_settings().credentials["gemini"] == "g-key"

    def test_values_are_cached_until_reset(self, env):
        env.setenv("FEEDAI_TEST_VALUE", "one")
        assert get_setting("FEEDAI_TEST_VALUE") == "one"
        env.setenv("FEEDAI_TEST_VALUE", "two")
        assert get_setting("FEEDAI_TEST_VALUE") == "one"
        reset_settings_cache()
        assert get_setting("FEEDAI_TEST_VALUE") == "two"

    def test_default_table_is_not_shared(self, env):
        settings = load_settings()
        settings.model_table["chinese"]["analysis"] = "changed"
        assert DEFAULT_MODEL_TABLE["chinese"]["analysis"] == "deepseek-chat"
