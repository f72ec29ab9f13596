"""
Application settings management.
Uses python-dotenv to load environment variables from the project's .env file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

# Load .env file from project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

_ENV_CACHE: Dict[str, Optional[str]] = {}


def get_setting(key: str, default=None):
    """
    Get a setting from environment variables.

    Values are cached on first read so later changes to os.environ do not
    leak into a running process.

    Args:
        key: Environment variable name
        default: Default value if not found

    Returns:
        The environment variable value or default
    """
    if key not in _ENV_CACHE:
        _ENV_CACHE[key] = os.getenv(key, default)
    return _ENV_CACHE[key]


def reset_settings_cache():
    """Forget cached values. Tests use this after patching the environment."""
    _ENV_CACHE.clear()


def _int(key: str, default: int) -> int:
    return int(get_setting(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(get_setting(key, str(default)))


def _bool(key: str, default: bool) -> bool:
    return str(get_setting(key, str(default))).lower() in ("true", "1", "yes")


# Default model table: cheap Chinese-tuned model for Chinese, fast general
# models for English and Latin languages, general-purpose fallback elsewhere.
DEFAULT_MODEL_TABLE: Dict[str, Dict[str, str]] = {
    "chinese": {
        "preliminary": "deepseek-chat",
        "analysis": "deepseek-chat",
        "reflection": "deepseek-chat",
    },
    "english": {
        "preliminary": "gemini-1.5-flash",
        "analysis": "gemini-1.5-pro",
        "reflection": "gpt-4o",
    },
    "other": {
        "preliminary": "gpt-4o-mini",
        "analysis": "gpt-4o",
        "reflection": "gpt-4o",
    },
}

_LANGUAGE_SUFFIX = {"chinese": "ZH", "english": "EN", "other": "OTHER"}


def _model_table() -> Dict[str, Dict[str, str]]:
    """Build the model table, letting e.g. ANALYSIS_MODEL_EN override a cell."""
    table = {}
    for group, stages in DEFAULT_MODEL_TABLE.items():
        suffix = _LANGUAGE_SUFFIX[group]
        table[group] = {
            stage: get_setting(f"{stage.upper()}_MODEL_{suffix}", default)
            for stage, default in stages.items()
        }
    return table


def _credentials() -> Dict[str, Optional[str]]:
    return {
        "openai": get_setting("OPENAI_API_KEY"),
        "deepseek": get_setting("DEEPSEEK_API_KEY"),
        "gemini": get_setting("GEMINI_API_KEY") or get_setting("GOOGLE_API_KEY"),
        "groq": get_setting("GROQ_API_KEY"),
        "custom": get_setting("CUSTOM_API_KEY"),
    }


@dataclass(frozen=True)
class MonitorThresholds:
    max_processing_time_ms: float = 60000
    max_cost_per_analysis: float = 0.02
    max_error_rate: float = 0.1
    max_queue_backlog: int = 100


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./feedai.db"

    # Model routing
    model_table: Dict[str, Dict[str, str]] = field(default_factory=lambda: {
        group: dict(stages) for group, stages in DEFAULT_MODEL_TABLE.items()
    })
    credentials: Dict[str, Optional[str]] = field(default_factory=dict)
    base_urls: Dict[str, Optional[str]] = field(default_factory=dict)
    provider_timeout: float = 60.0

    # Preliminary evaluation
    preliminary_min_value: int = 3
    preliminary_truncate_length: int = 2000

    # Job queue
    concurrency: int = 3
    max_retries: int = 3
    retry_base_delay: float = 5.0
    poll_interval: float = 5.0
    error_interval: float = 10.0
    stale_job_minutes: int = 30

    # Deep analysis
    enable_deep_analysis: bool = True
    max_reflection_rounds: int = 2
    reflection_quality_threshold: float = 7.0

    # Retention and monitoring
    metrics_retention_days: int = 30
    job_retention_days: int = 7
    monitor_interval: float = 60.0
    monitor_window_minutes: int = 60
    thresholds: MonitorThresholds = field(default_factory=MonitorThresholds)


def load_settings() -> Settings:
    """Build Settings from the environment. Every value has a default."""
    return Settings(
        database_url=get_setting("DATABASE_URL", "sqlite:///./feedai.db"),
        model_table=_model_table(),
        credentials=_credentials(),
        base_urls={
            "custom": get_setting("CUSTOM_API_BASE_URL"),
            "ollama": get_setting("OLLAMA_BASE_URL"),
        },
        provider_timeout=_float("PROVIDER_TIMEOUT", 60.0),
        preliminary_min_value=_int("PRELIMINARY_MIN_VALUE", 3),
        preliminary_truncate_length=_int("PRELIMINARY_TRUNCATE_LENGTH", 2000),
        concurrency=_int("AI_QUEUE_CONCURRENCY", 3),
        max_retries=_int("AI_QUEUE_MAX_RETRIES", 3),
        retry_base_delay=_float("AI_QUEUE_RETRY_DELAY", 5.0),
        poll_interval=_float("AI_QUEUE_POLL_INTERVAL", 5.0),
        error_interval=_float("AI_QUEUE_ERROR_INTERVAL", 10.0),
        stale_job_minutes=_int("AI_QUEUE_STALE_MINUTES", 30),
        enable_deep_analysis=_bool("ENABLE_DEEP_ANALYSIS", True),
        max_reflection_rounds=_int("MAX_REFLECTION_ROUNDS", 2),
        reflection_quality_threshold=_float("REFLECTION_QUALITY_THRESHOLD", 7.0),
        metrics_retention_days=_int("METRICS_RETENTION_DAYS", 30),
        job_retention_days=_int("JOB_RETENTION_DAYS", 7),
        monitor_interval=_float("MONITOR_INTERVAL", 60.0),
        monitor_window_minutes=_int("MONITOR_WINDOW_MINUTES", 60),
        thresholds=MonitorThresholds(
            max_processing_time_ms=_float("MONITOR_MAX_PROCESSING_TIME_MS", 60000),
            max_cost_per_analysis=_float("MONITOR_MAX_COST", 0.02),
            max_error_rate=_float("MONITOR_MAX_ERROR_RATE", 0.1),
            max_queue_backlog=_int("MONITOR_MAX_QUEUE_BACKLOG", 100),
        ),
    )
