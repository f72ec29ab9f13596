"""
Model routing: (language, stage) → model identifier → provider configuration.

The mapping table is the extension point; it comes from Settings and can be
overridden per deployment through the environment.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from feedai.errors import ConfigurationError

logger = logging.getLogger(__name__)

STAGES = ("preliminary", "analysis", "reflection")
LANGUAGE_GROUPS = ("chinese", "english", "other")

# Latin-script languages share the fast general model with English
ENGLISH_GROUP_LANGUAGES = ("en", "es", "fr", "de", "pt", "it")

# Providers that run locally and need no credential
KEYLESS_PROVIDERS = ("ollama",)

DEFAULT_PRICE_PER_1K = 0.001


@dataclass(frozen=True)
class ModelInfo:
    provider: str
    model: str  # identifier sent to the vendor API
    cost_per_1k_tokens: float
    max_input_chars: int = 32000


# ---------------------------------------------------------------------------
# Known models: vendor, API identifier, blended price (USD per 1K tokens)
# ---------------------------------------------------------------------------

MODEL_REGISTRY: Dict[str, ModelInfo] = {
    "gpt-4o":            ModelInfo("openai", "gpt-4o", 0.005),
    "gpt-4o-mini":       ModelInfo("openai", "gpt-4o-mini", 0.00015),
    "gpt-4-turbo":       ModelInfo("openai", "gpt-4-turbo", 0.01),
    "gpt-3.5-turbo":     ModelInfo("openai", "gpt-3.5-turbo", 0.0005, max_input_chars=16000),
    "deepseek-chat":     ModelInfo("deepseek", "deepseek-chat", 0.00014),
    "deepseek-coder":    ModelInfo("deepseek", "deepseek-coder", 0.00014),
    "gemini-1.5-flash":  ModelInfo("gemini", "gemini-1.5-flash", 0.000075),
    "gemini-1.5-pro":    ModelInfo("gemini", "gemini-1.5-pro", 0.0035),
    "gemini-2.0-flash":  ModelInfo("gemini", "gemini-2.0-flash", 0.0001),
    "llama-3.1-8b-instant":    ModelInfo("groq", "llama-3.1-8b-instant", 0.00005, max_input_chars=24000),
    "llama-3.3-70b-versatile": ModelInfo("groq", "llama-3.3-70b-versatile", 0.0006, max_input_chars=24000),
    "llama3":            ModelInfo("ollama", "llama3", 0.0, max_input_chars=16000),
    "mistral":           ModelInfo("ollama", "mistral", 0.0, max_input_chars=16000),
}


def provider_for_model(model: str) -> str:
    """Vendor for a model id: registry first, then the naming convention."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model].provider
    if model.startswith(("gpt", "o1", "o3")):
        return "openai"
    if model.startswith("gemini"):
        return "gemini"
    if model.startswith("deepseek"):
        return "deepseek"
    if model.startswith(("llama-", "mixtral-", "gemma")):
        return "groq"
    if "llama" in model or "mistral" in model:
        return "ollama"
    return "custom"


def model_info(model: str) -> ModelInfo:
    return MODEL_REGISTRY.get(model) or ModelInfo(provider_for_model(model), model, DEFAULT_PRICE_PER_1K)


def estimate_cost(model: str, total_tokens: int) -> float:
    """Cost in USD for the given token count."""
    return (total_tokens / 1000) * model_info(model).cost_per_1k_tokens


def language_group(language: str) -> str:
    if language.startswith("zh"):
        return "chinese"
    if language.startswith(ENGLISH_GROUP_LANGUAGES):
        return "english"
    return "other"


@dataclass(frozen=True)
class ProviderConfig:
    """Everything needed to build one provider instance. Read-only for the duration of a job."""
    provider: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 2000
    temperature: float = 0.7
    timeout: float = 60.0


class ModelRouter:
    """
    Maps (language, stage) to a model and its provider configuration.
    """

    def __init__(
        self,
        table: Dict[str, Dict[str, str]],
        credentials: Optional[Dict[str, Optional[str]]] = None,
        base_urls: Optional[Dict[str, Optional[str]]] = None,
        timeout: float = 60.0,
    ):
        self.table = {group: dict(stages) for group, stages in table.items()}
        self.credentials = dict(credentials or {})
        self.base_urls = dict(base_urls or {})
        self.timeout = timeout
        self._validated = False

    @classmethod
    def from_settings(cls, settings) -> "ModelRouter":
        return cls(
            table=settings.model_table,
            credentials=settings.credentials,
            base_urls=settings.base_urls,
            timeout=settings.provider_timeout,
        )

    def select(self, language: str, stage: str) -> str:
        if stage not in STAGES:
            raise ValueError(f"Unknown stage '{stage}', expected one of {STAGES}")
        group = language_group(language or "other")
        model = self.table.get(group, {}).get(stage)
        if not model:
            raise ConfigurationError(f"No model configured for {group} - {stage}")
        return model

    def provider_config(self, model: str) -> ProviderConfig:
        info = model_info(model)
        return ProviderConfig(
            provider=info.provider,
            model=info.model,
            api_key=self.credentials.get(info.provider),
            base_url=self.base_urls.get(info.provider),
            timeout=self.timeout,
        )

    def config_for(self, language: str, stage: str) -> ProviderConfig:
        """Route and resolve credentials in one step. Validates on first use."""
        if not self._validated:
            self.validate()
        return self.provider_config(self.select(language, stage))

    def validate(self):
        """
        Check that every table cell names a model and every model has a usable
        credential. Raises ConfigurationError listing every problem found.
        """
        errors = self.problems()
        if errors:
            raise ConfigurationError("Invalid model configuration: " + "; ".join(errors))
        self._validated = True
        logger.info(f"Model routing validated for {len(self.models())} models")
        for model, usage in self.model_usage().items():
            logger.info(f"  {model}: {', '.join(usage['languages'])} / {', '.join(usage['stages'])}")

    def problems(self) -> List[str]:
        errors = []
        for group in LANGUAGE_GROUPS:
            for stage in STAGES:
                model = self.table.get(group, {}).get(stage)
                if not model or not model.strip():
                    errors.append(f"missing model for {group} - {stage}")

        for model in self.models():
            provider = provider_for_model(model)
            if provider in KEYLESS_PROVIDERS:
                continue
            if not self.credentials.get(provider):
                errors.append(
                    f"model '{model}' needs a {provider} credential "
                    f"(set {provider.upper()}_API_KEY)"
                )
        return errors

    def models(self) -> List[str]:
        seen = []
        for stages in self.table.values():
            for model in stages.values():
                if model and model not in seen:
                    seen.append(model)
        return seen

    def model_usage(self) -> Dict[str, Dict[str, List[str]]]:
        """Which language groups and stages each model serves, for cost reviews."""
        usage: Dict[str, Dict[str, List[str]]] = {}
        for group, stages in self.table.items():
            for stage, model in stages.items():
                entry = usage.setdefault(model, {"languages": [], "stages": []})
                if group not in entry["languages"]:
                    entry["languages"].append(group)
                if stage not in entry["stages"]:
                    entry["stages"].append(stage)
        return usage
