import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from feedai.errors import AnalysisFailed
from feedai.model_router import estimate_cost
from feedai.providers.base import ChatResponse, LLMProvider
from feedai.schemas import DeepAnalysis

logger = logging.getLogger(__name__)

FACETS = ("summary", "keywords", "category", "sentiment", "importance", "insights")

# Label used in partial-error notes, e.g. "Sentiment: timeout"
_FACET_LABELS = {
    "summary": "Summary",
    "keywords": "Keywords",
    "category": "Category",
    "sentiment": "Sentiment",
    "importance": "Importance",
    "insights": "Insights",
}


@dataclass
class AnalysisResult:
    provider: str
    model: str
    summary: Optional[str] = None
    keywords: Optional[List[str]] = None
    category: Optional[str] = None
    sentiment: Optional[str] = None
    importance_score: Optional[float] = None
    insights: Optional[DeepAnalysis] = None
    partial_errors: List[str] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    # Spent by the reflection-stage model, which runs on its own provider
    reflection_tokens: int = 0
    reflection_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.reflection_tokens

    @property
    def total_cost(self) -> float:
        return self.cost + self.reflection_cost


class AnalysisService:
    """
    Runs the requested analysis facets against one provider.

    Each facet is attempted independently: one failing facet is recorded as a
    partial error and never affects the others. Only when every requested
    facet fails is AnalysisFailed raised.
    """

    def __init__(self, provider: LLMProvider, deep_analyzer=None):
        self.provider = provider
        self.deep_analyzer = deep_analyzer

    async def analyze_article(self, content: str, facets: Iterable[str], title: str = "") -> AnalysisResult:
        facets = [f for f in FACETS if f in set(facets)]
        result = AnalysisResult(provider=self.provider.name, model=self.provider.model)
        succeeded = 0

        for facet in facets:
            try:
                value = await self._run_facet(facet, title, content)
            except Exception as e:
                logger.warning(f"{_FACET_LABELS[facet]} analysis failed with {self.provider.model}: {e}")
                result.partial_errors.append(f"{_FACET_LABELS[facet]}: {e}")
                continue
            setattr(result, "importance_score" if facet == "importance" else facet, value)
            succeeded += 1

        usage = self.provider.usage
        result.input_tokens = usage.input_tokens
        result.output_tokens = usage.output_tokens
        result.cost = estimate_cost(self.provider.model, usage.total_tokens)

        reflection_provider = getattr(self.deep_analyzer, "reflection_provider", None)
        if reflection_provider is not None and reflection_provider is not self.provider:
            spent = reflection_provider.usage.total_tokens
            result.reflection_tokens = spent
            result.reflection_cost = estimate_cost(reflection_provider.model, spent)

        if succeeded == 0:
            raise AnalysisFailed(result.partial_errors)
        return result

    async def _run_facet(self, facet: str, title: str, content: str):
        if facet == "summary":
            return await self.provider.summarize(content)
        if facet == "keywords":
            return await self.provider.extract_keywords(content)
        if facet == "category":
            return await self.provider.categorize(content)
        if facet == "sentiment":
            return await self.provider.analyze_sentiment(content)
        if facet == "importance":
            return await self.provider.rate_importance(content)
        if facet == "insights":
            if self.deep_analyzer is None:
                raise RuntimeError("deep analysis is not configured")
            return await self.deep_analyzer.analyze(self.provider, title, content)
        raise ValueError(f"Unknown facet '{facet}'")

    async def embed(self, text: str) -> List[float]:
        return await self.provider.embed(text)

    async def chat(self, messages: List[Dict[str, str]], **options) -> ChatResponse:
        response = await self.provider.chat(messages, **options)
        self.provider.usage.add(response)
        return response
