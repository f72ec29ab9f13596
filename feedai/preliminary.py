"""
Preliminary evaluation: a cheap gate in front of deep analysis.

A small model rates the article; low-value articles are not queued for the
expensive analysis. Evaluation fails open: on provider trouble the article is
kept and flagged for manual review.
"""
import asyncio
import logging
import math
import time
from typing import Callable, Iterable, List, Optional

from feedai.errors import AnalysisFailed, ConfigurationError
from feedai.language import detect_language
from feedai.metrics import MetricsCollector, create_metric
from feedai.model_router import ModelRouter, ProviderConfig
from feedai.providers.base import LLMProvider
from feedai.providers.factory import create_provider
from feedai.providers.service import AnalysisService
from feedai.schemas import PreliminaryEvaluation

logger = logging.getLogger(__name__)

PRELIMINARY_FACETS = ("summary", "category", "importance")
SUMMARY_PREVIEW_CHARS = 50

FALLBACK_VALUE = 3
FALLBACK_REASON = "evaluation failed, needs manual review"
FALLBACK_SUMMARY = "Content pending analysis"


def importance_to_value(score: Optional[float]) -> int:
    """Map an importance score in [0, 1] to 1-5 (round half up, clamped). Missing → 0.5."""
    if score is None:
        score = 0.5
    return max(1, min(5, int(math.floor(score * 5 + 0.5))))


def confidence_for(content_length: int, value: int) -> float:
    """Longer content → more confidence; extreme values from a cheap model are trusted less."""
    confidence = min(0.5 + content_length / 4000, 1.0)
    if value <= 1 or value >= 5:
        confidence *= 0.8
    return round(confidence, 2)


def _preview(summary: Optional[str]) -> str:
    summary = (summary or "").strip()
    if len(summary) > SUMMARY_PREVIEW_CHARS:
        return summary[:SUMMARY_PREVIEW_CHARS] + "..."
    return summary


class PreliminaryEvaluator:

    def __init__(
        self,
        router: ModelRouter,
        provider_factory: Callable[[ProviderConfig], LLMProvider] = create_provider,
        metrics: Optional[MetricsCollector] = None,
        min_value: int = 3,
        truncate_length: int = 2000,
    ):
        self.router = router
        self.provider_factory = provider_factory
        self.metrics = metrics
        self.min_value = min_value
        self.truncate_length = truncate_length

    async def evaluate(self, title: str, content: str, article_id: Optional[str] = None) -> PreliminaryEvaluation:
        """
        Rate one article. Never raises for provider failures; returns the
        non-ignoring fallback instead. Configuration errors still propagate.
        """
        text = (content or "")[:self.truncate_length]
        language = detect_language(text or title)
        model = None
        started = time.monotonic()

        try:
            config = self.router.config_for(language, "preliminary")
            model = config.model
            service = AnalysisService(self.provider_factory(config))
            result = await service.analyze_article(f"Title: {title}\n\n{text}", PRELIMINARY_FACETS)
            if result.partial_errors:
                # A half-answered evaluation is not trusted to reject anything
                raise AnalysisFailed(result.partial_errors)
        except ConfigurationError:
            raise
        except Exception as e:
            elapsed = (time.monotonic() - started) * 1000
            logger.warning(f"[article {article_id}] preliminary evaluation failed, keeping article: {e}")
            self._record(article_id, model or "unknown", language, len(text), elapsed, success=False, error=str(e))
            return PreliminaryEvaluation(
                ignore=False,
                reason=FALLBACK_REASON,
                value=FALLBACK_VALUE,
                summary=FALLBACK_SUMMARY,
                language=language,
                confidence=confidence_for(len(text), FALLBACK_VALUE),
                model=model,
            )

        elapsed = (time.monotonic() - started) * 1000
        value = importance_to_value(result.importance_score)
        evaluation = PreliminaryEvaluation(
            ignore=value < self.min_value,
            reason=result.category or "Uncategorized",
            value=value,
            summary=_preview(result.summary),
            language=language,
            confidence=confidence_for(len(text), value),
            model=model,
        )
        self._record(
            article_id, model, language, len(text), elapsed,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost=result.cost,
        )
        logger.info(
            f"[article {article_id}] preliminary value {value}/5 ({language}, {model})"
            + (" (ignored)" if evaluation.ignore else "")
        )
        return evaluation

    async def evaluate_batch(self, entries: Iterable) -> List[PreliminaryEvaluation]:
        """Evaluate several articles concurrently. Entries need `title` and `content`; `id` is optional."""
        return list(await asyncio.gather(*[
            self.evaluate(entry.title, entry.content, getattr(entry, "id", None))
            for entry in entries
        ]))

    def _record(self, article_id, model, language, content_length, elapsed_ms,
                input_tokens=0, output_tokens=0, cost=0.0, success=True, error=None):
        if self.metrics is None:
            return
        self.metrics.record(create_metric(
            article_id=article_id or "unknown",
            stage="preliminary",
            model=model,
            language=language,
            content_length=content_length,
            processing_time=elapsed_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            success=success,
            error_message=error,
        ))
