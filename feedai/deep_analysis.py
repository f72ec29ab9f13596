"""
Structured deep analysis with optional reflective refinement.

The analysis-stage model produces a DeepAnalysis (one-line summary, main
points, key quotes, score dimensions); a reflection-stage model then reviews
it and asks for improvements until the quality threshold is met or the round
budget runs out.
"""
import json
import logging
import re
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from feedai.metrics import MetricsCollector, create_metric
from feedai.providers.base import LLMProvider
from feedai.schemas import DeepAnalysis, ReflectionResult

logger = logging.getLogger(__name__)

ANALYSIS_BUDGET = 12000
REFLECTION_BUDGET = 3000
IMPROVEMENT_BUDGET = 2000

JSON_FORMAT = {"type": "json_object"}

ANALYSIS_SYSTEM_PROMPT = "You are a senior technical editor who writes precise structured article analyses."

ANALYSIS_SCHEMA_HINT = """{
  "one_line_summary": "one sentence",
  "main_points": [{"point": "claim", "explanation": "why it matters", "importance": 0.8}],
  "key_quotes": [{"quote": "verbatim sentence", "significance": "why it is notable"}],
  "score_dimensions": {"depth": 8, "quality": 9, "practicality": 7, "novelty": 8}
}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_json_reply(reply: str) -> Dict[str, Any]:
    """Decode a JSON object from a model reply, tolerating code fences and surrounding prose."""
    text = _FENCE_RE.sub("", (reply or "").strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in reply: {text[:200]!r}")
        data = json.loads(text[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


def _excerpt(content: str, budget: int) -> str:
    if len(content) <= budget:
        return content
    return content[:budget] + "\n...(truncated)"


class ReflectionEngine:
    """Review-and-improve rounds on a DeepAnalysis using the reflection-stage model."""

    def __init__(
        self,
        provider: LLMProvider,
        metrics: Optional[MetricsCollector] = None,
        max_rounds: int = 2,
        quality_threshold: float = 7.0,
        article_id: str = "unknown",
        language: str = "other",
    ):
        self.provider = provider
        self.metrics = metrics
        self.max_rounds = max_rounds
        self.quality_threshold = quality_threshold
        self.article_id = article_id
        self.language = language

    async def refine(self, content: str, analysis: DeepAnalysis) -> DeepAnalysis:
        """
        Run up to max_rounds reflect/improve rounds. Any failure keeps the
        latest good analysis; refinement never makes the job fail.
        """
        current = analysis
        rounds = 0
        while rounds < self.max_rounds:
            reflection = await self.reflect(content, current)
            if reflection is None or not reflection.needs_refinement:
                break
            improved = await self.improve(content, current, reflection)
            if improved is None:
                break
            current = improved
            rounds += 1
        return current.model_copy(update={"reflection_rounds": rounds})

    async def reflect(self, content: str, analysis: DeepAnalysis) -> Optional[ReflectionResult]:
        prompt = f"""Review the quality of this article analysis.

ARTICLE EXCERPT
{_excerpt(content, REFLECTION_BUDGET)}

ANALYSIS
{analysis.model_dump_json(indent=2)}

Score each dimension out of 10: comprehensiveness, accuracy, depth, consistency, objectivity.
Reply with JSON: {{"quality": 7.5, "issues": ["..."], "suggestions": ["..."]}}"""

        data = await self._call(
            [
                {"role": "system", "content": "You are a strict senior editor reviewing article analyses."},
                {"role": "user", "content": prompt},
            ]
        )
        if data is None:
            return None
        quality = float(data.get("quality") or 0)
        return ReflectionResult(
            quality=quality,
            issues=[str(i) for i in data.get("issues") or []],
            suggestions=[str(s) for s in data.get("suggestions") or []],
            needs_refinement=quality < self.quality_threshold,
        )

    async def improve(self, content: str, analysis: DeepAnalysis, reflection: ReflectionResult) -> Optional[DeepAnalysis]:
        issues = "\n".join(f"{i}. {issue}" for i, issue in enumerate(reflection.issues, 1))
        suggestions = "\n".join(f"{i}. {s}" for i, s in enumerate(reflection.suggestions, 1))
        prompt = f"""Improve the article analysis using the review below.

ARTICLE EXCERPT
{_excerpt(content, IMPROVEMENT_BUDGET)}

CURRENT ANALYSIS
{analysis.model_dump_json(indent=2)}

ISSUES
{issues or "none listed"}

SUGGESTIONS
{suggestions or "none listed"}

Reply with the complete improved analysis as JSON in this shape:
{ANALYSIS_SCHEMA_HINT}"""

        data = await self._call(
            [
                {"role": "system", "content": "You are a senior editor refining article analyses from review notes."},
                {"role": "user", "content": prompt},
            ]
        )
        if data is None:
            return None
        merged = {**analysis.model_dump(), **{k: v for k, v in data.items() if v}}
        try:
            return DeepAnalysis.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"[article {self.article_id}] improved analysis rejected: {e.error_count()} schema errors")
            return None

    async def _call(self, messages) -> Optional[Dict[str, Any]]:
        started = time.monotonic()
        before = (self.provider.usage.input_tokens, self.provider.usage.output_tokens)
        error = None
        data = None
        try:
            response = await self.provider.chat(messages, response_format=JSON_FORMAT, temperature=0.3)
            self.provider.usage.add(response)
            data = parse_json_reply(response.content)
        except Exception as e:
            error = str(e)
            logger.warning(f"[article {self.article_id}] reflection call failed: {e}")

        if self.metrics is not None:
            self.metrics.record(create_metric(
                article_id=self.article_id,
                stage="reflection",
                model=self.provider.model,
                language=self.language,
                content_length=sum(len(m["content"]) for m in messages),
                processing_time=(time.monotonic() - started) * 1000,
                input_tokens=self.provider.usage.input_tokens - before[0],
                output_tokens=self.provider.usage.output_tokens - before[1],
                success=error is None,
                error_message=error,
            ))
        return data


class DeepAnalyzer:
    """Produces the structured multi-point analysis, then hands it to reflection if configured."""

    def __init__(self, reflection: Optional[ReflectionEngine] = None):
        self.reflection = reflection

    @property
    def reflection_provider(self) -> Optional[LLMProvider]:
        return self.reflection.provider if self.reflection is not None else None

    async def analyze(self, provider: LLMProvider, title: str, content: str) -> DeepAnalysis:
        prompt = f"""Analyse the following article.

TITLE
{title}

CONTENT
{provider.truncate(content, ANALYSIS_BUDGET)}

Reply with JSON in exactly this shape (score dimensions range from 1 to 10):
{ANALYSIS_SCHEMA_HINT}"""

        response = await provider.chat(
            [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format=JSON_FORMAT,
            temperature=0.3,
        )
        provider.usage.add(response)
        analysis = DeepAnalysis.model_validate(parse_json_reply(response.content))

        if self.reflection is not None:
            analysis = await self.reflection.refine(content, analysis)
        return analysis
