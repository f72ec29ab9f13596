"""
Unit tests for structured deep analysis and reflective refinement.

Run with: pytest tests/test_deep_analysis.py -v
"""
import asyncio
import json

import pytest

from fakes import DEEP_ANALYSIS_REPLY, FakeProvider
from feedai.deep_analysis import DeepAnalyzer, ReflectionEngine, parse_json_reply
from feedai.metrics import MetricsCollector
from feedai.schemas import DeepAnalysis, ReflectionResult

CONTENT = "Running a job queue on a relational database needs atomic claims and retries."
LOW_QUALITY = json.dumps({"quality": 5, "issues": ["too vague"], "suggestions": ["cite the article"]})


def make_analysis(**overrides) -> DeepAnalysis:
    return DeepAnalysis.model_validate({**DEEP_ANALYSIS_REPLY, **overrides})


def make_engine(provider, **kwargs):
    defaults = {"metrics": MetricsCollector(), "max_rounds": 2, "quality_threshold": 7.0, "article_id": "a1", "language": "en"}
    defaults.update(kwargs)
    return ReflectionEngine(provider, **defaults)


# ---------------------------------------------------------------------------
# parse_json_reply
# ---------------------------------------------------------------------------

class TestParseJsonReply:
    def test_plain_object(self):
        assert parse_json_reply('{"quality": 8}') == {"quality": 8}

    def test_code_fence(self):
        assert parse_json_reply('```json\n{"quality": 8}\n```') == {"quality": 8}

    def test_surrounding_prose(self):
        assert parse_json_reply('Here is the review: {"quality": 8} Hope it helps.') == {"quality": 8}

    @pytest.mark.parametrize("reply", ["", "no json here", "[1, 2, 3]"])
    def test_rejects_non_objects(self, reply):
        with pytest.raises(ValueError):
            parse_json_reply(reply)


# ---------------------------------------------------------------------------
# DeepAnalyzer
# ---------------------------------------------------------------------------

class TestDeepAnalyzer:
    def test_produces_structured_analysis(self):
        provider = FakeProvider()
        analysis = asyncio.run(DeepAnalyzer().analyze(provider, "Queues", CONTENT))

        assert analysis.schema_version == 1
        assert analysis.one_line_summary.startswith("A practical guide")
        assert len(analysis.main_points) == 2
        assert analysis.key_quotes[0].quote == "The database is the queue."
        assert analysis.score_dimensions.practicality == 9
        assert analysis.reflection_rounds == 0
        assert provider.usage.total_tokens == 120

    def test_unparseable_reply_raises(self):
        provider = FakeProvider(replies={"insights": "I cannot analyse this."})
        with pytest.raises(ValueError):
            asyncio.run(DeepAnalyzer().analyze(provider, "Queues", CONTENT))

    def test_runs_reflection_when_configured(self):
        provider = FakeProvider()
        analyzer = DeepAnalyzer(reflection=make_engine(provider))
        asyncio.run(analyzer.analyze(provider, "Queues", CONTENT))
        assert provider.calls == ["insights", "reflect"]


# ---------------------------------------------------------------------------
# ReflectionEngine
# ---------------------------------------------------------------------------

class TestReflectionEngine:
    def test_good_analysis_is_not_refined(self):
        provider = FakeProvider()
        refined = asyncio.run(make_engine(provider).refine(CONTENT, make_analysis()))
        assert refined.reflection_rounds == 0
        assert refined.one_line_summary == DEEP_ANALYSIS_REPLY["one_line_summary"]
        assert provider.calls == ["reflect"]

    def test_low_quality_is_improved_until_round_budget(self):
        provider = FakeProvider(replies={"reflect": LOW_QUALITY})
        refined = asyncio.run(make_engine(provider).refine(CONTENT, make_analysis()))

        assert refined.reflection_rounds == 2
        assert refined.one_line_summary == "An improved one-line summary."
        assert len(refined.main_points) == 2
        assert provider.calls == ["reflect", "improve", "reflect", "improve"]

    def test_zero_rounds_skips_reflection(self):
        provider = FakeProvider(replies={"reflect": LOW_QUALITY})
        refined = asyncio.run(make_engine(provider, max_rounds=0).refine(CONTENT, make_analysis()))
        assert refined.reflection_rounds == 0
        assert provider.calls == []

    def test_reflection_failure_keeps_analysis(self):
        provider = FakeProvider(fail={"reflect"})
        original = make_analysis()
        refined = asyncio.run(make_engine(provider).refine(CONTENT, original))
        assert refined.reflection_rounds == 0
        assert refined.main_points == original.main_points

    def test_invalid_improvement_is_rejected(self):
        improved = json.dumps({"score_dimensions": {"depth": 50, "quality": 8, "practicality": 8, "novelty": 8}})
        provider = FakeProvider(replies={"reflect": LOW_QUALITY, "improve": improved})
        refined = asyncio.run(make_engine(provider).refine(CONTENT, make_analysis()))
        assert refined.reflection_rounds == 0
        assert refined.score_dimensions.depth == 8

    def test_reflect_parses_review(self):
        provider = FakeProvider(replies={"reflect": LOW_QUALITY})
        reflection = asyncio.run(make_engine(provider).reflect(CONTENT, make_analysis()))
        assert reflection == ReflectionResult(
            quality=5, issues=["too vague"], suggestions=["cite the article"], needs_refinement=True
        )

    def test_every_call_is_recorded_as_reflection_metric(self):
        metrics = MetricsCollector()
        provider = FakeProvider(replies={"reflect": LOW_QUALITY})
        asyncio.run(make_engine(provider, metrics=metrics).refine(CONTENT, make_analysis()))

        recorded = metrics.all()
        assert len(recorded) == 4
        assert {m.stage for m in recorded} == {"reflection"}
        assert all(m.article_id == "a1" and m.language == "en" for m in recorded)
        assert all(m.total_tokens == 120 for m in recorded)

    def test_failed_call_is_recorded_as_failure(self):
        metrics = MetricsCollector()
        provider = FakeProvider(fail={"reflect"})
        asyncio.run(make_engine(provider, metrics=metrics).refine(CONTENT, make_analysis()))

        [metric] = metrics.all()
        assert metric.success is False
        assert "reflect unavailable" in metric.error_message
        assert metric.total_tokens == 0
