"""
In-process metrics for analysis stages.

One AnalysisMetric is recorded per attempted stage execution (success or
failure). The collector is append-only: records are never modified, only
pruned by age.
"""
import logging
import math
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from feedai import model_router
from feedai.schemas import (
    AnalysisMetric,
    CostAnalysis,
    CostTrendPoint,
    GroupStats,
    MetricsStats,
    PerformanceAnalysis,
)

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
HIGH_TOTAL_COST = 1.0  # USD, above which the preliminary filter is suggested


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class MetricsCollector:
    """Thread-safe append-only collection of AnalysisMetric records."""

    def __init__(self):
        self._metrics: List[AnalysisMetric] = []
        self._lock = threading.Lock()

    def record(self, metric: AnalysisMetric):
        with self._lock:
            self._metrics.append(metric)
        logger.debug(
            f"[article {metric.article_id}] {metric.stage} metric: {metric.model} "
            f"{metric.processing_time:.0f}ms ${metric.cost:.5f} success={metric.success}"
        )

    def record_batch(self, metrics: Iterable[AnalysisMetric]):
        metrics = list(metrics)
        with self._lock:
            self._metrics.extend(metrics)

    def all(self) -> List[AnalysisMetric]:
        with self._lock:
            return list(self._metrics)

    def __len__(self):
        with self._lock:
            return len(self._metrics)

    def between(self, start: datetime, end: datetime) -> List[AnalysisMetric]:
        start, end = _aware(start), _aware(end)
        return [m for m in self.all() if start <= _aware(m.timestamp) <= end]

    def since(self, minutes: float) -> List[AnalysisMetric]:
        end = _now()
        return self.between(end - timedelta(minutes=minutes), end)

    def for_article(self, article_id: str) -> List[AnalysisMetric]:
        return [m for m in self.all() if m.article_id == article_id]

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> MetricsStats:
        metrics = self._window(start, end)
        return compute_stats(metrics)

    def analyze_costs(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> CostAnalysis:
        metrics = self._window(start, end)

        by_model: Dict[str, float] = defaultdict(float)
        by_stage: Dict[str, float] = defaultdict(float)
        by_day: Dict[str, List[float]] = defaultdict(list)
        for m in metrics:
            by_model[m.model] += m.cost
            by_stage[m.stage] += m.cost
            by_day[_aware(m.timestamp).date().isoformat()].append(m.cost)

        trend = [
            CostTrendPoint(date=day, cost=sum(costs), count=len(costs))
            for day, costs in sorted(by_day.items())
        ]

        return CostAnalysis(
            total_cost=sum(m.cost for m in metrics),
            by_model=dict(by_model),
            by_stage=dict(by_stage),
            trend=trend,
            suggestions=cost_suggestions(by_model, by_stage),
        )

    def analyze_performance(self, n: int = 10) -> PerformanceAnalysis:
        metrics = self.all()
        if not metrics:
            return PerformanceAnalysis()

        times = sorted(m.processing_time for m in metrics)
        by_model: Dict[str, List[float]] = defaultdict(list)
        for m in metrics:
            by_model[m.model].append(m.processing_time)

        return PerformanceAnalysis(
            avg_processing_time=sum(times) / len(times),
            p50=percentile(times, 0.5),
            p95=percentile(times, 0.95),
            p99=percentile(times, 0.99),
            slowest=sorted(metrics, key=lambda m: m.processing_time, reverse=True)[:n],
            by_model={model: sum(ts) / len(ts) for model, ts in by_model.items()},
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete_older_than(self, days: float) -> int:
        cutoff = _now() - timedelta(days=days)
        with self._lock:
            before = len(self._metrics)
            self._metrics = [m for m in self._metrics if _aware(m.timestamp) >= cutoff]
            deleted = before - len(self._metrics)
        if deleted:
            logger.info(f"Pruned {deleted} metrics older than {days} days")
        return deleted

    def clear(self):
        with self._lock:
            self._metrics = []

    def _window(self, start: Optional[datetime], end: Optional[datetime]) -> List[AnalysisMetric]:
        if start is None and end is None:
            return self.all()
        return self.between(start or datetime.min.replace(tzinfo=timezone.utc), end or _now())


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def compute_stats(metrics: List[AnalysisMetric]) -> MetricsStats:
    """Aggregate a list of metrics. An empty list gives all-zero stats."""
    if not metrics:
        return MetricsStats()

    total = len(metrics)
    success = sum(1 for m in metrics if m.success)
    total_cost = sum(m.cost for m in metrics)

    return MetricsStats(
        total=total,
        success=success,
        failed=total - success,
        success_rate=success / total,
        avg_processing_time=sum(m.processing_time for m in metrics) / total,
        avg_cost=total_cost / total,
        total_cost=total_cost,
        by_model=_group_stats(metrics, "model"),
        by_language=_group_stats(metrics, "language"),
        by_stage=_group_stats(metrics, "stage"),
    )


def _group_stats(metrics: List[AnalysisMetric], key: str) -> Dict[str, GroupStats]:
    groups: Dict[str, List[AnalysisMetric]] = defaultdict(list)
    for m in metrics:
        groups[str(getattr(m, key))].append(m)

    stats = {}
    for name, group in groups.items():
        count = len(group)
        group_cost = sum(m.cost for m in group)
        stats[name] = GroupStats(
            count=count,
            avg_time=sum(m.processing_time for m in group) / count,
            avg_cost=group_cost / count,
            total_cost=group_cost,
        )
    return stats


def percentile(sorted_values: List[float], fraction: float) -> float:
    """Nearest-rank percentile on an ascending list."""
    if not sorted_values:
        return 0.0
    index = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return sorted_values[index]


def cost_suggestions(by_model: Dict[str, float], by_stage: Dict[str, float]) -> List[str]:
    suggestions = []
    if by_model:
        model, cost = max(by_model.items(), key=lambda kv: kv[1])
        suggestions.append(
            f"Model {model} accounts for the largest share of cost (${cost:.4f}); consider a cheaper alternative"
        )
    if by_stage:
        stage, cost = max(by_stage.items(), key=lambda kv: kv[1])
        suggestions.append(
            f"The {stage} stage is the most expensive (${cost:.4f}); review its model selection"
        )
    total = sum(by_model.values())
    if total > HIGH_TOTAL_COST:
        suggestions.append(
            f"Total cost ${total:.2f} is high; raise the preliminary minimum value to filter more articles"
        )
    return suggestions


def create_metric(
    article_id: str,
    stage: str,
    model: str,
    language: str = "other",
    content_length: int = 0,
    processing_time: float = 0,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cost: Optional[float] = None,
    success: bool = True,
    error_message: Optional[str] = None,
) -> AnalysisMetric:
    """Build a metric stamped now. Cost defaults to the token-based price for `model`."""
    total_tokens = input_tokens + output_tokens
    if cost is None:
        cost = model_router.estimate_cost(model, total_tokens)
    return AnalysisMetric(
        article_id=article_id,
        stage=stage,
        model=model,
        language=language,
        content_length=content_length,
        processing_time=processing_time,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        cost=cost,
        success=success,
        error_message=error_message,
    )


def estimate_cost(model: str, content_length: int) -> float:
    """Rough pre-call cost estimate from content length (about 4 characters per token)."""
    tokens = math.ceil(content_length / CHARS_PER_TOKEN)
    return model_router.estimate_cost(model, tokens)
