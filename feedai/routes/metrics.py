from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from feedai.context import AppContext, get_context
from feedai.schemas import CostAnalysis, MetricsStats, PerformanceAnalysis

router = APIRouter(prefix="/metrics")


def _since(minutes: Optional[int]):
    if minutes is None:
        return None
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


@router.get("/stats", response_model=MetricsStats)
def stats(since_minutes: Optional[int] = None, ctx: AppContext = Depends(get_context)):
    """Aggregate stage metrics, optionally limited to the last `since_minutes`."""
    return ctx.metrics.stats(start=_since(since_minutes))


@router.get("/costs", response_model=CostAnalysis)
def costs(since_minutes: Optional[int] = None, ctx: AppContext = Depends(get_context)):
    return ctx.metrics.analyze_costs(start=_since(since_minutes))


@router.get("/performance", response_model=PerformanceAnalysis)
def performance(slowest: int = 10, ctx: AppContext = Depends(get_context)):
    return ctx.metrics.analyze_performance(slowest)
