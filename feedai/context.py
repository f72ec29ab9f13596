"""
Application context: one instance of every collaborator per process, built
at startup and handed to routes through FastAPI dependencies.
"""
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from feedai.database import make_engine, make_session_factory
from feedai.ingest import IngestService
from feedai.job_store import JobStore
from feedai.metrics import MetricsCollector
from feedai.model_router import ModelRouter
from feedai.monitor import MaintenanceLoop, PerformanceMonitor
from feedai.preliminary import PreliminaryEvaluator
from feedai.providers.factory import create_provider
from feedai.settings import Settings
from feedai.worker import WorkerPool


@dataclass
class AppContext:
    settings: Settings
    session_factory: Callable[[], Session]
    store: JobStore
    router: ModelRouter
    metrics: MetricsCollector
    monitor: PerformanceMonitor
    evaluator: PreliminaryEvaluator
    ingest: IngestService
    pool: WorkerPool
    maintenance: MaintenanceLoop


def build_context(settings: Settings, session_factory=None, provider_factory=create_provider, **pool_kwargs) -> AppContext:
    """Wire every collaborator from settings. Extra keyword arguments go to the WorkerPool (e.g. a notifier)."""
    if session_factory is None:
        session_factory = make_session_factory(make_engine(settings.database_url))

    store = JobStore(session_factory, max_retries=settings.max_retries, base_delay=settings.retry_base_delay)
    router = ModelRouter.from_settings(settings)
    metrics = MetricsCollector()
    monitor = PerformanceMonitor(settings.thresholds)
    evaluator = PreliminaryEvaluator(
        router,
        provider_factory=provider_factory,
        metrics=metrics,
        min_value=settings.preliminary_min_value,
        truncate_length=settings.preliminary_truncate_length,
    )
    pool = WorkerPool.from_settings(
        settings, store, session_factory, router, metrics, provider_factory=provider_factory, **pool_kwargs
    )

    return AppContext(
        settings=settings,
        session_factory=session_factory,
        store=store,
        router=router,
        metrics=metrics,
        monitor=monitor,
        evaluator=evaluator,
        ingest=IngestService(session_factory, evaluator, store),
        pool=pool,
        maintenance=MaintenanceLoop(monitor, metrics, store, settings),
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies (override get_context in tests)
# ---------------------------------------------------------------------------

def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(ctx: AppContext = Depends(get_context)):
    """Yield a database session from the application's session factory, closed after the request."""
    db = ctx.session_factory()
    try:
        yield db
    finally:
        db.close()
