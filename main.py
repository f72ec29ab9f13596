import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from feedai.context import build_context
from feedai.database import init_db, make_engine, make_session_factory
from feedai.routes.articles import router as articles_router
from feedai.routes.metrics import router as metrics_router
from feedai.routes.queue import router as queue_router
from feedai.settings import load_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    settings = load_settings()
    engine = make_engine(settings.database_url)

    logger.info("Creating database tables if they don't exist...")
    init_db(engine)

    context = build_context(settings, session_factory=make_session_factory(engine))
    # Missing credentials or an incomplete model table stop the app here, not per job
    context.router.validate()
    app.state.context = context

    recovered = context.store.recover_stale(settings.stale_job_minutes)
    if recovered:
        logger.info(f"Returned {recovered} interrupted jobs to the queue")

    logger.info("Starting analysis worker pool and maintenance loop...")
    tasks = [
        asyncio.create_task(context.pool.start()),
        asyncio.create_task(context.maintenance.start()),
    ]

    yield

    # --- Shutdown ---
    logger.info("Stopping worker pool (in-flight jobs finish first)...")
    context.pool.stop()
    context.maintenance.stop()
    _, pending = await asyncio.wait(tasks, timeout=settings.provider_timeout)
    for task in pending:
        task.cancel()
    engine.dispose()


app = FastAPI(
    title="Feed Analysis Pipeline API",
    description="Queues, analyses and monitors language-model enrichment of feed articles.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(articles_router)
app.include_router(queue_router)
app.include_router(metrics_router)
