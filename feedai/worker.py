"""
Worker pool: drives analysis jobs from pending to a terminal state.

Each pass claims up to `concurrency` jobs and runs them together; a job's
failure never affects its siblings or the loop. Store calls are synchronous
SQLAlchemy and run in a thread so they don't block in-flight provider calls.
"""
import asyncio
import logging
import time
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from feedai.deep_analysis import DeepAnalyzer, ReflectionEngine
from feedai.errors import ArticleNotFound
from feedai.job_store import JobStore
from feedai.language import detect_language, detect_script
from feedai.metrics import MetricsCollector, create_metric, estimate_cost
from feedai.model_router import ModelRouter, ProviderConfig
from feedai.models import AnalysisJob, Article, ProviderSettings, utcnow
from feedai.notifications import LogNotifier, Notifier
from feedai.providers.base import LLMProvider
from feedai.providers.factory import create_provider
from feedai.providers.service import AnalysisResult, AnalysisService
from feedai.schemas import JobOutcome

logger = logging.getLogger(__name__)

# Importance is always scored so every analysed article can be ranked
FACETS_BY_KIND = {
    "summary": ("summary", "importance"),
    "keywords": ("keywords", "importance"),
    "category": ("category", "importance"),
    "sentiment": ("sentiment", "importance"),
    "all": ("summary", "keywords", "category", "sentiment", "importance"),
}


class WorkerPool:

    def __init__(
        self,
        store: JobStore,
        session_factory: Callable[[], Session],
        router: ModelRouter,
        metrics: MetricsCollector,
        provider_factory: Callable[[ProviderConfig], LLMProvider] = create_provider,
        notifier: Optional[Notifier] = None,
        concurrency: int = 3,
        poll_interval: float = 5.0,
        error_interval: float = 10.0,
        enable_deep_analysis: bool = True,
        max_reflection_rounds: int = 2,
        reflection_quality_threshold: float = 7.0,
    ):
        self.store = store
        self.session_factory = session_factory
        self.router = router
        self.metrics = metrics
        self.provider_factory = provider_factory
        self.notifier = notifier or LogNotifier()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.error_interval = error_interval
        self.enable_deep_analysis = enable_deep_analysis
        self.max_reflection_rounds = max_reflection_rounds
        self.reflection_quality_threshold = reflection_quality_threshold
        self._stop_event = asyncio.Event()
        self._running = False

    @classmethod
    def from_settings(cls, settings, store, session_factory, router, metrics, **kwargs) -> "WorkerPool":
        return cls(
            store=store,
            session_factory=session_factory,
            router=router,
            metrics=metrics,
            concurrency=settings.concurrency,
            poll_interval=settings.poll_interval,
            error_interval=settings.error_interval,
            enable_deep_analysis=settings.enable_deep_analysis,
            max_reflection_rounds=settings.max_reflection_rounds,
            reflection_quality_threshold=settings.reflection_quality_threshold,
            **kwargs,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    async def start(self):
        """Run until stop() is called. Calling start() on a running pool is a no-op."""
        if self._running:
            logger.info("Worker pool already running")
            return
        self._running = True
        self._stop_event.clear()
        logger.info(f"Worker pool started (concurrency={self.concurrency})")

        try:
            while not self._stop_event.is_set():
                try:
                    processed = await self.run_once()
                except Exception as e:
                    logger.error(f"Worker loop error, pausing {self.error_interval}s: {e}")
                    await self._sleep(self.error_interval)
                    continue
                if processed == 0:
                    await self._sleep(self.poll_interval)
        finally:
            self._running = False
            logger.info("Worker pool stopped")

    def stop(self):
        """Claim no new work. In-flight jobs finish; an idle sleep ends immediately."""
        self._stop_event.set()

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_once(self) -> int:
        """Claim one batch and process it. Returns the number of jobs claimed."""
        jobs = await asyncio.to_thread(self.store.claim_batch, self.concurrency)
        if not jobs:
            return 0
        logger.info(f"Claimed {len(jobs)} jobs: {[job.id for job in jobs]}")
        await asyncio.gather(*(self.process(job) for job in jobs), return_exceptions=True)
        return len(jobs)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def process(self, job: AnalysisJob):
        """Run one claimed job to completed or back through fail_or_retry. Never raises."""
        started = time.monotonic()
        model = "unknown"
        language = "other"
        content_length = 0

        try:
            article, user_settings = await asyncio.to_thread(self._load, job.article_id)
            content = article.content
            content_length = len(content)
            language = detect_language(content or article.title)

            config = self._provider_config(user_settings, language, "analysis")
            model = config.model
            provider = self.provider_factory(config)

            facets = list(FACETS_BY_KIND[job.kind])
            deep_analyzer = None
            if job.kind == "all" and self.enable_deep_analysis:
                facets.append("insights")
                deep_analyzer = self._deep_analyzer(job.article_id, user_settings, language)

            logger.info(
                f"[job {job.id}] analysing article {job.article_id} with {model} "
                f"({language}, est. ${estimate_cost(model, content_length):.5f})"
            )
            logger.debug(f"[job {job.id}] dominant script: {detect_script(content or article.title)}")
            result = await AnalysisService(provider, deep_analyzer).analyze_article(
                content, facets, title=article.title
            )
            elapsed_ms = (time.monotonic() - started) * 1000

            await asyncio.to_thread(self._persist, job.article_id, result, elapsed_ms)
            await asyncio.to_thread(self.store.complete, job.id, JobOutcome(
                provider=result.provider,
                model=result.model,
                total_tokens=result.total_tokens,
                cost=result.total_cost,
                partial_errors=result.partial_errors,
            ))
        except Exception as e:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.error(f"[job {job.id}] analysis failed: {e}")
            self._record(job, model, language, content_length, elapsed_ms, success=False, error=str(e))
            try:
                await asyncio.to_thread(self.store.fail_or_retry, job.id, str(e))
            except Exception as store_error:
                logger.error(f"[job {job.id}] could not record failure: {store_error}")
            return

        # Reflection calls record their own metrics; this one covers the analysis model
        self._record(
            job, model, language, content_length, elapsed_ms,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost=result.cost,
            error="; ".join(result.partial_errors) or None,
        )
        if result.partial_errors:
            logger.warning(f"[job {job.id}] completed with partial errors: {result.partial_errors}")
        else:
            logger.info(f"[job {job.id}] completed in {elapsed_ms:.0f}ms (${result.total_cost:.5f})")

        try:
            await self.notifier.notify_analysis_complete(article.owner_id, article.id, article.title)
        except Exception as e:
            logger.warning(f"[job {job.id}] notification failed: {e}")

    def _provider_config(self, user_settings: Optional[ProviderSettings], language: str, stage: str) -> ProviderConfig:
        """The owner's configuration when present, otherwise the routed default."""
        if user_settings is None:
            return self.router.config_for(language, stage)
        return ProviderConfig(
            provider=user_settings.provider,
            model=user_settings.model,
            api_key=user_settings.api_key or self.router.credentials.get(user_settings.provider),
            base_url=user_settings.base_url or self.router.base_urls.get(user_settings.provider),
            max_tokens=user_settings.max_tokens or 2000,
            temperature=user_settings.temperature if user_settings.temperature is not None else 0.7,
            timeout=self.router.timeout,
        )

    def _deep_analyzer(self, article_id: str, user_settings, language: str) -> DeepAnalyzer:
        if self.max_reflection_rounds <= 0:
            return DeepAnalyzer()
        reflection_provider = self.provider_factory(self._provider_config(user_settings, language, "reflection"))
        return DeepAnalyzer(ReflectionEngine(
            reflection_provider,
            metrics=self.metrics,
            max_rounds=self.max_reflection_rounds,
            quality_threshold=self.reflection_quality_threshold,
            article_id=article_id,
            language=language,
        ))

    def _record(self, job, model, language, content_length, elapsed_ms,
                input_tokens=0, output_tokens=0, cost=0.0, success=True, error=None):
        self.metrics.record(create_metric(
            article_id=job.article_id,
            stage="analysis",
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

    # ------------------------------------------------------------------
    # Article store access (runs in a worker thread)
    # ------------------------------------------------------------------

    def _load(self, article_id: str) -> Tuple[Article, Optional[ProviderSettings]]:
        db = self.session_factory()
        try:
            article = db.get(Article, article_id)
            if article is None:
                raise ArticleNotFound(article_id)
            user_settings = db.get(ProviderSettings, article.owner_id) if article.owner_id else None
            return article, user_settings
        finally:
            db.close()

    def _persist(self, article_id: str, result: AnalysisResult, elapsed_ms: float):
        """Write successful facets back to the article. Failed facets leave existing values untouched."""
        db = self.session_factory()
        try:
            article = db.get(Article, article_id)
            if article is None:
                raise ArticleNotFound(article_id)

            if result.summary is not None:
                article.summary = result.summary
            if result.keywords is not None:
                article.keywords = result.keywords
            if result.category is not None:
                article.category = result.category
            if result.sentiment is not None:
                article.sentiment = result.sentiment
            if result.importance_score is not None:
                article.importance_score = result.importance_score

            insights = result.insights
            if insights is not None:
                article.one_line_summary = insights.one_line_summary
                article.main_points = [p.model_dump() for p in insights.main_points]
                article.key_quotes = [q.model_dump() for q in insights.key_quotes]
                article.score_dimensions = insights.score_dimensions.model_dump() if insights.score_dimensions else None
                article.analysis_schema_version = insights.schema_version
                article.reflection_rounds = insights.reflection_rounds

            article.analysis_model = result.model
            article.processing_time_ms = int(elapsed_ms)
            article.analyzed_at = utcnow()
            db.commit()
        finally:
            db.close()
