import asyncio
import logging
from typing import Callable, List

from sqlalchemy.orm import Session

from feedai.errors import ArticleNotFound
from feedai.job_store import JobStore
from feedai.models import Article, utcnow
from feedai.preliminary import PreliminaryEvaluator
from feedai.schemas import ArticleIngest, IngestResult, PreliminaryEvaluation

logger = logging.getLogger(__name__)


class IngestService:
    """
    Entry point for new articles: store them, run the preliminary evaluation,
    and queue a full analysis for the ones worth it (priority = value).
    """

    def __init__(self, session_factory: Callable[[], Session], evaluator: PreliminaryEvaluator, store: JobStore):
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.store = store

    async def ingest(self, article: ArticleIngest) -> IngestResult:
        await asyncio.to_thread(self._upsert, article)

        evaluation = await self.evaluator.evaluate(article.title, article.body or "", article.id)
        await asyncio.to_thread(self._save_evaluation, article.id, evaluation)

        if evaluation.ignore:
            logger.info(f"[{article.source}] [SKIP] '{article.title[:60]}' (value={evaluation.value})")
            return IngestResult(article_id=article.id, evaluation=evaluation)

        job_id = await asyncio.to_thread(self.store.enqueue, article.id, "all", evaluation.value)
        logger.info(
            f"[{article.source}] [QUEUE] '{article.title[:60]}' (value={evaluation.value}, job={job_id})"
        )
        return IngestResult(article_id=article.id, evaluation=evaluation, job_id=job_id, queued=job_id is not None)

    async def ingest_batch(self, articles: List[ArticleIngest]) -> List[IngestResult]:
        results = []
        for article in articles:
            results.append(await self.ingest(article))
        return results

    def _upsert(self, article: ArticleIngest):
        db = self.session_factory()
        try:
            # merge() inserts new ids and updates existing ones; enrichment fields are left alone
            db.merge(Article(
                id=article.id,
                source=article.source,
                title=article.title,
                author=article.author,
                url=article.url,
                body=article.body,
                owner_id=article.owner_id,
                published_at=article.published_at,
            ))
            db.commit()
        finally:
            db.close()

    def _save_evaluation(self, article_id: str, evaluation: PreliminaryEvaluation):
        db = self.session_factory()
        try:
            db_article = db.get(Article, article_id)
            if db_article is None:
                raise ArticleNotFound(article_id)
            db_article.prelim_status = "rejected" if evaluation.ignore else "passed"
            db_article.prelim_ignore = evaluation.ignore
            db_article.prelim_reason = evaluation.reason
            db_article.prelim_value = evaluation.value
            db_article.prelim_summary = evaluation.summary
            db_article.prelim_language = evaluation.language
            db_article.prelim_confidence = evaluation.confidence
            db_article.prelim_model = evaluation.model
            db_article.prelim_analyzed_at = utcnow()
            db.commit()
        finally:
            db.close()
