import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from feedai.context import AppContext, get_context, get_db
from feedai.models import Article
from feedai.schemas import ArticleIngest, ArticleResponse, IngestResult

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/ingest", response_model=List[IngestResult])
async def ingest(articles: List[ArticleIngest], ctx: AppContext = Depends(get_context)):
    """
    Accept a batch of raw articles, store them, run the preliminary evaluation
    and queue a full analysis for each article that passes.
    """
    logger.info(f"[/ingest] Received batch of {len(articles)} articles")
    results = await ctx.ingest.ingest_batch(articles)
    queued = sum(1 for r in results if r.queued)
    logger.info(f"[/ingest] Batch processed: {queued}/{len(results)} queued for analysis")
    return results


@router.get("/articles", response_model=List[ArticleResponse])
def articles(analyzed: Optional[bool] = None, limit: int = 100, db: Session = Depends(get_db)):
    """
    Return articles with their enrichment fields, most important first.
    `analyzed=true` restricts to articles the worker has already processed.
    """
    query = db.query(Article)
    if analyzed is True:
        query = query.filter(Article.analyzed_at.isnot(None))
    elif analyzed is False:
        query = query.filter(Article.analyzed_at.is_(None))
    results = (
        query.order_by(Article.importance_score.desc().nulls_last(), Article.ingested_at.desc())
        .limit(limit)
        .all()
    )
    logger.info(f"[/articles] Returning {len(results)} articles")
    return results
