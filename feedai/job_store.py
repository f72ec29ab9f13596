import logging
from datetime import timedelta
from typing import Callable, Iterable, List, Optional, Union

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from feedai.models import ACTIVE_STATUSES, JOB_KINDS, AnalysisJob, utcnow
from feedai.schemas import EnqueueRequest, JobOutcome, QueueStatus

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5


class JobStore:
    """
    Durable record of analysis jobs and their state machine.

    pending → processing → completed
                         ↘ pending (retry_count + 1, backoff) → ... → failed

    Every public method opens and closes its own session, so a single store
    can be shared by concurrent workers (threads or processes).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_retries: int = 3,
        base_delay: float = 5.0,
        clock: Optional[Callable] = None,
    ):
        """
        Args:
            session_factory: callable returning a new SQLAlchemy Session (e.g. a sessionmaker)
            max_retries: failures after which a job is marked failed
            base_delay: seconds; retry delay is base_delay * 2^retry_count
            clock: returns the current naive-UTC time (injectable for tests)
        """
        self._session_factory = session_factory
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._clock = clock or utcnow

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(self, article_id: str, kind: str, priority: int = DEFAULT_PRIORITY) -> Optional[int]:
        """
        Create a pending job unless one is already pending/processing for the
        same (article, kind). Returns the new job id, or None for the no-op case.
        """
        db = self._session_factory()
        try:
            return self._enqueue(db, article_id, kind, priority)
        finally:
            db.close()

    def enqueue_batch(self, items: Iterable[Union[EnqueueRequest, dict]]) -> List[Optional[int]]:
        """Enqueue each item with the same dedup rule. Duplicates never fail the batch."""
        db = self._session_factory()
        try:
            results = []
            for item in items:
                if isinstance(item, dict):
                    item = EnqueueRequest.model_validate(item)
                results.append(self._enqueue(db, item.article_id, item.kind, item.priority))
            return results
        finally:
            db.close()

    def _enqueue(self, db: Session, article_id: str, kind: str, priority: int) -> Optional[int]:
        if kind not in JOB_KINDS:
            raise ValueError(f"Unknown analysis kind '{kind}', expected one of {JOB_KINDS}")

        if self._has_active_job(db, article_id, kind):
            logger.debug(f"[article {article_id}] '{kind}' job already queued, skipping")
            return None

        job = AnalysisJob(
            article_id=article_id,
            kind=kind,
            priority=priority,
            status="pending",
            retry_count=0,
            created_at=self._clock(),
        )
        db.add(job)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with another enqueuer; the partial unique index kept the invariant
            db.rollback()
            logger.debug(f"[article {article_id}] concurrent '{kind}' enqueue, skipping")
            return None

        logger.info(f"[job {job.id}] queued '{kind}' for article {article_id} (priority={priority})")
        return job.id

    @staticmethod
    def _has_active_job(db: Session, article_id: str, kind: str) -> bool:
        existing = db.execute(
            select(AnalysisJob.id)
            .where(
                AnalysisJob.article_id == article_id,
                AnalysisJob.kind == kind,
                AnalysisJob.status.in_(ACTIVE_STATUSES),
            )
            .limit(1)
        ).first()
        return existing is not None

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim_batch(self, limit: int) -> List[AnalysisJob]:
        """
        Claim up to `limit` eligible pending jobs, highest priority first.

        Each job moves to processing through a conditional UPDATE guarded by
        status='pending', so two claimers can never both win the same job.
        Candidates lost to another claimer are replaced by re-selecting until
        the limit is reached or nothing eligible remains.
        """
        if limit <= 0:
            return []

        db = self._session_factory()
        claimed_ids: List[int] = []
        try:
            while len(claimed_ids) < limit:
                now = self._clock()
                candidate_ids = db.execute(
                    select(AnalysisJob.id)
                    .where(
                        AnalysisJob.status == "pending",
                        or_(AnalysisJob.next_retry_at.is_(None), AnalysisJob.next_retry_at <= now),
                    )
                    .order_by(AnalysisJob.priority.desc(), AnalysisJob.id.asc())
                    .limit(limit - len(claimed_ids))
                    .with_for_update(skip_locked=True)
                ).scalars().all()

                if not candidate_ids:
                    db.rollback()
                    break

                lost = 0
                for job_id in candidate_ids:
                    result = db.execute(
                        update(AnalysisJob)
                        .where(AnalysisJob.id == job_id, AnalysisJob.status == "pending")
                        .values(status="processing", started_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        claimed_ids.append(job_id)
                    else:
                        lost += 1
                db.commit()

                if lost == 0:
                    break

            if not claimed_ids:
                return []

            jobs = db.execute(
                select(AnalysisJob)
                .where(AnalysisJob.id.in_(claimed_ids))
                .order_by(AnalysisJob.priority.desc(), AnalysisJob.id.asc())
            ).scalars().all()
            return list(jobs)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def complete(self, job_id: int, outcome: JobOutcome) -> bool:
        """processing → completed, persisting provider/model/tokens/cost. Returns False if the job was not processing."""
        db = self._session_factory()
        try:
            result = db.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == job_id, AnalysisJob.status == "processing")
                .values(
                    status="completed",
                    completed_at=self._clock(),
                    next_retry_at=None,
                    provider=outcome.provider,
                    model=outcome.model,
                    total_tokens=outcome.total_tokens,
                    cost=outcome.cost,
                    error_message=None,
                    partial_errors=list(outcome.partial_errors),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if result.rowcount != 1:
            logger.warning(f"[job {job_id}] complete() ignored, job is not processing")
            return False
        return True

    def fail_or_retry(self, job_id: int, error: str) -> Optional[str]:
        """
        Record a failed attempt. Below max_retries the job returns to pending
        with next_retry_at = now + base_delay * 2^retry_count; otherwise it is
        marked failed. Returns the resulting status, or None if the job is gone
        or no longer processing.
        """
        db = self._session_factory()
        try:
            job = db.get(AnalysisJob, job_id)
            if job is None:
                logger.warning(f"[job {job_id}] fail_or_retry() on a missing job")
                return None
            if job.status != "processing":
                logger.warning(f"[job {job_id}] fail_or_retry() ignored, job is {job.status}")
                return None

            now = self._clock()
            retry_count = job.retry_count + 1
            values = {"retry_count": retry_count, "error_message": error}
            if retry_count < self.max_retries:
                delay = self.base_delay * (2 ** retry_count)
                values.update(status="pending", next_retry_at=now + timedelta(seconds=delay))
            else:
                values.update(status="failed", completed_at=now)

            result = db.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == job_id, AnalysisJob.status == "processing")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if result.rowcount != 1:
            logger.warning(f"[job {job_id}] fail_or_retry() ignored, job left processing meanwhile")
            return None
        if values["status"] == "pending":
            logger.warning(f"[job {job_id}] attempt {retry_count} failed, retrying in {delay:.0f}s: {error}")
        else:
            logger.error(f"[job {job_id}] failed after {retry_count} attempts: {error}")
        return values["status"]

    # ------------------------------------------------------------------
    # Operational visibility and maintenance
    # ------------------------------------------------------------------

    def get(self, job_id: int) -> Optional[AnalysisJob]:
        db = self._session_factory()
        try:
            return db.get(AnalysisJob, job_id)
        finally:
            db.close()

    def status(self) -> QueueStatus:
        db = self._session_factory()
        try:
            rows = db.execute(
                select(AnalysisJob.status, func.count(AnalysisJob.id)).group_by(AnalysisJob.status)
            ).all()
        finally:
            db.close()
        return QueueStatus(**{status: count for status, count in rows if status in QueueStatus.model_fields})

    def cleanup(self, older_than_days: int = 7) -> int:
        """
        Delete completed jobs past the retention window.
        Failed jobs are never deleted automatically; they are kept for diagnosis.
        """
        cutoff = self._clock() - timedelta(days=older_than_days)
        db = self._session_factory()
        try:
            result = db.execute(
                delete(AnalysisJob)
                .where(AnalysisJob.status == "completed", AnalysisJob.completed_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if result.rowcount:
            logger.info(f"Cleaned up {result.rowcount} completed jobs older than {older_than_days} days")
        return result.rowcount

    def retry_failed(self, limit: int = 10) -> int:
        """Move up to `limit` failed jobs back to pending with fresh retry counters."""
        db = self._session_factory()
        retried = 0
        try:
            failed = db.execute(
                select(AnalysisJob)
                .where(AnalysisJob.status == "failed")
                .order_by(AnalysisJob.completed_at.desc(), AnalysisJob.id.desc())
                .limit(limit)
            ).scalars().all()

            for job in failed:
                if self._has_active_job(db, job.article_id, job.kind):
                    logger.info(f"[job {job.id}] not retried, another '{job.kind}' job is active")
                    continue
                job.status = "pending"
                job.retry_count = 0
                job.next_retry_at = None
                job.started_at = None
                job.completed_at = None
                job.error_message = None
                try:
                    db.commit()
                    retried += 1
                except IntegrityError:
                    db.rollback()
                    logger.info(f"[job {job.id}] not retried, lost a race with a new enqueue")
        finally:
            db.close()

        logger.info(f"Re-queued {retried} failed jobs")
        return retried

    def recover_stale(self, older_than_minutes: int = 30) -> int:
        """
        Return processing jobs whose worker disappeared (started too long ago) to pending.
        Together with idempotent re-processing this gives at-least-once delivery.
        """
        cutoff = self._clock() - timedelta(minutes=older_than_minutes)
        db = self._session_factory()
        try:
            result = db.execute(
                update(AnalysisJob)
                .where(AnalysisJob.status == "processing", AnalysisJob.started_at < cutoff)
                .values(status="pending", started_at=None, next_retry_at=None)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if result.rowcount:
            logger.warning(f"Recovered {result.rowcount} stale processing jobs")
        return result.rowcount
