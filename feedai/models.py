from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Index, Integer, String, Text, text

from feedai.database import Base

JOB_KINDS = ("summary", "keywords", "category", "sentiment", "all")
ACTIVE_STATUSES = ("pending", "processing")


def utcnow() -> datetime:
    """Naive UTC timestamp. SQLite drops tzinfo, so every stored time is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Article(Base):
    __tablename__ = "articles"

    # --- Ingestion fields ---
    # ID comes from the source (e.g. feed GUID, article URL hash), not auto-generated
    id = Column(String, primary_key=True, index=True)
    source = Column(String, nullable=False)
    title = Column(String, nullable=False)
    author = Column(String, nullable=True)
    url = Column(String, nullable=True)
    body = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)
    owner_id = Column(String, nullable=True, index=True)  # user whose provider settings apply
    ingested_at = Column(DateTime, default=utcnow)

    # --- Preliminary evaluation (cheap gate) ---
    prelim_status = Column(String, nullable=True)  # "passed" | "rejected"
    prelim_ignore = Column(Boolean, nullable=True)
    prelim_reason = Column(String, nullable=True)
    prelim_value = Column(Integer, nullable=True)
    prelim_summary = Column(String, nullable=True)
    prelim_language = Column(String, nullable=True)
    prelim_confidence = Column(Float, nullable=True)
    prelim_model = Column(String, nullable=True)
    prelim_analyzed_at = Column(DateTime, nullable=True)

    # --- Enrichment (deep analysis) ---
    summary = Column(Text, nullable=True)
    keywords = Column(JSON, nullable=True)
    category = Column(String, nullable=True)
    sentiment = Column(String, nullable=True)
    importance_score = Column(Float, nullable=True)
    one_line_summary = Column(String, nullable=True)
    # main_points / key_quotes / score_dimensions are only written through schemas.DeepAnalysis
    main_points = Column(JSON, nullable=True)
    key_quotes = Column(JSON, nullable=True)
    score_dimensions = Column(JSON, nullable=True)
    analysis_schema_version = Column(Integer, nullable=True)
    reflection_rounds = Column(Integer, nullable=True)
    analysis_model = Column(String, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    analyzed_at = Column(DateTime, nullable=True)

    @property
    def content(self) -> str:
        return self.body or ""


class AnalysisJob(Base):
    __tablename__ = "analysis_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(String, nullable=False, index=True)
    kind = Column(String(20), nullable=False)

    # --- Scheduling ---
    priority = Column(Integer, nullable=False, default=5)  # higher = sooner
    status = Column(String(20), nullable=False, default="pending", index=True)
    retry_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime, nullable=True)  # null = eligible now
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # --- Outcome ---
    provider = Column(String, nullable=True)
    model = Column(String, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    cost = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    partial_errors = Column(JSON, nullable=True)

    __table_args__ = (
        # At most one active job per (article, kind); racing enqueuers hit this and become no-ops
        Index(
            "uq_analysis_jobs_active",
            "article_id",
            "kind",
            unique=True,
            sqlite_where=text("status IN ('pending', 'processing')"),
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
        Index("ix_analysis_jobs_claim", "status", "priority", "next_retry_at"),
    )

    def __repr__(self):
        return f"<AnalysisJob id={self.id} article_id={self.article_id} kind={self.kind} status={self.status}>"


class ProviderSettings(Base):
    """Per-user language-model configuration. Absent rows fall back to environment defaults."""
    __tablename__ = "provider_settings"

    user_id = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    model = Column(String, nullable=False)
    api_key = Column(String, nullable=True)
    base_url = Column(String, nullable=True)
    max_tokens = Column(Integer, nullable=True)
    temperature = Column(Float, nullable=True)
