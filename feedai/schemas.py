from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JobKind = Literal["summary", "keywords", "category", "sentiment", "all"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
Stage = Literal["preliminary", "analysis", "reflection", "full"]
Sentiment = Literal["positive", "neutral", "negative"]
AlertType = Literal["slow_processing", "high_cost", "low_quality", "error_spike", "queue_backlog"]
Severity = Literal["info", "warning", "critical"]
Trend = Literal["improving", "stable", "degrading"]


# ---------------------------------------------------------------------------
# Ingestion boundary
# ---------------------------------------------------------------------------

class ArticleIngest(BaseModel):
    """Shape expected from the /ingest endpoint."""
    id: str
    source: str
    title: str
    body: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    owner_id: Optional[str] = None
    published_at: Optional[datetime] = None


class ArticleResponse(BaseModel):
    """Article with its enrichment fields, as returned by /articles."""
    id: str
    source: str
    title: str
    published_at: Optional[datetime] = None
    prelim_status: Optional[str] = None
    prelim_value: Optional[int] = None
    summary: Optional[str] = None
    keywords: Optional[List[str]] = None
    category: Optional[str] = None
    sentiment: Optional[str] = None
    importance_score: Optional[float] = None
    one_line_summary: Optional[str] = None
    analysis_model: Optional[str] = None
    analyzed_at: Optional[datetime] = None

    # Allows Pydantic to read data directly from SQLAlchemy model instances
    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Deep analysis: structured fields stored as JSON on the article
# ---------------------------------------------------------------------------

class MainPoint(BaseModel):
    point: str
    explanation: Optional[str] = None
    importance: Optional[float] = Field(default=None, ge=0, le=1)


class KeyQuote(BaseModel):
    quote: str
    significance: Optional[str] = None


class ScoreDimensions(BaseModel):
    depth: float = Field(ge=1, le=10)
    quality: float = Field(ge=1, le=10)
    practicality: float = Field(ge=1, le=10)
    novelty: float = Field(ge=1, le=10)


class DeepAnalysis(BaseModel):
    """Versioned schema for the multi-point analysis written to the article store."""
    schema_version: Literal[1] = 1
    one_line_summary: str = ""
    main_points: List[MainPoint] = Field(default_factory=list)
    key_quotes: List[KeyQuote] = Field(default_factory=list)
    score_dimensions: Optional[ScoreDimensions] = None
    reflection_rounds: int = 0


class ReflectionResult(BaseModel):
    quality: float = 0
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    needs_refinement: bool = False


# ---------------------------------------------------------------------------
# Preliminary evaluation
# ---------------------------------------------------------------------------

class PreliminaryEvaluation(BaseModel):
    ignore: bool
    reason: str
    value: int = Field(ge=1, le=5)
    summary: str
    language: str
    confidence: float = Field(ge=0, le=1)
    model: Optional[str] = None


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------

class EnqueueRequest(BaseModel):
    article_id: str
    kind: JobKind = "all"
    priority: int = 5


class EnqueueResponse(BaseModel):
    job_id: Optional[int] = None
    created: bool


class QueueStatus(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class JobResponse(BaseModel):
    id: int
    article_id: str
    kind: str
    priority: int
    status: JobStatus
    retry_count: int
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    total_tokens: Optional[int] = None
    cost: Optional[float] = None
    error_message: Optional[str] = None
    partial_errors: Optional[List[str]] = None

    model_config = ConfigDict(from_attributes=True)


class JobOutcome(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    total_tokens: int = 0
    cost: float = 0.0
    partial_errors: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Metrics and monitoring
# ---------------------------------------------------------------------------

class AnalysisMetric(BaseModel):
    """One record per attempted stage execution. Immutable once recorded."""
    article_id: str
    stage: Stage
    model: str
    language: str = "other"
    content_length: int = 0
    processing_time: float = 0  # ms
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    success: bool = True
    error_message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class GroupStats(BaseModel):
    count: int = 0
    avg_time: float = 0.0
    avg_cost: float = 0.0
    total_cost: float = 0.0


class MetricsStats(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    success_rate: float = 0.0  # fraction 0-1
    avg_processing_time: float = 0.0
    avg_cost: float = 0.0
    total_cost: float = 0.0
    by_model: Dict[str, GroupStats] = Field(default_factory=dict)
    by_language: Dict[str, GroupStats] = Field(default_factory=dict)
    by_stage: Dict[str, GroupStats] = Field(default_factory=dict)


class CostTrendPoint(BaseModel):
    date: str
    cost: float
    count: int


class CostAnalysis(BaseModel):
    total_cost: float = 0.0
    by_model: Dict[str, float] = Field(default_factory=dict)
    by_stage: Dict[str, float] = Field(default_factory=dict)
    trend: List[CostTrendPoint] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class PerformanceAnalysis(BaseModel):
    avg_processing_time: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    slowest: List[AnalysisMetric] = Field(default_factory=list)
    by_model: Dict[str, float] = Field(default_factory=dict)


class PerformanceAlert(BaseModel):
    type: AlertType
    severity: Severity
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MonitoringTrends(BaseModel):
    processing_time: Trend = "stable"
    cost: Trend = "stable"
    errors: Trend = "stable"


class MonitoringReport(BaseModel):
    alerts: List[PerformanceAlert] = Field(default_factory=list)
    avg_processing_time: float = 0.0
    avg_cost: float = 0.0
    error_rate: float = 0.0
    queue_backlog: int = 0
    trends: MonitoringTrends = Field(default_factory=MonitoringTrends)
    recommendations: List[str] = Field(default_factory=list)


class IngestResult(BaseModel):
    article_id: str
    evaluation: PreliminaryEvaluation
    job_id: Optional[int] = None
    queued: bool = False
