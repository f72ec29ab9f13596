"""
Performance monitoring: threshold alerts, trend detection and the periodic
maintenance loop that drives them.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Deque, List, Optional

from feedai.settings import MonitorThresholds
from feedai.schemas import (
    AnalysisMetric,
    MonitoringReport,
    MonitoringTrends,
    PerformanceAlert,
    QueueStatus,
)

logger = logging.getLogger(__name__)

HISTORY_SIZE = 30
TREND_BAND = 0.05
FAILED_JOBS_ALERT = 10
CRITICAL_FACTOR = 2


@dataclass(frozen=True)
class Snapshot:
    timestamp: datetime
    avg_processing_time: float
    avg_cost: float
    error_rate: float


def severity_for(value: float, threshold: float) -> Optional[str]:
    """None at or below threshold, critical at 2x threshold or more, warning in between."""
    if value <= threshold:
        return None
    if value >= threshold * CRITICAL_FACTOR:
        return "critical"
    return "warning"


def trend_for(older: float, newer: float) -> str:
    """Lower is better for every tracked value. Changes within ±5% are stable."""
    if older == 0:
        return "stable" if newer == 0 else "degrading"
    change = (newer - older) / older
    if abs(change) < TREND_BAND:
        return "stable"
    return "improving" if change < 0 else "degrading"


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _error_rate(metrics: List[AnalysisMetric]) -> float:
    if not metrics:
        return 0.0
    return sum(1 for m in metrics if not m.success) / len(metrics)


class PerformanceMonitor:
    """
    Compares current-window metrics against thresholds and keeps a rolling
    history of the last 30 snapshots for trend direction.
    """

    def __init__(self, thresholds: Optional[MonitorThresholds] = None):
        self.thresholds = thresholds or MonitorThresholds()
        self._alerts: List[PerformanceAlert] = []
        self._history: Deque[Snapshot] = deque(maxlen=HISTORY_SIZE)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check(self, metrics: List[AnalysisMetric], queue_status: Optional[QueueStatus] = None) -> List[PerformanceAlert]:
        """Evaluate one monitoring pass. Alerts replace those of the previous pass."""
        alerts: List[PerformanceAlert] = []
        if metrics:
            alerts.extend(self._check_processing_time(metrics))
            alerts.extend(self._check_cost(metrics))
            alerts.extend(self._check_errors(metrics))
        if queue_status is not None:
            alerts.extend(self._check_queue(queue_status))
        self._alerts = alerts
        return alerts

    def _check_processing_time(self, metrics: List[AnalysisMetric]) -> List[PerformanceAlert]:
        alerts = []
        limit = self.thresholds.max_processing_time_ms
        avg_time = _average([m.processing_time for m in metrics])
        max_time = max(m.processing_time for m in metrics)

        severity = severity_for(avg_time, limit)
        if severity:
            alerts.append(PerformanceAlert(
                type="slow_processing",
                severity=severity,
                message=f"Average processing time too high: {round(avg_time / 1000)}s",
                data={"avg_time": avg_time, "max_time": max_time, "threshold": limit},
            ))

        slow = [m for m in metrics if m.processing_time > limit]
        if slow:
            alerts.append(PerformanceAlert(
                type="slow_processing",
                severity="info",
                message=f"{len(slow)} analyses exceeded the processing time limit",
                data={"count": len(slow), "articles": [m.article_id for m in slow]},
            ))
        return alerts

    def _check_cost(self, metrics: List[AnalysisMetric]) -> List[PerformanceAlert]:
        alerts = []
        limit = self.thresholds.max_cost_per_analysis
        avg_cost = _average([m.cost for m in metrics])
        max_cost = max(m.cost for m in metrics)

        severity = severity_for(avg_cost, limit)
        if severity:
            alerts.append(PerformanceAlert(
                type="high_cost",
                severity=severity,
                message=f"Average cost per analysis too high: ${avg_cost:.4f}",
                data={"avg_cost": avg_cost, "max_cost": max_cost, "threshold": limit},
            ))

        expensive = [m for m in metrics if m.cost > limit]
        if expensive:
            alerts.append(PerformanceAlert(
                type="high_cost",
                severity="info",
                message=f"{len(expensive)} analyses exceeded the cost limit",
                data={"count": len(expensive), "avg_cost": _average([m.cost for m in expensive])},
            ))
        return alerts

    def _check_errors(self, metrics: List[AnalysisMetric]) -> List[PerformanceAlert]:
        limit = self.thresholds.max_error_rate
        error_rate = _error_rate(metrics)
        severity = severity_for(error_rate, limit)
        if not severity:
            return []
        return [PerformanceAlert(
            type="error_spike",
            severity=severity,
            message=f"Error rate too high: {error_rate * 100:.1f}%",
            data={"error_rate": error_rate, "threshold": limit},
        )]

    def _check_queue(self, queue_status: QueueStatus) -> List[PerformanceAlert]:
        alerts = []
        limit = self.thresholds.max_queue_backlog
        severity = severity_for(queue_status.pending, limit)
        if severity:
            alerts.append(PerformanceAlert(
                type="queue_backlog",
                severity=severity,
                message=f"Queue backlog: {queue_status.pending} jobs waiting",
                data={
                    "waiting": queue_status.pending,
                    "active": queue_status.processing,
                    "failed": queue_status.failed,
                },
            ))

        if queue_status.failed > FAILED_JOBS_ALERT:
            alerts.append(PerformanceAlert(
                type="error_spike",
                severity="warning",
                message=f"{queue_status.failed} jobs have failed permanently",
                data={"failed": queue_status.failed},
            ))
        return alerts

    # ------------------------------------------------------------------
    # Reports and trends
    # ------------------------------------------------------------------

    def generate_report(self, metrics: List[AnalysisMetric], queue_status: Optional[QueueStatus] = None) -> MonitoringReport:
        alerts = self.check(metrics, queue_status)
        trends = self.trends()
        return MonitoringReport(
            alerts=alerts,
            avg_processing_time=_average([m.processing_time for m in metrics]),
            avg_cost=_average([m.cost for m in metrics]),
            error_rate=_error_rate(metrics),
            queue_backlog=queue_status.pending if queue_status else 0,
            trends=trends,
            recommendations=self.recommendations(alerts, trends),
        )

    def record_snapshot(self, metrics: List[AnalysisMetric]) -> Optional[Snapshot]:
        """Append a history point for the given window. Empty windows are skipped."""
        if not metrics:
            return None
        snapshot = Snapshot(
            timestamp=datetime.now(timezone.utc),
            avg_processing_time=_average([m.processing_time for m in metrics]),
            avg_cost=_average([m.cost for m in metrics]),
            error_rate=_error_rate(metrics),
        )
        self._history.append(snapshot)
        return snapshot

    def trends(self) -> MonitoringTrends:
        if len(self._history) < 2:
            return MonitoringTrends()
        oldest, newest = self._history[0], self._history[-1]
        return MonitoringTrends(
            processing_time=trend_for(oldest.avg_processing_time, newest.avg_processing_time),
            cost=trend_for(oldest.avg_cost, newest.avg_cost),
            errors=trend_for(oldest.error_rate, newest.error_rate),
        )

    @staticmethod
    def recommendations(alerts: List[PerformanceAlert], trends: MonitoringTrends) -> List[str]:
        recommendations = []
        for alert in alerts:
            if alert.severity == "info":
                continue
            if alert.type == "slow_processing":
                if alert.severity == "critical":
                    recommendations.append(
                        "Processing is far too slow: switch to faster models or increase worker concurrency"
                    )
                else:
                    recommendations.append("Processing is slow: review model selection for the analysis stage")
            elif alert.type == "high_cost":
                if alert.severity == "critical":
                    recommendations.append(
                        "Cost is far too high: raise the preliminary minimum value and use cheaper models"
                    )
                else:
                    recommendations.append("Cost is high: consider models with a better price/performance ratio")
            elif alert.type == "error_spike":
                recommendations.append("Error rate is high: check provider credentials and model availability")
            elif alert.type == "queue_backlog":
                recommendations.append(
                    f"Queue backlog of {alert.data.get('waiting', 0)} jobs: increase worker concurrency"
                )

        if trends.processing_time == "degrading":
            recommendations.append("Processing time is trending up: check provider response times")
        if trends.cost == "degrading":
            recommendations.append("Cost is trending up: review per-model usage")
        if trends.errors == "degrading":
            recommendations.append("Error rate is trending up: inspect failed jobs")

        # Keep order, drop repeats from several alerts of the same type
        return list(dict.fromkeys(recommendations))

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def recent_alerts(self, limit: int = 10) -> List[PerformanceAlert]:
        return sorted(self._alerts, key=lambda a: a.timestamp, reverse=True)[:limit]

    def clear_alerts(self):
        self._alerts = []

    def update_thresholds(self, **updates):
        self.thresholds = replace(self.thresholds, **updates)

    def clear_history(self):
        self._history.clear()

    @property
    def history(self) -> List[Snapshot]:
        return list(self._history)


class MaintenanceLoop:
    """
    Periodic housekeeping: a monitoring pass (snapshot, report, alert logging)
    and retention of metrics and completed jobs. Stale processing jobs are only
    recovered at startup, while no worker of this process can still hold them.
    """

    def __init__(self, monitor: PerformanceMonitor, metrics, store, settings):
        self.monitor = monitor
        self.metrics = metrics
        self.store = store
        self.settings = settings
        self.last_report: Optional[MonitoringReport] = None
        self._stop_event = asyncio.Event()
        self._running = False

    async def start(self):
        if self._running:
            logger.info("Maintenance loop already running")
            return
        self._running = True
        self._stop_event.clear()
        logger.info(f"Maintenance loop started (every {self.settings.monitor_interval}s)")

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Maintenance pass failed: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.monitor_interval)
            except asyncio.TimeoutError:
                pass

        self._running = False
        logger.info("Maintenance loop stopped")

    def stop(self):
        self._stop_event.set()

    async def run_once(self) -> MonitoringReport:
        window = self.metrics.since(self.settings.monitor_window_minutes)
        queue_status = await asyncio.to_thread(self.store.status)

        self.monitor.record_snapshot(window)
        report = self.monitor.generate_report(window, queue_status)
        self.last_report = report

        for alert in report.alerts:
            if alert.severity == "critical":
                logger.error(f"[{alert.type}] {alert.message}")
            elif alert.severity == "warning":
                logger.warning(f"[{alert.type}] {alert.message}")
            else:
                logger.info(f"[{alert.type}] {alert.message}")

        self.metrics.delete_older_than(self.settings.metrics_retention_days)
        await asyncio.to_thread(self.store.cleanup, self.settings.job_retention_days)
        return report
