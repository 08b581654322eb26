"""
Push token maintenance: cleanup, health refresh and usage analytics as one exclusive job.
Each phase fails independently; job results are kept in a bounded in-memory history.
Only one run at a time per process; there is no cross-process lock.
"""
import logging
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable

from app.core.exceptions import MaintenanceAlreadyRunningError
from app.core.token_store import PushTokenStore
from app.core.utils import utc_now
from app.models.enums import MaintenanceJobType

logger = logging.getLogger(__name__)


@dataclass
class AlertThresholds:
    unhealthy_token_percentage: float = 25.0
    failed_jobs_count: int = 3
    processing_time_minutes: float = 10.0


@dataclass
class MaintenanceConfig:
    enabled: bool = True
    cleanup_interval_hours: float = 24.0
    max_token_age_days: int = 30
    delete_after_days: int = 90
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OperationResult:
    executed: bool = False
    result: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class MaintenanceJobResult:
    job_id: str
    job_type: MaintenanceJobType
    start_time: datetime
    end_time: datetime | None = None
    duration_ms: float = 0.0
    success: bool = False
    operations: dict[str, OperationResult] = field(default_factory=lambda: {
        "cleanup": OperationResult(),
        "health_refresh": OperationResult(),
        "analytics": OperationResult(),
    })
    summary: dict[str, Any] = field(default_factory=lambda: {
        "tokens_processed": 0,
        "tokens_deactivated": 0,
        "tokens_deleted": 0,
        "healthy_tokens": 0,
        "unhealthy_tokens": 0,
        "errors": [],
    })
    alerts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["job_type"] = self.job_type.value
        return data


PHASES = {
    MaintenanceJobType.full: ("cleanup", "health_refresh", "analytics"),
    MaintenanceJobType.cleanup: ("cleanup",),
    MaintenanceJobType.health: ("health_refresh",),
    MaintenanceJobType.analytics: ("analytics",),
}


class TokenMaintenanceScheduler:
    def __init__(
        self,
        token_store: PushTokenStore,
        config: MaintenanceConfig | None = None,
        *,
        history_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.token_store = token_store
        self.config = config or MaintenanceConfig()
        self._clock = clock
        self._history: deque[MaintenanceJobResult] = deque(maxlen=history_size)
        self.is_running = False
        self.last_run: datetime | None = None

    async def run_job(
        self,
        job_type: MaintenanceJobType = MaintenanceJobType.full,
        max_age_days: int | None = None,
    ) -> MaintenanceJobResult:
        if self.is_running:
            raise MaintenanceAlreadyRunningError("Maintenance job is already running")

        self.is_running = True
        job_type = MaintenanceJobType(job_type)
        started = time.perf_counter()
        result = MaintenanceJobResult(
            job_id=f"maintenance_{uuid.uuid4().hex[:12]}",
            job_type=job_type,
            start_time=self._clock(),
        )
        max_age = max_age_days or self.config.max_token_age_days
        summary = result.summary
        logger.info("Starting token maintenance job %s (%s)", result.job_id, job_type.value)

        try:
            phases = PHASES[job_type]

            if "cleanup" in phases:
                op = result.operations["cleanup"]
                op.executed = True
                try:
                    cleanup = await self.token_store.cleanup_tokens(max_age, self.config.delete_after_days)
                    op.result = cleanup.to_dict()
                    summary["tokens_processed"] += cleanup.total_processed
                    summary["tokens_deactivated"] += cleanup.tokens_deactivated
                    summary["tokens_deleted"] += cleanup.tokens_deleted
                    summary["errors"].extend(cleanup.errors)
                except Exception as e:
                    logger.exception("Token cleanup phase failed: %s", e)
                    op.error = f"Cleanup failed: {e}"
                    summary["errors"].append(op.error)

            if "health_refresh" in phases:
                op = result.operations["health_refresh"]
                op.executed = True
                try:
                    health = await self.token_store.refresh_token_health()
                    op.result = health.to_dict()
                    summary["tokens_processed"] += health.tokens_refreshed
                    summary["healthy_tokens"] = health.healthy_tokens
                    summary["unhealthy_tokens"] = health.unhealthy_tokens
                    summary["errors"].extend(health.errors)
                except Exception as e:
                    logger.exception("Token health refresh phase failed: %s", e)
                    op.error = f"Health refresh failed: {e}"
                    summary["errors"].append(op.error)

            if "analytics" in phases:
                op = result.operations["analytics"]
                op.executed = True
                try:
                    op.result = await self.generate_analytics()
                except Exception as e:
                    logger.exception("Token analytics phase failed: %s", e)
                    op.error = f"Analytics update failed: {e}"
                    summary["errors"].append(op.error)

            result.success = not summary["errors"]
            self.last_run = self._clock()
        finally:
            self.is_running = False
            result.end_time = self._clock()
            result.duration_ms = round((time.perf_counter() - started) * 1000, 2)
            self._history.appendleft(result)

        result.alerts = self.job_alerts(result)
        logger.info(
            "Token maintenance job %s finished: success=%s processed=%d deactivated=%d deleted=%d errors=%d",
            result.job_id, result.success, summary["tokens_processed"], summary["tokens_deactivated"],
            summary["tokens_deleted"], len(summary["errors"]),
        )
        return result

    async def generate_analytics(self) -> dict[str, Any]:
        stats = await self.token_store.get_token_statistics(self.config.max_token_age_days)
        usage = await self.token_store.usage_analytics(self._clock())
        return {
            "overview": {**stats["overview"], "last_maintenance_run": self.last_run},
            "usage": usage["usage"],
            "health": {**stats["health_metrics"], "expired_tokens": usage["expired_tokens"]},
            "distribution": {
                "by_platform": stats["by_platform"],
                "by_user_type": stats["by_user_type"],
                "by_validation_score": stats["by_validation_score"],
                "by_age": usage["by_age"],
            },
            "trends": {
                "registration_trend": usage["registration_trend"],
                "usage_trend": usage["usage_trend"],
            },
        }

    def history(self, limit: int = 10) -> list[MaintenanceJobResult]:
        return list(self._history)[:limit]

    def next_scheduled_run(self) -> datetime | None:
        if self.last_run is None:
            return None
        return self.last_run + timedelta(hours=self.config.cleanup_interval_hours)

    def should_run(self) -> bool:
        if not self.config.enabled or self.is_running:
            return False
        if self.last_run is None:
            return True
        return self._clock() >= self.next_scheduled_run()

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_run": self.last_run,
            "next_scheduled_run": self.next_scheduled_run(),
            "should_run": self.should_run(),
            "config": self.config.to_dict(),
            "recent_jobs": [job.to_dict() for job in self.history(5)],
        }

    def update_config(self, **changes: Any) -> MaintenanceConfig:
        thresholds = changes.pop("alert_thresholds", None)
        unknown = set(changes) - set(MaintenanceConfig.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown maintenance config fields: {', '.join(sorted(unknown))}")
        config = replace(self.config, **changes)
        if thresholds:
            config = replace(config, alert_thresholds=replace(config.alert_thresholds, **thresholds))
        self.config = config
        logger.info("Maintenance configuration updated: %s", config.to_dict())
        return config

    def job_alerts(self, result: MaintenanceJobResult) -> list[str]:
        thresholds = self.config.alert_thresholds
        alerts = []
        if result.duration_ms > thresholds.processing_time_minutes * 60 * 1000:
            alerts.append(
                f"Maintenance job took {round(result.duration_ms / 1000)}s "
                f"(threshold: {thresholds.processing_time_minutes}m)"
            )
        errors = result.summary["errors"]
        if errors:
            alerts.append(f"Maintenance job had {len(errors)} errors")

        healthy, unhealthy = result.summary["healthy_tokens"], result.summary["unhealthy_tokens"]
        if healthy + unhealthy > 0:
            percentage = unhealthy / (healthy + unhealthy) * 100
            if percentage > thresholds.unhealthy_token_percentage:
                alerts.append(
                    f"{round(percentage)}% of tokens are unhealthy "
                    f"(threshold: {thresholds.unhealthy_token_percentage}%)"
                )

        recent = self.history(10)
        failed = sum(1 for job in recent if not job.success)
        if failed >= thresholds.failed_jobs_count:
            alerts.append(
                f"{failed} of last {len(recent)} maintenance jobs failed "
                f"(threshold: {thresholds.failed_jobs_count})"
            )
        return alerts

    def system_alerts(self) -> list[str]:
        alerts = []
        if self.last_run is None:
            alerts.append("Maintenance has never been run")
        elif self.should_run():
            overdue = self._clock() - self.last_run
            if overdue > timedelta(hours=self.config.cleanup_interval_hours * 2):
                alerts.append(f"Maintenance is overdue by {round(overdue.total_seconds() / 3600)} hours")
        if not self.config.enabled:
            alerts.append("Maintenance is disabled")
        return alerts
