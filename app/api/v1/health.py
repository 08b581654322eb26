import logging

from fastapi import APIRouter, Depends

from app.core.deps import get_pipeline
from app.core.pipeline import NotificationPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", summary="Health Check")
async def health_check():
    return {"status": "ok"}


@router.get("/notifications", summary="Notification pipeline health")
async def notification_health(pipeline: NotificationPipeline = Depends(get_pipeline)):
    checks = {}
    try:
        stats = await pipeline.token_store.get_token_statistics(pipeline.maintenance.config.max_token_age_days)
        checks["database"] = {"status": "ok", "active_tokens": stats["overview"]["active_tokens"]}
    except Exception as e:
        logger.exception("Notification health check failed: %s", e)
        checks["database"] = {"status": "error", "message": "Token store unavailable"}

    alerts = pipeline.maintenance.system_alerts()
    checks["push_gateway"] = {"status": "ok", "provider": pipeline.gateway.name}
    checks["retry_queue"] = {"status": "ok", "size": pipeline.retry_manager.queue_size()}
    checks["maintenance"] = {
        "status": "ok" if not pipeline.maintenance.is_running else "running",
        "last_run": pipeline.maintenance.last_run,
        "alerts": alerts,
    }
    healthy = checks["database"]["status"] == "ok"
    return {
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "metrics": pipeline.metrics.snapshot(),
    }
