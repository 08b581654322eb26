import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from app.api.v1.maintenance.schemas import (
    MaintenanceConfigResponse,
    MaintenanceConfigUpdate,
    MaintenanceRunRequest,
    MaintenanceRunResponse,
    MaintenanceStatusResponse,
)
from app.core.deps import get_pipeline, require_cron_secret
from app.core.exceptions import AppException, MaintenanceAlreadyRunningError
from app.core.pipeline import NotificationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post(
    "",
    response_model=MaintenanceRunResponse,
    summary="Run push token maintenance (cron)",
    description="200 on success, 207 when the job completed with errors, 409 when a run is already in flight.",
)
async def run_maintenance(
    response: Response,
    data: Optional[MaintenanceRunRequest] = None,
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    data = data or MaintenanceRunRequest()
    scheduler = pipeline.maintenance
    if not data.force and not scheduler.should_run():
        logger.info("Scheduled maintenance skipped: not due (next run %s)", scheduler.next_scheduled_run())
        return MaintenanceRunResponse(
            success=True,
            skipped=True,
            message="Scheduled maintenance skipped - not due yet",
            last_run=scheduler.last_run,
            next_scheduled_run=scheduler.next_scheduled_run(),
        )

    try:
        result = await scheduler.run_job(data.job_type, data.max_age_days)
    except MaintenanceAlreadyRunningError:
        AppException().raise_409("Maintenance job is already running")

    if not result.success:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return MaintenanceRunResponse(
        success=result.success,
        message="Maintenance completed" if result.success else "Maintenance completed with errors",
        job=result.to_dict(),
        alerts=result.alerts,
        last_run=scheduler.last_run,
        next_scheduled_run=scheduler.next_scheduled_run(),
    )


@router.get("", response_model=MaintenanceStatusResponse, summary="Maintenance schedule and token health status")
async def maintenance_status(pipeline: NotificationPipeline = Depends(get_pipeline)):
    scheduler = pipeline.maintenance
    statistics = None
    alerts = scheduler.system_alerts()
    try:
        statistics = await pipeline.token_store.get_token_statistics(scheduler.config.max_token_age_days)
    except Exception as e:
        logger.exception("Failed to load token statistics: %s", e)
        alerts.append("Token statistics unavailable")

    return MaintenanceStatusResponse(
        status=scheduler.get_status(),
        statistics=statistics,
        health={"status": "warning" if alerts else "healthy", "alerts": alerts},
    )


@router.put("/config", response_model=MaintenanceConfigResponse, summary="Update maintenance configuration")
async def update_maintenance_config(
    data: MaintenanceConfigUpdate,
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    changes = data.model_dump(exclude_none=True)
    if not changes:
        AppException().raise_400("No configuration fields supplied")
    config = pipeline.maintenance.update_config(**changes)
    return MaintenanceConfigResponse(config=config.to_dict())
