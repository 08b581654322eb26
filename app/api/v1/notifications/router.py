import logging

from fastapi import APIRouter, Depends, status

from app.api.v1.notifications.schemas import NotificationMetricsResponse, SendNotificationRequest
from app.core.deps import get_current_active_admin, get_pipeline, get_token_claims
from app.core.notification_composer import ActivityEvent, MaterialActivityEvent
from app.core.notification_service import NotificationResult
from app.core.pipeline import NotificationPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/send",
    response_model=NotificationResult,
    status_code=status.HTTP_200_OK,
    summary="Send notification to users (admin)",
    description="Send a push notification with title, body, and optional data to one or more users. Admin only.",
    dependencies=[Depends(get_current_active_admin)],
)
async def send_notification(
    data: SendNotificationRequest,
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    return await pipeline.service.send_to_users(
        data.user_ids, data.title, data.body, data=data.data, options=data.options,
    )


@router.post(
    "/events/activity",
    response_model=NotificationResult,
    summary="Notify the project team about an activity",
    dependencies=[Depends(get_token_claims)],
)
async def activity_event(event: ActivityEvent, pipeline: NotificationPipeline = Depends(get_pipeline)):
    logger.info("Activity event %s for project %s", event.activity_type, event.project_id)
    return await pipeline.service.notify_activity(event)


@router.post(
    "/events/material-activity",
    response_model=NotificationResult,
    summary="Notify the project team about material imports, usage and transfers",
    dependencies=[Depends(get_token_claims)],
)
async def material_activity_event(
    event: MaterialActivityEvent,
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    logger.info("Material event %s for project %s", event.activity, event.project_id)
    return await pipeline.service.notify_material_activity(event)


@router.get("/metrics", response_model=NotificationMetricsResponse, summary="Delivery counters and retry queue")
async def notification_metrics(pipeline: NotificationPipeline = Depends(get_pipeline)):
    return NotificationMetricsResponse(
        metrics=pipeline.metrics.snapshot(),
        retry_queue=pipeline.retry_manager.get_queue_statistics(),
    )
