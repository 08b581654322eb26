import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.retry.schemas import (
    ProcessingResultResponse,
    RetryActionRequest,
    RetryActionResponse,
    RetryConfigResponse,
    RetryConfigUpdate,
    RetryQueueResponse,
    RetryStatusResponse,
)
from app.core.deps import get_current_active_admin, get_pipeline
from app.core.exceptions import AppException
from app.core.pipeline import NotificationPipeline
from app.models.enums import RetryAction

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=RetryQueueResponse, summary="Retry status of a notification, or queue statistics")
async def get_retry_status(
    notification_id: Optional[str] = Query(None, alias="notificationId"),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    manager = pipeline.retry_manager
    if notification_id:
        retry_status = manager.get_retry_status(notification_id)
        if retry_status is None:
            AppException().raise_404(f"No pending retries for notification {notification_id}")
        return RetryQueueResponse(status=RetryStatusResponse.model_validate(retry_status))
    return RetryQueueResponse(statistics=manager.get_queue_statistics())


@router.post(
    "",
    response_model=RetryActionResponse,
    summary="Operator controls for the retry queue (admin)",
    dependencies=[Depends(get_current_active_admin)],
)
async def retry_action(data: RetryActionRequest, pipeline: NotificationPipeline = Depends(get_pipeline)):
    manager = pipeline.retry_manager
    logger.info("Retry action %s requested (notification=%s)", data.action.value, data.notification_id)

    if data.action == RetryAction.process_queue:
        result = await manager.process_queue()
        return RetryActionResponse(
            action=data.action,
            message=f"Processed {result.processed} queued notifications",
            result=ProcessingResultResponse.model_validate(result),
        )

    if data.action == RetryAction.force_retry:
        result = await manager.force_retry(data.notification_id)
        if result is None:
            AppException().raise_404(f"No pending retries for notification {data.notification_id}")
        return RetryActionResponse(
            action=data.action,
            message=f"Forced retry of notification {data.notification_id}",
            result=ProcessingResultResponse.model_validate(result),
        )

    if data.action == RetryAction.clear_retries:
        cleared = manager.clear_retries(data.notification_id)
        return RetryActionResponse(
            action=data.action, message=f"Cleared {cleared} retries", cleared=cleared,
        )

    cleared = manager.clear_all()
    return RetryActionResponse(action=data.action, message=f"Cleared {cleared} retries", cleared=cleared)


@router.put(
    "",
    response_model=RetryConfigResponse,
    summary="Update backoff and circuit breaker configuration (admin)",
    dependencies=[Depends(get_current_active_admin)],
)
async def update_retry_config(data: RetryConfigUpdate, pipeline: NotificationPipeline = Depends(get_pipeline)):
    changes = data.model_dump(exclude_none=True)
    if not changes:
        AppException().raise_400("No configuration fields supplied")
    merged = {**pipeline.retry_manager.config.to_dict(), **changes}
    if merged["initial_delay_ms"] > merged["max_delay_ms"]:
        AppException().raise_400("initial_delay_ms must not exceed max_delay_ms")
    config = pipeline.retry_manager.update_config(**changes)
    return RetryConfigResponse(config=config.to_dict())


@router.delete(
    "",
    response_model=RetryActionResponse,
    summary="Clear retries for one notification, or the whole queue (admin)",
    dependencies=[Depends(get_current_active_admin)],
)
async def clear_retries(
    notification_id: Optional[str] = Query(None, alias="notificationId"),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    manager = pipeline.retry_manager
    if notification_id:
        cleared = manager.clear_retries(notification_id)
        return RetryActionResponse(action=RetryAction.clear_retries, message=f"Cleared {cleared} retries", cleared=cleared)
    cleared = manager.clear_all()
    return RetryActionResponse(action=RetryAction.clear_all, message=f"Cleared {cleared} retries", cleared=cleared)
