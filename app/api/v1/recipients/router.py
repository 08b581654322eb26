import logging

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.v1.recipients.schemas import CacheClearResponse
from app.core.deps import get_pipeline
from app.core.exceptions import AppException
from app.core.pipeline import NotificationPipeline
from app.core.recipient_resolver import RecipientResolution

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=RecipientResolution,
    summary="Resolve notification recipients",
    description="Admins and staff of a client (cache, then membership lookup, then project-assigned staff).",
)
async def get_recipients(
    response: Response,
    client_id: str | None = Query(None, alias="clientId"),
    project_id: str | None = Query(None, alias="projectId"),
    skip_cache: bool = Query(False, alias="skipCache"),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    if not client_id or not client_id.strip():
        AppException().raise_400("clientId is required")
    resolution = await pipeline.resolver.resolve(client_id.strip(), project_id or None, skip_cache)
    if pipeline.resolver.both_stages_failed(resolution):
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return resolution


@router.delete("", response_model=CacheClearResponse, summary="Clear recipient cache (all or one client)")
async def clear_recipient_cache(
    client_id: str | None = Query(None, alias="clientId"),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    cleared = pipeline.recipient_cache.clear(client_id or None)
    logger.info("Cleared %d recipient cache entries (client=%s)", cleared, client_id or "*")
    return CacheClearResponse(cleared=cleared, client_id=client_id or None)


@router.head("", summary="Recipient cache size in the X-Cache-Size header")
async def recipient_cache_size(pipeline: NotificationPipeline = Depends(get_pipeline)):
    return Response(status_code=status.HTTP_200_OK, headers={"X-Cache-Size": str(pipeline.recipient_cache.size())})
