import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.api.v1.push_tokens.schemas import (
    PushTokenDeactivateResponse,
    PushTokenListResponse,
    PushTokenRegister,
    PushTokenRegisterResponse,
    PushTokenResponse,
    PushTokenStatsResponse,
    TokenValidationInfo,
)
from app.core.deps import get_current_active_admin, get_pipeline, get_token_claims
from app.core.exceptions import AppException
from app.core.pipeline import NotificationPipeline
from app.core.rate_limit import limiter, push_token_limit
from app.core.sanitize import UnsafeInputError, sanitize_fields
from app.core.utils import token_preview
from app.models.enums import UserType

logger = logging.getLogger(__name__)

router = APIRouter()

_FIELD_LIMITS = {"user_id": 64, "device_id": 256, "device_name": 256, "app_version": 64}


def _can_access(claims: dict, user_id: str) -> bool:
    return claims.get("sub") == user_id or claims.get("role") == UserType.admin.value


@router.post(
    "",
    response_model=PushTokenRegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register or update a device push token",
    description="Returns 201 for a new token, 200 when an existing token was updated. Rate limited per client IP.",
)
@limiter.limit(push_token_limit)
async def register_push_token(
    request: Request,  # required by the rate limiter
    data: PushTokenRegister,
    response: Response,
    claims: dict = Depends(get_token_claims),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    try:
        fields = sanitize_fields(data.model_dump(), _FIELD_LIMITS)
    except UnsafeInputError as e:
        logger.warning("Rejected push token registration: %s", e)
        AppException().raise_400(f"Invalid input: {e}")

    user_id = fields["user_id"]
    if not user_id:
        AppException().raise_400("user_id is required")
    if claims.get("sub") != user_id:
        AppException().raise_403("Token does not belong to the authenticated user")

    token = data.token.strip()
    validation = pipeline.validator.validate(token)
    if not validation.is_valid:
        AppException().raise_400(f"Invalid push token: {', '.join(validation.errors)}")

    user_type = data.user_type
    if user_type is None:
        role = claims.get("role")
        user_type = UserType(role) if role in UserType._value2member_map_ else UserType.client

    row, is_new = await pipeline.token_store.register_token(
        user_id=user_id,
        token=token,
        platform=data.platform.value,
        user_type=user_type.value,
        device_id=fields.get("device_id"),
        device_name=fields.get("device_name"),
        app_version=fields.get("app_version"),
    )
    if is_new:
        pipeline.metrics.record_token_registered()
    else:
        response.status_code = status.HTTP_200_OK
    logger.info("Push token %s %s for user %s", token_preview(token), "registered" if is_new else "updated", user_id)
    pipeline.activity_log.log({
        "type": "push_token_registered" if is_new else "push_token_updated",
        "user_id": user_id,
        "user_type": user_type.value,
        "platform": data.platform.value,
        "token_id": row.id,
    })

    return PushTokenRegisterResponse(
        message="Push token registered successfully" if is_new else "Push token updated successfully",
        token_id=row.id,
        is_new=is_new,
        platform=row.platform,
        validation=TokenValidationInfo(
            format=validation.format.value,
            token_type=validation.token_type,
            is_legacy=validation.is_legacy,
        ),
    )


@router.get("", response_model=PushTokenListResponse, summary="List a user's push tokens")
async def list_push_tokens(
    user_id: Optional[str] = Query(None, alias="userId"),
    user_type: Optional[UserType] = Query(None, alias="userType"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    claims: dict = Depends(get_token_claims),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    if not user_id:
        AppException().raise_400("userId is required")
    if not _can_access(claims, user_id):
        AppException().raise_403("Not allowed to view tokens of another user")
    rows = await pipeline.token_store.list_tokens(user_id, user_type.value if user_type else None, is_active)
    return PushTokenListResponse(count=len(rows), tokens=[PushTokenResponse.model_validate(r) for r in rows])


@router.delete("", response_model=PushTokenDeactivateResponse, summary="Deactivate push tokens")
async def deactivate_push_tokens(
    token_id: Optional[str] = Query(None, alias="tokenId"),
    token: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
    claims: dict = Depends(get_token_claims),
    pipeline: NotificationPipeline = Depends(get_pipeline),
):
    if not (token_id or token or user_id):
        AppException().raise_400("tokenId, token, or userId is required")
    if user_id and not token_id and not token and not _can_access(claims, user_id):
        AppException().raise_403("Not allowed to deactivate tokens of another user")

    # non-admin callers can only touch their own tokens
    owner_id = None if claims.get("role") == UserType.admin.value else claims["sub"]
    count = await pipeline.token_store.deactivate_tokens(
        token_id=token_id, token=token, user_id=user_id, owner_id=owner_id,
    )
    pipeline.metrics.record_tokens_deactivated(count)
    return PushTokenDeactivateResponse(deactivated_count=count)


@router.get(
    "/stats",
    response_model=PushTokenStatsResponse,
    summary="Push token statistics (admin)",
    dependencies=[Depends(get_current_active_admin)],
)
async def push_token_stats(pipeline: NotificationPipeline = Depends(get_pipeline)):
    stats = await pipeline.token_store.get_token_statistics(pipeline.maintenance.config.max_token_age_days)
    return PushTokenStatsResponse(statistics=stats)
