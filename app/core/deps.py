from typing import AsyncGenerator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AppException
from app.core.pipeline import NotificationPipeline
from app.core.security import decode_access_token, secrets_match
from app.models.admin import Admin
from app.models.enums import UserType


bearer_scheme = HTTPBearer(auto_error=False)


def get_pipeline(request: Request) -> NotificationPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        AppException().raise_503("Notification pipeline is not ready")
    return pipeline


async def get_db(pipeline: NotificationPipeline = Depends(get_pipeline)) -> AsyncGenerator[AsyncSession, None]:
    async with pipeline.session_maker() as session:
        yield session


async def get_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    """Decoded JWT claims of the caller. sub is the user id, role is admin, staff or client."""
    if credentials is None or not credentials.credentials:
        AppException().raise_401("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        AppException().raise_401("Could not validate credentials")
    if not payload.get("sub"):
        AppException().raise_401("Could not validate credentials")
    return payload


async def get_current_active_admin(
    db: AsyncSession = Depends(get_db),
    claims: dict = Depends(get_token_claims),
) -> Admin:
    if claims.get("role") != UserType.admin.value:
        AppException().raise_403("Not an admin user")
    admin = await db.get(Admin, claims["sub"])
    if admin is None:
        AppException().raise_401("Could not validate credentials")
    if not admin.is_active:
        AppException().raise_401("Admin account is inactive")
    return admin


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    pipeline: NotificationPipeline = Depends(get_pipeline),
) -> None:
    """Maintenance endpoints are called by an external scheduler with `Authorization: Bearer <CRON_SECRET>`."""
    expected = pipeline.settings.CRON_SECRET
    if not expected:
        AppException().raise_503("Maintenance endpoint is not configured")
    if credentials is None or not secrets_match(credentials.credentials or "", expected):
        AppException().raise_401("Unauthorized")

