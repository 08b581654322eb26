from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models.enums import Platform, UserType


class PushTokenRegister(BaseModel):
    """Device registration sent by the mobile app after obtaining a push token."""
    user_id: str = Field(..., min_length=1, max_length=64)
    token: str = Field(..., min_length=1, max_length=4096)
    platform: Platform
    user_type: Optional[UserType] = Field(None, description="Defaults to the role in the caller's token")
    device_id: Optional[str] = Field(None, max_length=256)
    device_name: Optional[str] = Field(None, max_length=256)
    app_version: Optional[str] = Field(None, max_length=64)


class TokenValidationInfo(BaseModel):
    format: str
    token_type: Optional[str] = None
    is_legacy: Optional[bool] = None


class PushTokenRegisterResponse(BaseModel):
    success: bool = True
    message: str
    token_id: str
    is_new: bool
    platform: str
    validation: TokenValidationInfo


class PushTokenResponse(BaseModel):
    """Stored token metadata. The token value itself is never returned."""
    id: str
    user_id: str
    user_type: str
    platform: str
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    app_version: Optional[str] = None
    is_active: bool
    last_used: Optional[datetime] = None
    validation_score: Optional[int] = None
    is_healthy: Optional[bool] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PushTokenListResponse(BaseModel):
    success: bool = True
    count: int
    tokens: list[PushTokenResponse]


class PushTokenDeactivateResponse(BaseModel):
    success: bool = True
    deactivated_count: int


class PushTokenStatsResponse(BaseModel):
    success: bool = True
    statistics: dict[str, Any]
