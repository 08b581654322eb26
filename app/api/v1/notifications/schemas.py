from typing import Any, Optional

from pydantic import BaseModel, Field


class SendNotificationRequest(BaseModel):
    """Admin sends a push notification to one or more users."""
    user_ids: list[str] = Field(..., min_length=1, description="Recipient user IDs (admins, staff or clients)")
    title: str = Field(..., min_length=1, max_length=200, description="Notification title")
    body: str = Field(..., min_length=1, max_length=2000, description="Notification body text")
    data: Optional[dict[str, Any]] = Field(None, description="Optional data payload delivered with the message")
    options: Optional[dict[str, Any]] = Field(None, description="sound, badge, priority, ttl, channel_id")


class NotificationMetricsResponse(BaseModel):
    success: bool = True
    metrics: dict[str, Any]
    retry_queue: dict[str, Any]
