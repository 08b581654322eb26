from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.enums import CircuitState, JitterType, RetryAction


class RetryActionRequest(BaseModel):
    action: RetryAction
    notification_id: Optional[str] = None

    @model_validator(mode="after")
    def _notification_id_required(self):
        if self.action in (RetryAction.force_retry, RetryAction.clear_retries) and not self.notification_id:
            raise ValueError(f"notification_id is required for {self.action.value}")
        return self


class RetryConfigUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    max_attempts: Optional[int] = Field(None, ge=1, le=10)
    initial_delay_ms: Optional[int] = Field(None, ge=100, le=60000)
    max_delay_ms: Optional[int] = Field(None, ge=1000, le=600000)
    backoff_factor: Optional[float] = Field(None, ge=1.0, le=10.0)
    jitter: Optional[JitterType] = None
    circuit_breaker_threshold: Optional[int] = Field(None, ge=1, le=100)
    circuit_breaker_reset_timeout_ms: Optional[int] = Field(None, ge=1000, le=3600000)


class RetryStatusResponse(BaseModel):
    notification_id: str
    current_attempt: int
    max_attempts: int
    next_retry_at: Optional[datetime] = None
    last_error: str
    circuit_state: CircuitState
    total_delay_ms: float
    pending: int

    class Config:
        from_attributes = True


class ProcessingResultResponse(BaseModel):
    processed: int
    successful: int
    failed: int
    skipped: int
    errors: list[str]
    processing_time_ms: float

    class Config:
        from_attributes = True


class RetryActionResponse(BaseModel):
    success: bool = True
    action: RetryAction
    message: str
    result: Optional[ProcessingResultResponse] = None
    cleared: Optional[int] = None


class RetryQueueResponse(BaseModel):
    success: bool = True
    status: Optional[RetryStatusResponse] = None
    statistics: Optional[dict[str, Any]] = None


class RetryConfigResponse(BaseModel):
    success: bool = True
    config: dict[str, Any]
