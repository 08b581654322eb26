from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models.enums import MaintenanceJobType


class MaintenanceRunRequest(BaseModel):
    job_type: MaintenanceJobType = MaintenanceJobType.full
    max_age_days: Optional[int] = Field(None, ge=1, le=365)
    force: bool = Field(False, description="Run even when the schedule says it is not due")


class AlertThresholdsUpdate(BaseModel):
    unhealthy_token_percentage: Optional[float] = Field(None, ge=0, le=100)
    failed_jobs_count: Optional[int] = Field(None, ge=1, le=50)
    processing_time_minutes: Optional[float] = Field(None, ge=1, le=60)


class MaintenanceConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    cleanup_interval_hours: Optional[float] = Field(None, ge=1, le=168)
    max_token_age_days: Optional[int] = Field(None, ge=1, le=365)
    delete_after_days: Optional[int] = Field(None, ge=1, le=3650)
    alert_thresholds: Optional[AlertThresholdsUpdate] = None


class MaintenanceRunResponse(BaseModel):
    success: bool
    skipped: bool = False
    message: str
    job: Optional[dict[str, Any]] = None
    alerts: list[str] = []
    last_run: Optional[Any] = None
    next_scheduled_run: Optional[Any] = None


class MaintenanceStatusResponse(BaseModel):
    success: bool = True
    status: dict[str, Any]
    statistics: Optional[dict[str, Any]] = None
    health: dict[str, Any]


class MaintenanceConfigResponse(BaseModel):
    success: bool = True
    config: dict[str, Any]
