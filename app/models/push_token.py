"""Device push tokens registered by the mobile apps, with health and audit columns."""
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String

from app.core.database import Base
from app.core.utils import new_id
from app.models.enums import UserType


class PushToken(Base):
    """
    One row per device token. Never hard-deleted except by maintenance cleanup.
    At most one active row per (user_id, device_id): registration deactivates the others.
    validation_errors: audit trail, list of {"error": str, "timestamp": iso str}.
    """
    __tablename__ = "push_tokens"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), index=True, nullable=False)
    user_type = Column(String(20), default=UserType.client.value, nullable=False)
    token = Column(String(4096), unique=True, nullable=False)
    platform = Column(String(20), nullable=False)  # ios, android, web
    device_id = Column(String, nullable=True)
    device_name = Column(String, nullable=True)
    app_version = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_used = Column(DateTime, default=datetime.utcnow, nullable=False)

    last_validated = Column(DateTime, nullable=True)
    validation_score = Column(Integer, nullable=True)
    is_healthy = Column(Boolean, nullable=True)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    last_success = Column(DateTime, nullable=True)
    last_failure = Column(DateTime, nullable=True)
    deactivated_at = Column(DateTime, nullable=True)
    deactivation_reason = Column(String, nullable=True)
    validation_errors = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_push_tokens_user_active", "user_id", "is_active"),
        Index("ix_push_tokens_token_active", "token", "is_active"),
    )
