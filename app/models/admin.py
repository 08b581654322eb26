from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String

from app.core.database import Base
from app.core.utils import new_id
from app.models.enums import AdminRole


class Admin(Base):
    """Tenant (client) administrator. One admin account belongs to exactly one client."""
    __tablename__ = "admins"

    id = Column(String(64), primary_key=True, default=new_id)
    client_id = Column(String(64), index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, default=AdminRole.admin.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
