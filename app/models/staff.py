from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.utils import new_id


class Staff(Base):
    __tablename__ = "staff"

    id = Column(String(64), primary_key=True, default=new_id)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=True)  # site-engineer, supervisor, manager, ...
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    clients = relationship("StaffClient", back_populates="staff", cascade="all, delete-orphan")


class StaffClient(Base):
    """Staff membership in a client (tenant). A staff member can work for several clients."""
    __tablename__ = "staff_clients"

    id = Column(String(64), primary_key=True, default=new_id)
    staff_id = Column(String(64), ForeignKey("staff.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(String(64), index=True, nullable=False)
    assigned_at = Column(DateTime, default=datetime.utcnow)

    staff = relationship("Staff", back_populates="clients")

    __table_args__ = (UniqueConstraint("staff_id", "client_id", name="_staff_client_uc"),)
