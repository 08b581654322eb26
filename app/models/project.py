from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.utils import new_id


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, default=new_id)
    client_id = Column(String(64), index=True, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    assigned_staff = relationship(
        "ProjectAssignedStaff", back_populates="project", cascade="all, delete-orphan"
    )


class ProjectAssignedStaff(Base):
    """
    Denormalized staff assignment stored with the project.
    Only id and display name are kept; email and active flag live on the staff record.
    """
    __tablename__ = "project_assigned_staff"

    id = Column(String(64), primary_key=True, default=new_id)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    staff_id = Column(String(64), nullable=False)
    full_name = Column(String, nullable=False)

    project = relationship("Project", back_populates="assigned_staff")
