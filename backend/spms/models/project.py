from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Integer, ForeignKey, Index, CheckConstraint
from datetime import datetime
import enum

from spms.core.database import Base
from spms.core.types import GUID, generate_uuid


class ProjectStatus(str, enum.Enum):
    """Project status, in workflow order"""
    REGISTERED = "registered"
    FACULTY_ALLOCATED = "faculty_allocated"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_PROJECT_STATUSES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED})


class Project(Base):
    """Project model - owned by exactly one student or one group"""
    __tablename__ = "projects"

    __table_args__ = (
        Index('ix_projects_student_id', 'student_id'),
        Index('ix_projects_group_id', 'group_id'),
        Index('ix_projects_status', 'status'),
        Index('ix_projects_semester_status', 'semester', 'status'),
        CheckConstraint(
            '(student_id IS NULL) <> (group_id IS NULL)',
            name='ck_projects_single_owner',
        ),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("students.id", ondelete="CASCADE"), nullable=True)
    group_id = Column(GUID, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)

    title = Column(String(500), nullable=False, default="")
    semester = Column(Integer, nullable=False)
    status = Column(SQLEnum(ProjectStatus), default=ProjectStatus.REGISTERED, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROJECT_STATUSES

    def __repr__(self):
        return f"<Project {self.title or self.id} sem {self.semester} {self.status}>"
