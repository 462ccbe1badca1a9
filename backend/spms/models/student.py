"""Student enrollment model with its per-semester memberships, project cache and track selections"""
from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Integer, Text, ForeignKey, Boolean, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from spms.core.database import Base
from spms.core.types import GUID, AcademicYear, generate_uuid


class DegreeProgram(str, enum.Enum):
    """Degree programs and the last semester of each"""
    BTECH = "B.Tech"
    MTECH = "M.Tech"

    @property
    def final_semester(self) -> int:
        return 8 if self is DegreeProgram.BTECH else 4


class MembershipRole(str, enum.Enum):
    LEADER = "leader"
    MEMBER = "member"


class CurrentProjectRole(str, enum.Enum):
    LEADER = "leader"
    MEMBER = "member"
    SOLO = "solo"


class CurrentProjectStatus(str, enum.Enum):
    """Status of a cached currentProjects entry"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Track(str, enum.Enum):
    """Per-semester pathway a student can pick"""
    INTERNSHIP = "internship"
    COURSEWORK = "coursework"


class VerificationStatus(str, enum.Enum):
    """Admin verification state of a track selection"""
    PENDING = "pending"
    NEEDS_INFO = "needs_info"
    APPROVED = "approved"
    REJECTED = "rejected"


class Student(Base):
    """Student model - one row per enrolled student, never deleted"""
    __tablename__ = "students"

    __table_args__ = (
        Index('ix_students_semester', 'current_semester'),
        Index('ix_students_degree_semester', 'degree_program', 'current_semester'),
        CheckConstraint('current_semester >= 1', name='ck_students_semester_positive'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    full_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=True, unique=True)
    roll_number = Column(String(20), nullable=True, unique=True)  # MIS number, fallback sort key

    degree_program = Column(SQLEnum(DegreeProgram), nullable=False, default=DegreeProgram.BTECH)
    current_semester = Column(Integer, nullable=False, default=1)

    # Weak back-reference to the student's current group, no FK on purpose
    active_group_id = Column(GUID, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    group_memberships = relationship(
        "StudentGroupMembership", back_populates="student",
        cascade="all, delete-orphan", lazy="selectin",
    )
    current_projects = relationship(
        "StudentCurrentProject", back_populates="student",
        cascade="all, delete-orphan", lazy="selectin",
    )
    selections = relationship(
        "TrackSelection", back_populates="student",
        cascade="all, delete-orphan", lazy="selectin",
        order_by="TrackSelection.semester",
    )

    __mapper_args__ = {"version_id_col": version}

    def get_selection(self, semester: int):
        """Return the track selection for ``semester`` or None"""
        for selection in self.selections:
            if selection.semester == semester:
                return selection
        return None

    def __repr__(self):
        return f"<Student {self.roll_number or self.id} sem {self.current_semester}>"


class StudentGroupMembership(Base):
    """Historical record of the groups a student joined, one per semester"""
    __tablename__ = "student_group_memberships"

    __table_args__ = (
        Index('ix_student_group_memberships_student_id', 'student_id'),
        Index('ix_student_group_memberships_group_id', 'group_id'),
        Index('ix_student_group_memberships_semester', 'semester'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    group_id = Column(GUID, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)

    role = Column(SQLEnum(MembershipRole), default=MembershipRole.MEMBER, nullable=False)
    semester = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    student = relationship("Student", back_populates="group_memberships")

    def __repr__(self):
        return f"<StudentGroupMembership {self.student_id} in {self.group_id}>"


class StudentCurrentProject(Base):
    """Denormalized cache of the projects a student works on"""
    __tablename__ = "student_current_projects"

    __table_args__ = (
        Index('ix_student_current_projects_student_id', 'student_id'),
        Index('ix_student_current_projects_project_id', 'project_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(GUID, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    role = Column(SQLEnum(CurrentProjectRole), default=CurrentProjectRole.SOLO, nullable=False)
    semester = Column(Integer, nullable=False)
    status = Column(SQLEnum(CurrentProjectStatus), default=CurrentProjectStatus.ACTIVE, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    student = relationship("Student", back_populates="current_projects")

    def __repr__(self):
        return f"<StudentCurrentProject {self.project_id} ({self.status})>"


class TrackSelection(Base):
    """A student's pathway choice for one semester, plus the admin review trail"""
    __tablename__ = "track_selections"

    __table_args__ = (
        Index('ix_track_selections_student_semester', 'student_id', 'semester', unique=True),
        Index('ix_track_selections_semester_year', 'semester', 'academic_year'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)

    semester = Column(Integer, nullable=False)
    academic_year = Column(AcademicYear, nullable=False)

    chosen_track = Column(SQLEnum(Track), nullable=True)
    finalized_track = Column(SQLEnum(Track), nullable=True)
    verification_status = Column(
        SQLEnum(VerificationStatus), default=VerificationStatus.PENDING, nullable=False
    )

    # Admin review trail
    admin_remarks = Column(Text, nullable=False, default="")
    reviewed_by = Column(GUID, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    previous_track = Column(SQLEnum(Track), nullable=True)
    track_changed_by_admin_at = Column(DateTime, nullable=True)

    # Timestamps
    choice_submitted_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = relationship("Student", back_populates="selections")

    @property
    def is_finalized(self) -> bool:
        return self.finalized_track is not None

    def __repr__(self):
        return f"<TrackSelection sem {self.semester} {self.chosen_track}>"
