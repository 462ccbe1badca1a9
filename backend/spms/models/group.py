"""Project group models"""
from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Integer, ForeignKey, Boolean, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from spms.core.database import Base
from spms.core.types import GUID, AcademicYear, generate_uuid


class GroupStatus(str, enum.Enum):
    """Group lifecycle status"""
    INVITATIONS_SENT = "invitations_sent"
    OPEN = "open"
    FORMING = "forming"
    COMPLETE = "complete"
    LOCKED = "locked"        # Admin protected
    FINALIZED = "finalized"  # Admin protected
    DISBANDED = "disbanded"  # Soft-terminal


# Statuses an administrator set on purpose; routine passes never demote these
PROTECTED_STATUSES = frozenset({GroupStatus.FINALIZED, GroupStatus.LOCKED})

# Statuses that settle to COMPLETE once the member count is in range
RECRUITING_STATUSES = frozenset({
    GroupStatus.OPEN,
    GroupStatus.FORMING,
    GroupStatus.INVITATIONS_SENT,
})


class GroupMemberRole(str, enum.Enum):
    LEADER = "leader"
    MEMBER = "member"


class Group(Base):
    """Group model - a set of students working on one semester's project"""
    __tablename__ = "groups"

    __table_args__ = (
        Index('ix_groups_semester', 'semester'),
        Index('ix_groups_status', 'status'),
        Index('ix_groups_leader_id', 'leader_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, default="")
    semester = Column(Integer, nullable=False)
    academic_year = Column(AcademicYear, nullable=True)

    status = Column(SQLEnum(GroupStatus), default=GroupStatus.INVITATIONS_SENT, nullable=False)
    min_members = Column(Integer, default=4, nullable=False)
    max_members = Column(Integer, default=5, nullable=False)
    leader_id = Column(GUID, ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    members = relationship(
        "GroupMember", back_populates="group",
        cascade="all, delete-orphan", lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def active_members(self):
        return [m for m in self.members if m.is_active]

    @property
    def active_member_count(self) -> int:
        return len(self.active_members)

    def __repr__(self):
        return f"<Group {self.name or self.id} sem {self.semester} {self.status}>"


class GroupMember(Base):
    """Group member - links students to groups"""
    __tablename__ = "group_members"

    __table_args__ = (
        Index('ix_group_members_group_id', 'group_id'),
        Index('ix_group_members_student_id', 'student_id'),
        Index('ix_group_members_group_student', 'group_id', 'student_id', unique=True),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    group_id = Column(GUID, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(GUID, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)

    role = Column(SQLEnum(GroupMemberRole), default=GroupMemberRole.MEMBER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    group = relationship("Group", back_populates="members")

    def __repr__(self):
        return f"<GroupMember {self.student_id} in {self.group_id}>"
