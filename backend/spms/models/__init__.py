# Re-export all models for convenient imports
from spms.models.student import (
    Student,
    StudentGroupMembership,
    StudentCurrentProject,
    TrackSelection,
    DegreeProgram,
    MembershipRole,
    CurrentProjectRole,
    CurrentProjectStatus,
    Track,
    VerificationStatus,
)
from spms.models.group import (
    Group,
    GroupMember,
    GroupMemberRole,
    GroupStatus,
    PROTECTED_STATUSES,
    RECRUITING_STATUSES,
)
from spms.models.project import Project, ProjectStatus, TERMINAL_PROJECT_STATUSES
from spms.models.system_setting import SystemSetting

__all__ = [
    # Student
    "Student",
    "StudentGroupMembership",
    "StudentCurrentProject",
    "TrackSelection",
    "DegreeProgram",
    "MembershipRole",
    "CurrentProjectRole",
    "CurrentProjectStatus",
    "Track",
    "VerificationStatus",
    # Group
    "Group",
    "GroupMember",
    "GroupMemberRole",
    "GroupStatus",
    "PROTECTED_STATUSES",
    "RECRUITING_STATUSES",
    # Project
    "Project",
    "ProjectStatus",
    "TERMINAL_PROJECT_STATUSES",
    # Settings
    "SystemSetting",
]
