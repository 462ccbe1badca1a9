"""Pydantic schemas for group status validation results"""
from pydantic import BaseModel, Field
from typing import Optional, List

from spms.models.group import GroupStatus


class GroupStatusResult(BaseModel):
    """Outcome of validate_and_update_group_status"""
    status_changed: bool
    previous_status: GroupStatus
    current_status: GroupStatus
    member_count: int
    min_members: int
    max_members: int
    reason: str
    error: bool = False  # Invariant violation that needs manual intervention
    preserved: bool = False  # Admin-protected status left alone on purpose


class PromotionCheck(BaseModel):
    """Whether every active member of a group reached a target semester"""
    all_promoted: bool
    total_members: int = 0
    promoted_count: int = 0
    current_semesters: List[int] = Field(default_factory=list)
    group_semester: int
    target_semester: int
    reason: Optional[str] = None


class GroupAudit(BaseModel):
    """Read-only consistency audit of one group against a semester"""
    valid: bool
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    member_count: int
    group_status: GroupStatus
    group_semester: int
