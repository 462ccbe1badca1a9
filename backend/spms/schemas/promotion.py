"""Pydantic schemas for semester promotion and promotion reconciliation"""
from pydantic import BaseModel, Field
from typing import Optional, List

from spms.models.student import DegreeProgram


class CohortFilter(BaseModel):
    """Which students a reconciliation pass looks at"""
    min_semester: int = Field(default=6, ge=1, description="Students with current_semester >= this")
    degree_program: Optional[DegreeProgram] = None
    student_ids: Optional[List[str]] = Field(None, description="Restrict to these students")


class BatchError(BaseModel):
    """One entity that failed inside a batch"""
    type: str  # "student" or "group"
    id: str
    error: str


class ReconciliationReport(BaseModel):
    """Structured report of one reconciliation pass"""
    students_processed: int = 0
    projects_updated: int = 0
    current_projects_updated: int = 0
    group_memberships_updated: int = 0
    group_ids_cleared: int = 0
    groups_disbanded: int = 0
    groups_validated: int = 0
    errors: List[BatchError] = Field(default_factory=list)

    @property
    def mutation_count(self) -> int:
        return (
            self.projects_updated
            + self.current_projects_updated
            + self.group_memberships_updated
            + self.group_ids_cleared
            + self.groups_disbanded
        )


class PromotionBatchResult(BaseModel):
    """Outcome of one bulk semester advance"""
    degree_program: DegreeProgram
    from_semester: int
    to_semester: int
    students_promoted: int
