"""Pydantic schemas for semester track selection"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime

from spms.models.student import DegreeProgram, Track, VerificationStatus


class TrackSelectionResponse(BaseModel):
    """A single semester selection as stored on the student"""
    semester: int
    academic_year: str
    chosen_track: Optional[Track] = None
    finalized_track: Optional[Track] = None
    verification_status: VerificationStatus = VerificationStatus.PENDING
    admin_remarks: str = ""
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    previous_track: Optional[Track] = None
    track_changed_by_admin_at: Optional[datetime] = None
    choice_submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TrackChoiceFilter(BaseModel):
    """Admin listing filter over a cohort's track choices"""
    degree_program: DegreeProgram
    semester: int = Field(..., ge=1, le=8)
    academic_year: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    verification_status: Optional[VerificationStatus] = None
    track: Optional[Track] = Field(None, description="Matches chosen or finalized track")


class TrackChoiceEntry(TrackSelectionResponse):
    """Selection joined with the student fields an admin listing needs"""
    student_id: str
    full_name: str = ""
    roll_number: Optional[str] = None
    email: Optional[str] = None
