"""
Track Selection Registry
Records each student's per-semester pathway choice (internship vs coursework)
and the administrator finalization / verification trail on top of it.
"""

from datetime import datetime
from functools import cmp_to_key
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spms.core.concurrency import apply_with_optimistic_retry, load_fresh
from spms.core.exceptions import (
    InvalidTrackError, StageMismatchError, SelectionLockedError,
    SelectionMissingError, StudentNotFoundError, ValidationError,
)
from spms.core.logging_config import logger
from spms.core.types import ACADEMIC_YEAR_PATTERN
from spms.models.student import (
    Student, TrackSelection, DegreeProgram, Track, VerificationStatus,
)
from spms.schemas.track_selection import (
    TrackSelectionResponse, TrackChoiceFilter, TrackChoiceEntry,
)


# (degree program, semester) pairs where students pick a track
TRACK_CHOICE_POINTS: FrozenSet[Tuple[DegreeProgram, int]] = frozenset({
    (DegreeProgram.BTECH, 7),
    (DegreeProgram.BTECH, 8),
    (DegreeProgram.MTECH, 3),
    (DegreeProgram.MTECH, 4),
})

# Stage-specific spellings accepted on input and the track they are stored as
TRACK_ALIASES: Dict[Tuple[DegreeProgram, int], Dict[str, Track]] = {
    (DegreeProgram.BTECH, 8): {"major2": Track.COURSEWORK},
}


def normalize_track(track: Union[str, Track], degree_program: DegreeProgram, semester: int) -> Track:
    """Map user input to a Track, honouring stage aliases"""
    if isinstance(track, Track):
        return track
    value = (track or "").strip().lower()
    aliases = TRACK_ALIASES.get((degree_program, semester), {})
    if value in aliases:
        return aliases[value]
    try:
        return Track(value)
    except ValueError:
        allowed = [t.value for t in Track] + sorted(aliases)
        raise InvalidTrackError(str(track), allowed)


def _compare_entries(a: TrackChoiceEntry, b: TrackChoiceEntry) -> int:
    """Email (case-insensitive) when both have one, else roll number, else keep order"""
    email_a = (a.email or "").lower()
    email_b = (b.email or "").lower()
    if email_a and email_b:
        return (email_a > email_b) - (email_a < email_b)

    roll_a = a.roll_number or ""
    roll_b = b.roll_number or ""
    if roll_a and roll_b:
        return (roll_a > roll_b) - (roll_a < roll_b)

    return 0


class TrackSelectionRegistry:
    """Service for semester track choices"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _check_stage(self, student: Student, semester: int) -> None:
        degree = DegreeProgram(student.degree_program)
        if (degree, semester) not in TRACK_CHOICE_POINTS or student.current_semester != semester:
            raise StageMismatchError(degree.value, student.current_semester, semester)

    async def _load_student(self, student_id: str) -> Student:
        student = await load_fresh(self.db, Student, student_id)
        if not student:
            raise StudentNotFoundError(student_id)
        return student

    # =====================================================
    # STUDENT SELF-SERVICE
    # =====================================================

    async def set_semester_track_choice(
        self,
        student_id: str,
        semester: int,
        track: Union[str, Track],
        academic_year: str,
    ) -> TrackSelectionResponse:
        """
        Record (or replace) the student's choice for ``semester``.

        Raises:
            StudentNotFoundError: unknown student
            StageMismatchError: not a choice point for this student's program/semester
            InvalidTrackError: track outside the allowed values
            ValidationError: academic_year not shaped like "2025-26"
            SelectionLockedError: an administrator already finalized the track
        """
        student = await self._load_student(student_id)
        self._check_stage(student, semester)
        chosen = normalize_track(track, DegreeProgram(student.degree_program), semester)
        if not ACADEMIC_YEAR_PATTERN.match(academic_year or ""):
            raise ValidationError(
                f"Invalid academic year '{academic_year}', expected YYYY-YY",
                field="academic_year",
            )

        def apply(fresh: Student) -> bool:
            self._check_stage(fresh, semester)
            now = datetime.utcnow()
            selection = fresh.get_selection(semester)
            if selection is None:
                selection = TrackSelection(
                    semester=semester,
                    academic_year=academic_year,
                    verification_status=VerificationStatus.PENDING,
                    admin_remarks="",
                )
                fresh.selections.append(selection)
            elif selection.is_finalized:
                raise SelectionLockedError(semester)

            selection.academic_year = academic_year
            selection.chosen_track = chosen
            selection.choice_submitted_at = now
            selection.updated_at = now
            # Touch the parent row so the write is version-checked
            fresh.updated_at = now
            return True

        fresh, _ = await apply_with_optimistic_retry(
            self.db,
            lambda: load_fresh(self.db, Student, student_id),
            apply,
            resource_type="Student",
            resource_id=student_id,
            not_found=lambda: StudentNotFoundError(student_id),
        )

        logger.info(
            f"Student {student_id} chose {chosen.value} for semester {semester} ({academic_year})"
        )
        return TrackSelectionResponse.model_validate(fresh.get_selection(semester))

    async def get_semester_track_choice(
        self, student_id: str, semester: int
    ) -> Optional[TrackSelectionResponse]:
        """The student's selection for ``semester``, or None if nothing was chosen yet"""
        student = await self._load_student(student_id)
        selection = student.get_selection(semester)
        if selection is None:
            return None
        return TrackSelectionResponse.model_validate(selection)

    # =====================================================
    # ADMIN
    # =====================================================

    async def list_track_choices(self, filters: TrackChoiceFilter) -> List[TrackChoiceEntry]:
        """
        List a cohort's selections for one semester and academic year.

        Optional filters: verification_status, and track (matches either the
        chosen or the finalized track). Output order is deterministic so
        paginated views and exports are reproducible.
        """
        result = await self.db.execute(
            select(Student, TrackSelection)
            .join(TrackSelection, TrackSelection.student_id == Student.id)
            .where(
                Student.degree_program == filters.degree_program,
                TrackSelection.semester == filters.semester,
                TrackSelection.academic_year == filters.academic_year,
            )
            .order_by(Student.created_at, Student.id)
        )

        entries = []
        for student, selection in result.all():
            if filters.verification_status and selection.verification_status != filters.verification_status:
                continue
            if filters.track and filters.track not in (selection.chosen_track, selection.finalized_track):
                continue

            entry = TrackChoiceEntry(
                **TrackSelectionResponse.model_validate(selection).model_dump(),
                student_id=student.id,
                full_name=student.full_name,
                roll_number=student.roll_number,
                email=student.email,
            )
            entries.append(entry)

        entries.sort(key=cmp_to_key(_compare_entries))
        return entries

    async def finalize_semester_track(
        self,
        student_id: str,
        semester: int,
        finalized_track: Union[str, Track],
        reviewed_by: str,
        verification_status: Optional[Union[str, VerificationStatus]] = None,
        remarks: str = "",
    ) -> TrackSelectionResponse:
        """
        Administratively finalize (or override) a student's track.

        When the finalized track differs from what was in force before (the
        earlier finalized track, else the chosen one), the old value is kept
        in ``previous_track`` with the override time.
        """
        student = await self._load_student(student_id)
        self._check_stage(student, semester)
        final = normalize_track(finalized_track, DegreeProgram(student.degree_program), semester)

        status = None
        if verification_status is not None:
            try:
                status = VerificationStatus(verification_status)
            except ValueError:
                raise ValidationError(
                    f"Invalid verification status '{verification_status}'",
                    field="verification_status",
                )

        outcome = {}

        def apply(fresh: Student) -> bool:
            selection = fresh.get_selection(semester)
            if selection is None:
                raise SelectionMissingError(semester)

            now = datetime.utcnow()
            previous = selection.finalized_track or selection.chosen_track
            outcome["changed_track"] = previous is not None and previous != final
            if outcome["changed_track"]:
                selection.previous_track = previous
                selection.track_changed_by_admin_at = now

            if status is not None:
                selection.verification_status = status
            selection.finalized_track = final
            selection.reviewed_by = reviewed_by
            selection.reviewed_at = now
            selection.admin_remarks = remarks or ""
            selection.updated_at = now
            fresh.updated_at = now
            return True

        fresh, _ = await apply_with_optimistic_retry(
            self.db,
            lambda: load_fresh(self.db, Student, student_id),
            apply,
            resource_type="Student",
            resource_id=student_id,
            not_found=lambda: StudentNotFoundError(student_id),
        )

        logger.info(
            f"Semester {semester} track for student {student_id} "
            f"{'changed' if outcome['changed_track'] else 'finalized'} to {final.value} by {reviewed_by}"
        )
        return TrackSelectionResponse.model_validate(fresh.get_selection(semester))
