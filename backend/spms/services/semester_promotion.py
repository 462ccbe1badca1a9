"""
Semester Promotion
Bulk-advances a cohort's semester counter and, as an explicit second step,
reconciles the same cohort.
"""

from datetime import datetime
from typing import Optional, Tuple, Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spms.core.database import get_session_local
from spms.core.exceptions import ValidationError
from spms.core.logging_config import logger
from spms.models.student import Student, DegreeProgram
from spms.schemas.promotion import CohortFilter, PromotionBatchResult, ReconciliationReport
from spms.services.promotion_reconciler import PromotionReconciler


class SemesterPromotionService:
    """Moves a whole (degree program, semester) cohort to the next semester"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def advance_cohort(
        self, degree_program: Union[str, DegreeProgram], from_semester: int
    ) -> PromotionBatchResult:
        """
        Advance every ``degree_program`` student in ``from_semester`` by one.

        One bulk UPDATE, so the window where part of the cohort has moved and
        part has not stays as small as the database allows. The version column
        is bumped so in-flight optimistic writes on these students re-read.
        No group or project clean-up happens here.

        Raises:
            ValidationError: unknown program, or already in the final semester
        """
        try:
            degree = DegreeProgram(degree_program)
        except ValueError:
            raise ValidationError(f"Unknown degree program '{degree_program}'", field="degree_program")

        if from_semester < 1 or from_semester >= degree.final_semester:
            raise ValidationError(
                f"{degree.value} students in semester {from_semester} cannot be promoted "
                f"(final semester is {degree.final_semester})",
                field="from_semester",
            )

        result = await self.db.execute(
            update(Student)
            .where(
                Student.degree_program == degree,
                Student.current_semester == from_semester,
            )
            .values(
                current_semester=from_semester + 1,
                version=Student.version + 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        promoted = result.rowcount or 0
        logger.log_batch_event(
            "promotion", f"{degree.value} sem {from_semester} -> {from_semester + 1}",
            students_promoted=promoted,
        )
        return PromotionBatchResult(
            degree_program=degree,
            from_semester=from_semester,
            to_semester=from_semester + 1,
            students_promoted=promoted,
        )


async def run_promotion_pipeline(
    degree_program: Union[str, DegreeProgram],
    from_semester: int,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Tuple[PromotionBatchResult, ReconciliationReport]:
    """Advance a cohort, then reconcile the program's students from the new semester up"""
    session_factory = session_factory or get_session_local()

    async with session_factory() as db:
        promotion = await SemesterPromotionService(db).advance_cohort(degree_program, from_semester)

    reconciler = PromotionReconciler(session_factory=session_factory)
    report = await reconciler.run_promotion_reconciliation(
        CohortFilter(min_semester=promotion.to_semester, degree_program=promotion.degree_program)
    )
    return promotion, report
