import asyncio
from typing import Any, Dict, Optional

from spms.core.celery_app import celery_app
from spms.core.database import get_session_local, close_db
from spms.core.exceptions import PartialBatchFailure
from spms.core.logging_config import logger
from spms.schemas.promotion import CohortFilter
from spms.services.promotion_reconciler import PromotionReconciler
from spms.services.semester_promotion import SemesterPromotionService, run_promotion_pipeline


async def _advance_cohort(degree_program: str, from_semester: int) -> Dict[str, Any]:
    try:
        async with get_session_local()() as db:
            result = await SemesterPromotionService(db).advance_cohort(degree_program, from_semester)
        return result.model_dump(mode="json")
    finally:
        await close_db()


async def _reconcile(min_semester: Optional[int], degree_program: Optional[str]) -> Dict[str, Any]:
    cohort_args = {"degree_program": degree_program}
    if min_semester is not None:
        cohort_args["min_semester"] = min_semester
    try:
        report = await PromotionReconciler().run_promotion_reconciliation(CohortFilter(**cohort_args))
        return report.model_dump(mode="json")
    finally:
        await close_db()


async def _promote_and_reconcile(degree_program: str, from_semester: int) -> Dict[str, Any]:
    try:
        promotion, report = await run_promotion_pipeline(degree_program, from_semester)
        return {
            "promotion": promotion.model_dump(mode="json"),
            "reconciliation": report.model_dump(mode="json"),
        }
    finally:
        await close_db()


@celery_app.task(name="spms.promotions.advance_cohort")
def advance_cohort_task(degree_program: str, from_semester: int):
    """
    Bulk-advance one cohort's semester (Celery task).

    Prefer promote_and_reconcile_task; this only exists for operators who
    need to run the two steps separately.
    """
    logger.info(f"Advancing cohort {degree_program} sem {from_semester}")
    return asyncio.run(_advance_cohort(degree_program, from_semester))


@celery_app.task(name="spms.promotions.reconcile")
def reconcile_cohort_task(min_semester: Optional[int] = None, degree_program: Optional[str] = None,
                          fail_on_errors: bool = False):
    """
    Run a promotion reconciliation pass (Celery task).

    Args:
        min_semester: Cohort lower bound, defaults to RECONCILE_MIN_SEMESTER
        degree_program: Restrict to one program
        fail_on_errors: Raise PartialBatchFailure (after the whole pass) if any entity failed
    """
    logger.info(f"Reconciling cohort min_semester={min_semester} degree={degree_program}")
    report = asyncio.run(_reconcile(min_semester, degree_program))
    if fail_on_errors and report["errors"]:
        raise PartialBatchFailure(report["errors"])
    return report


@celery_app.task(name="spms.promotions.promote_and_reconcile")
def promote_and_reconcile_task(degree_program: str, from_semester: int):
    """
    Daily promotion pipeline (Celery beat): advance the cohort, then reconcile it.

    Both steps run in this one task, in order, so reconciliation never sees a
    half-scheduled promotion.
    """
    logger.info(f"Promotion pipeline for {degree_program} sem {from_semester}")
    return asyncio.run(_promote_and_reconcile(degree_program, from_semester))
