"""
Promotion Reconciler
====================

Brings projects, groups and the student-side caches back in line after a
cohort's semester counter moved forward.

There is no cross-table transaction here. Every step is a guarded,
idempotent write, so a pass can be interrupted, interleaved with other
writers, or simply run again; a second pass with nothing new to fix makes
no changes at all.

Work is split into independent units (one per student, one per group), each
with its own session. A failing unit is rolled back and recorded in the
report; the rest of the batch carries on.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spms.core.concurrency import apply_with_optimistic_retry, load_fresh
from spms.core.config import settings
from spms.core.database import get_session_local
from spms.core.exceptions import StudentNotFoundError, GroupNotFoundError, ProjectNotFoundError
from spms.core.logging_config import logger, batch_context, entity_context
from spms.models.group import Group, GroupMember
from spms.models.project import Project, ProjectStatus, TERMINAL_PROJECT_STATUSES
from spms.models.student import (
    Student, StudentCurrentProject, StudentGroupMembership, CurrentProjectStatus,
)
from spms.schemas.promotion import CohortFilter, ReconciliationReport, BatchError
from spms.services.group_status_engine import GroupStatusService


UnitWorker = Callable[[AsyncSession, str], Awaitable[Dict[str, int]]]


class PromotionReconciler:
    """Convergent clean-up pass over promoted students and their old groups"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        final_semester: Optional[int] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory or get_session_local()
        self.final_semester = final_semester or settings.FINAL_SEMESTER
        self.max_concurrency = max_concurrency or settings.RECONCILE_MAX_CONCURRENCY

    # =====================================================
    # ENTRY POINT
    # =====================================================

    async def run_promotion_reconciliation(
        self, cohort: Optional[CohortFilter] = None
    ) -> ReconciliationReport:
        """
        Run one reconciliation pass.

        Student pass, for each student matched by ``cohort``:
          1. complete stale-semester projects (own and via old groups)
          2. complete stale entries in the student's current_projects cache
          3. deactivate stale group_memberships entries
          4. clear active_group_id if it points at an old-semester group

        Group pass, over every group below the final semester:
          disband empty groups and groups whose members have all moved on,
          otherwise let validate_and_update_group_status settle the status.

        Never raises for a single entity; failures land in ``report.errors``.
        """
        cohort = cohort or CohortFilter(min_semester=settings.RECONCILE_MIN_SEMESTER)
        with batch_context("reconcile"):
            return await self._run_pass(cohort)

    async def _run_pass(self, cohort: CohortFilter) -> ReconciliationReport:
        started = time.perf_counter()
        report = ReconciliationReport()

        student_ids = await self._select_cohort(cohort)
        logger.log_batch_event("reconcile", "student pass started", students=len(student_ids))
        # Every attempted student counts, failed ones included
        report.students_processed = len(student_ids)
        for outcome in await self._run_units("student", student_ids, self._reconcile_student, report):
            for counter, value in outcome.items():
                setattr(report, counter, getattr(report, counter) + value)

        group_ids = await self._select_groups()
        logger.log_batch_event("reconcile", "group pass started", groups=len(group_ids))
        for outcome in await self._run_units("group", group_ids, self._reconcile_group, report):
            for counter, value in outcome.items():
                setattr(report, counter, getattr(report, counter) + value)

        logger.log_batch_event(
            "reconcile", "finished",
            duration_ms=(time.perf_counter() - started) * 1000,
            slow_ms=60000,
            **report.model_dump(exclude={"errors"}),
            error_count=len(report.errors),
        )
        return report

    # =====================================================
    # UNIT SCHEDULING
    # =====================================================

    async def _run_units(
        self, kind: str, entity_ids: List[str], worker: UnitWorker, report: ReconciliationReport
    ) -> List[Dict[str, int]]:
        """Run ``worker`` once per id on a bounded pool; failures go to report.errors"""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(entity_id: str) -> Optional[Dict[str, int]]:
            async with semaphore, self.session_factory() as db:
                with entity_context(kind, entity_id):
                    try:
                        return await worker(db, entity_id)
                    except Exception as e:
                        await db.rollback()
                        logger.log_unit_failure(e, kind, entity_id)
                        report.errors.append(BatchError(type=kind, id=str(entity_id), error=str(e)))
                        return None

        outcomes = await asyncio.gather(*(run_one(entity_id) for entity_id in entity_ids))
        return [outcome for outcome in outcomes if outcome is not None]

    async def _select_cohort(self, cohort: CohortFilter) -> List[str]:
        query = select(Student.id).where(Student.current_semester >= cohort.min_semester)
        if cohort.degree_program is not None:
            query = query.where(Student.degree_program == cohort.degree_program)
        if cohort.student_ids:
            query = query.where(Student.id.in_(cohort.student_ids))

        async with self.session_factory() as db:
            result = await db.execute(query.order_by(Student.id))
            return list(result.scalars().all())

    async def _select_groups(self) -> List[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Group.id).where(Group.semester < self.final_semester).order_by(Group.id)
            )
            return list(result.scalars().all())

    # =====================================================
    # STUDENT PASS
    # =====================================================

    async def _reconcile_student(self, db: AsyncSession, student_id: str) -> Dict[str, int]:
        """Steps 1-4 for one student; must run in order"""
        student = await load_fresh(db, Student, student_id)
        if not student:
            raise StudentNotFoundError(student_id)
        semester = student.current_semester
        active_group_id = student.active_group_id

        projects_updated = await self._complete_stale_projects(db, student_id, semester)
        current_projects_updated = await self._complete_stale_current_projects(db, student_id, semester)
        group_memberships_updated = await self._deactivate_stale_memberships(db, student_id, semester)
        group_ids_cleared = await self._clear_stale_active_group(db, student_id, active_group_id)

        if projects_updated or current_projects_updated or group_memberships_updated or group_ids_cleared:
            logger.info(
                f"Reconciled student {student_id} (sem {semester}): "
                f"{projects_updated} projects, {current_projects_updated} cached projects, "
                f"{group_memberships_updated} memberships, group ref cleared={bool(group_ids_cleared)}"
            )

        return {
            "projects_updated": projects_updated,
            "current_projects_updated": current_projects_updated,
            "group_memberships_updated": group_memberships_updated,
            "group_ids_cleared": group_ids_cleared,
        }

    async def _complete_stale_projects(self, db: AsyncSession, student_id: str, semester: int) -> int:
        """Step 1: complete non-terminal projects from earlier semesters"""
        stale_groups = (
            select(GroupMember.group_id)
            .join(Group, Group.id == GroupMember.group_id)
            .where(
                GroupMember.student_id == student_id,
                GroupMember.is_active == True,
                Group.semester < semester,
            )
        )
        result = await db.execute(
            select(Project.id).where(
                or_(Project.student_id == student_id, Project.group_id.in_(stale_groups)),
                Project.semester < semester,
                Project.status.notin_(list(TERMINAL_PROJECT_STATUSES)),
            )
        )
        project_ids = list(result.scalars().all())

        updated = 0
        for project_id in project_ids:
            if await self._complete_project(db, project_id, semester):
                updated += 1
        return updated

    async def _complete_project(self, db: AsyncSession, project_id: str, student_semester: int) -> bool:
        def apply(project: Project) -> bool:
            # Re-checked on every attempt against the freshly read row
            if project.status in TERMINAL_PROJECT_STATUSES or project.semester >= student_semester:
                return False
            project.status = ProjectStatus.COMPLETED
            project.completed_at = datetime.utcnow()
            return True

        _, changed = await apply_with_optimistic_retry(
            db,
            lambda: load_fresh(db, Project, project_id),
            apply,
            resource_type="Project",
            resource_id=project_id,
            not_found=lambda: ProjectNotFoundError(project_id),
        )
        if changed:
            logger.debug(f"Completed stale project {project_id}")
        return changed

    async def _complete_stale_current_projects(self, db: AsyncSession, student_id: str, semester: int) -> int:
        """Step 2: conditional bulk update of the current_projects cache"""
        result = await db.execute(
            update(StudentCurrentProject)
            .where(
                StudentCurrentProject.student_id == student_id,
                StudentCurrentProject.semester < semester,
                StudentCurrentProject.status == CurrentProjectStatus.ACTIVE,
            )
            .values(status=CurrentProjectStatus.COMPLETED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount or 0

    async def _deactivate_stale_memberships(self, db: AsyncSession, student_id: str, semester: int) -> int:
        """Step 3: conditional bulk update of group_memberships"""
        result = await db.execute(
            update(StudentGroupMembership)
            .where(
                StudentGroupMembership.student_id == student_id,
                StudentGroupMembership.semester < semester,
                StudentGroupMembership.is_active == True,
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount or 0

    async def _clear_stale_active_group(
        self, db: AsyncSession, student_id: str, active_group_id: Optional[str]
    ) -> int:
        """Step 4: drop active_group_id when it points at an earlier-semester group"""
        if not active_group_id:
            return 0

        group_semester = await db.scalar(select(Group.semester).where(Group.id == active_group_id))
        if group_semester is None:
            return 0

        def apply(student: Student) -> bool:
            if student.active_group_id != active_group_id or group_semester >= student.current_semester:
                return False
            student.active_group_id = None
            return True

        _, changed = await apply_with_optimistic_retry(
            db,
            lambda: load_fresh(db, Student, student_id),
            apply,
            resource_type="Student",
            resource_id=student_id,
            not_found=lambda: StudentNotFoundError(student_id),
        )
        return int(changed)

    # =====================================================
    # GROUP PASS
    # =====================================================

    async def _reconcile_group(self, db: AsyncSession, group_id: str) -> Dict[str, int]:
        service = GroupStatusService(db)
        group = await load_fresh(db, Group, group_id)
        if not group:
            raise GroupNotFoundError(group_id)

        active_count = group.active_member_count
        if active_count == 0:
            changed = await service.disband_group(group_id)
            if changed:
                logger.info(f"Disbanded group {group_id} (sem {group.semester}): no active members")
            return {"groups_disbanded": int(changed)}

        member_semesters = await service.get_member_semesters(group)
        all_resolved = len(member_semesters) == active_count
        if all_resolved and all(s > group.semester for s in member_semesters.values()):
            changed = await service.disband_group(group_id)
            if changed:
                logger.info(f"Disbanded group {group_id} (sem {group.semester}): all members promoted")
            return {"groups_disbanded": int(changed)}

        await service.validate_and_update_group_status(group_id)
        return {"groups_validated": 1}
