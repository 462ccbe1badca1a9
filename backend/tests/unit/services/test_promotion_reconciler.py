"""
Unit Tests for the Promotion Reconciler
"""
import pytest

from spms.core.concurrency import load_fresh
from spms.models import (
    Student, Group, GroupStatus, Project, ProjectStatus,
    StudentCurrentProject, StudentGroupMembership, CurrentProjectStatus, DegreeProgram,
)
from spms.schemas.promotion import CohortFilter
import spms.services.promotion_reconciler as reconciler_module
from spms.services.promotion_reconciler import PromotionReconciler
from sqlalchemy import select


async def _memberships(db_session, student_id):
    result = await db_session.execute(
        select(StudentGroupMembership)
        .where(StudentGroupMembership.student_id == student_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def _cached_projects(db_session, student_id):
    result = await db_session.execute(
        select(StudentCurrentProject)
        .where(StudentCurrentProject.student_id == student_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


class TestStudentPass:
    """Per-student clean-up steps"""

    @pytest.mark.asyncio
    async def test_stale_solo_project_completed_current_untouched(
        self, db_session, session_factory, make_student, make_project
    ):
        """Promoted 5 -> 6: the semester 5 project completes, semester 6 stays as is"""
        student = await make_student(semester=6)
        old = await make_project(5, student=student, status=ProjectStatus.ACTIVE)
        new = await make_project(6, student=student, status=ProjectStatus.REGISTERED)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=6)
        )

        old = await load_fresh(db_session, Project, old.id)
        new = await load_fresh(db_session, Project, new.id)
        assert old.status == ProjectStatus.COMPLETED
        assert old.completed_at is not None
        assert new.status == ProjectStatus.REGISTERED
        assert report.projects_updated == 1
        assert report.students_processed == 1
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_group_project_completed_through_old_group(
        self, db_session, session_factory, make_student, make_group, make_project
    ):
        students = [await make_student(semester=7) for _ in range(2)]
        group = await make_group(6, students, status=GroupStatus.COMPLETE)
        project = await make_project(6, group=group, status=ProjectStatus.FACULTY_ALLOCATED)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=6)
        )

        project = await load_fresh(db_session, Project, project.id)
        assert project.status == ProjectStatus.COMPLETED
        # Completed once even though both members reference it
        assert report.projects_updated == 1

    @pytest.mark.asyncio
    async def test_cancelled_projects_stay_cancelled(
        self, db_session, session_factory, make_student, make_project
    ):
        student = await make_student(semester=7)
        project = await make_project(6, student=student, status=ProjectStatus.CANCELLED)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation()

        project = await load_fresh(db_session, Project, project.id)
        assert project.status == ProjectStatus.CANCELLED
        assert report.projects_updated == 0

    @pytest.mark.asyncio
    async def test_caches_and_group_reference_cleaned(
        self, db_session, session_factory, make_student, make_group, make_project
    ):
        """current_projects, group_memberships and active_group_id are brought in line"""
        students = [await make_student(semester=7) for _ in range(2)]
        group = await make_group(6, students, status=GroupStatus.COMPLETE)
        await make_project(6, group=group, cache_for=students)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=7)
        )

        assert report.current_projects_updated == 2
        assert report.group_memberships_updated == 2
        assert report.group_ids_cleared == 2
        for student in students:
            assert all(not m.is_active for m in await _memberships(db_session, student.id))
            assert all(
                c.status == CurrentProjectStatus.COMPLETED
                for c in await _cached_projects(db_session, student.id)
            )
            fresh = await load_fresh(db_session, Student, student.id)
            assert fresh.active_group_id is None

    @pytest.mark.asyncio
    async def test_current_semester_group_reference_kept(
        self, db_session, session_factory, make_student, make_group
    ):
        students = [await make_student(semester=6) for _ in range(2)]
        group = await make_group(6, students)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=6)
        )

        assert report.group_ids_cleared == 0
        assert report.group_memberships_updated == 0
        fresh = await load_fresh(db_session, Student, students[0].id)
        assert fresh.active_group_id == group.id

    @pytest.mark.asyncio
    async def test_cohort_filter_by_degree(self, db_session, session_factory, make_student, make_project):
        btech = await make_student(semester=7, degree_program=DegreeProgram.BTECH)
        mtech = await make_student(semester=4, degree_program=DegreeProgram.MTECH)
        btech_project = await make_project(6, student=btech)
        mtech_project = await make_project(3, student=mtech)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=4, degree_program=DegreeProgram.MTECH)
        )

        assert report.students_processed == 1
        assert (await load_fresh(db_session, Project, mtech_project.id)).status == ProjectStatus.COMPLETED
        assert (await load_fresh(db_session, Project, btech_project.id)).status == ProjectStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_project_edited_concurrently_still_completed(
        self, db_session, session_factory, make_student, make_project, monkeypatch
    ):
        """An advisor renames the project between our read and our write; the retry wins"""
        student = await make_student(semester=7)
        project = await make_project(6, student=student)
        real_load_fresh = reconciler_module.load_fresh
        edited = []

        async def load_then_edit_elsewhere(db, model, entity_id):
            entity = await real_load_fresh(db, model, entity_id)
            if model is Project and not edited:
                edited.append(entity_id)
                async with session_factory() as other:
                    rival = await real_load_fresh(other, Project, entity_id)
                    rival.title = "Renamed by advisor"
                    await other.commit()
            return entity

        monkeypatch.setattr(reconciler_module, "load_fresh", load_then_edit_elsewhere)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=7)
        )

        project = await load_fresh(db_session, Project, project.id)
        assert edited == [project.id]
        assert project.status == ProjectStatus.COMPLETED
        assert project.title == "Renamed by advisor"
        assert project.version == 3
        assert report.projects_updated == 1
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_vanished_project_reported(
        self, db_session, session_factory, make_student, make_project, monkeypatch
    ):
        student = await make_student(semester=7)
        project = await make_project(6, student=student)
        real_load_fresh = reconciler_module.load_fresh

        async def delete_then_load(db, model, entity_id):
            if model is Project:
                async with session_factory() as other:
                    await other.delete(await real_load_fresh(other, Project, entity_id))
                    await other.commit()
            return await real_load_fresh(db, model, entity_id)

        monkeypatch.setattr(reconciler_module, "load_fresh", delete_then_load)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=7)
        )

        assert report.students_processed == 1
        assert len(report.errors) == 1
        assert report.errors[0].id == student.id
        assert project.id in report.errors[0].error


class TestGroupPass:
    """Group settlement after the student pass"""

    @pytest.mark.asyncio
    async def test_group_disbanded_when_all_members_moved_on(
        self, db_session, session_factory, make_student, make_group
    ):
        """Semester 5 group whose two members are now in semester 7 is disbanded"""
        students = [await make_student(semester=7) for _ in range(2)]
        group = await make_group(5, students, status=GroupStatus.COMPLETE)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=6)
        )

        group = await load_fresh(db_session, Group, group.id)
        assert group.status == GroupStatus.DISBANDED
        assert group.is_active is False
        assert report.groups_disbanded == 1

    @pytest.mark.asyncio
    async def test_empty_group_disbanded(self, db_session, session_factory, make_student, make_group):
        student = await make_student(semester=6)
        group = await make_group(6, [student], status=GroupStatus.FINALIZED, inactive=[student])

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation()

        group = await load_fresh(db_session, Group, group.id)
        assert group.status == GroupStatus.DISBANDED
        assert report.groups_disbanded == 1

    @pytest.mark.asyncio
    async def test_current_group_settles_to_complete(
        self, db_session, session_factory, make_student, make_group
    ):
        students = [await make_student(semester=6) for _ in range(3)]
        group = await make_group(6, students, status=GroupStatus.INVITATIONS_SENT)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation()

        group = await load_fresh(db_session, Group, group.id)
        assert group.status == GroupStatus.COMPLETE
        assert report.groups_validated == 1
        assert report.groups_disbanded == 0

    @pytest.mark.asyncio
    async def test_final_semester_groups_skipped(
        self, db_session, session_factory, make_student, make_group
    ):
        student = await make_student(semester=8)
        group = await make_group(8, [student], status=GroupStatus.OPEN, inactive=[student])

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation()

        group = await load_fresh(db_session, Group, group.id)
        assert group.status == GroupStatus.OPEN
        assert report.groups_disbanded == 0
        assert report.groups_validated == 0

    @pytest.mark.asyncio
    async def test_partially_promoted_group_kept(
        self, db_session, session_factory, make_student, make_group
    ):
        """Semester 5 group with one member in semester 7 and one still in 5 is not disbanded"""
        promoted = await make_student(semester=7)
        held_back = await make_student(semester=5)
        group = await make_group(5, [promoted, held_back], status=GroupStatus.COMPLETE)

        report = await PromotionReconciler(session_factory).run_promotion_reconciliation(
            CohortFilter(min_semester=6)
        )

        group = await load_fresh(db_session, Group, group.id)
        assert group.status == GroupStatus.COMPLETE
        assert group.is_active is True
        assert report.groups_disbanded == 0
        assert report.groups_validated == 1

    @pytest.mark.asyncio
    async def test_finalized_group_below_minimum_left_alone(
        self, db_session, session_factory, make_student, make_group
    ):
        """One of two required members left a finalized group; repeated runs keep it finalized"""
        stayed = await make_student(semester=6)
        left = await make_student(semester=6)
        group = await make_group(
            6, [stayed, left], status=GroupStatus.FINALIZED, min_members=2, inactive=[left]
        )
        version = group.version

        reconciler = PromotionReconciler(session_factory)
        first = await reconciler.run_promotion_reconciliation()
        second = await reconciler.run_promotion_reconciliation()

        group = await load_fresh(db_session, Group, group.id)
        assert group.status == GroupStatus.FINALIZED
        assert group.is_active is True
        assert group.version == version
        for report in (first, second):
            assert report.groups_disbanded == 0
            assert report.groups_validated == 1
            assert report.errors == []
        assert second.mutation_count == 0


class TestConvergence:
    """Re-running and failure isolation"""

    @pytest.mark.asyncio
    async def test_second_run_makes_no_changes(
        self, db_session, session_factory, make_student, make_group, make_project
    ):
        students = [await make_student(semester=7) for _ in range(2)]
        group = await make_group(5, students, status=GroupStatus.COMPLETE)
        await make_project(5, group=group, cache_for=students)
        await make_project(6, student=students[0])

        reconciler = PromotionReconciler(session_factory)
        first = await reconciler.run_promotion_reconciliation()
        second = await reconciler.run_promotion_reconciliation()

        assert first.mutation_count > 0
        assert second.mutation_count == 0
        assert second.students_processed == 2
        assert second.errors == []

    @pytest.mark.asyncio
    async def test_failing_student_does_not_abort_batch(
        self, db_session, session_factory, make_student, make_project, monkeypatch
    ):
        healthy = await make_student(semester=6)
        broken = await make_student(semester=6)
        healthy_project = await make_project(5, student=healthy)
        await make_project(5, student=broken)

        reconciler = PromotionReconciler(session_factory)
        original = reconciler._complete_stale_projects

        async def flaky(db, student_id, semester):
            if student_id == broken.id:
                raise RuntimeError("simulated outage")
            return await original(db, student_id, semester)

        monkeypatch.setattr(reconciler, "_complete_stale_projects", flaky)

        report = await reconciler.run_promotion_reconciliation()

        assert report.students_processed == 2
        assert len(report.errors) == 1
        assert report.errors[0].type == "student"
        assert report.errors[0].id == broken.id
        assert "simulated outage" in report.errors[0].error
        project = await load_fresh(db_session, Project, healthy_project.id)
        assert project.status == ProjectStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_cohort(self, session_factory):
        report = await PromotionReconciler(session_factory).run_promotion_reconciliation()

        assert report.students_processed == 0
        assert report.mutation_count == 0
        assert report.errors == []
