"""
SPMS - Test Configuration and Fixtures
"""
import os
import asyncio
from typing import AsyncGenerator, Iterable, Optional
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from faker import Faker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test_spms.db'
os.environ['LOG_FILE'] = ''
os.environ['CURRENT_ACADEMIC_YEAR'] = ''
os.environ['CELERY_BROKER_URL'] = 'memory://'
os.environ['CELERY_RESULT_BACKEND'] = 'cache+memory://'
# SQLite serializes writers; keep reconciliation units one at a time
os.environ['RECONCILE_MAX_CONCURRENCY'] = '1'

import spms.models  # noqa: F401  (registers every table on Base.metadata)
from spms.core.database import get_session_local, init_db, drop_db, close_db
from spms.models import (
    Student, StudentGroupMembership, StudentCurrentProject, DegreeProgram,
    Group, GroupMember, GroupMemberRole, GroupStatus, MembershipRole,
    Project, ProjectStatus, CurrentProjectStatus, CurrentProjectRole,
)

fake = Faker()


async def _create_tables() -> None:
    await init_db()


async def _drop_tables() -> None:
    await drop_db()
    await close_db()


@pytest.fixture(scope='function')
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh schema per test; yields the application's session factory"""
    await _create_tables()
    yield get_session_local()
    await _drop_tables()


@pytest.fixture(scope='function')
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sync_database():
    """Schema for synchronous tests (Celery tasks run their own event loop)"""
    asyncio.run(_create_tables())
    yield get_session_local
    asyncio.run(_drop_tables())


@pytest.fixture
def make_student(db_session: AsyncSession):
    """Factory for persisted students"""
    async def _make(semester: int = 6, degree_program: DegreeProgram = DegreeProgram.BTECH,
                    **kwargs) -> Student:
        kwargs.setdefault('full_name', fake.name())
        kwargs.setdefault('email', fake.unique.email())
        kwargs.setdefault('roll_number', f"MIS{fake.unique.random_int(100000, 999999)}")
        student = Student(degree_program=degree_program, current_semester=semester, **kwargs)
        db_session.add(student)
        await db_session.commit()
        return student
    return _make


@pytest.fixture
def make_group(db_session: AsyncSession):
    """
    Factory for persisted groups.

    Every student in ``members`` gets a GroupMember row (inactive for those in
    ``inactive``), a matching group_memberships entry and active_group_id.
    """
    async def _make(semester: int, members: Iterable[Student] = (),
                    status: GroupStatus = GroupStatus.FORMING,
                    min_members: int = 2, max_members: int = 4,
                    inactive: Iterable[Student] = (), **kwargs) -> Group:
        members = list(members)
        inactive_ids = {s.id for s in inactive}

        group = Group(
            name=kwargs.pop('name', f"Team {fake.unique.word().title()}"),
            semester=semester,
            status=status,
            min_members=min_members,
            max_members=max_members,
            leader_id=members[0].id if members else None,
            is_active=status != GroupStatus.DISBANDED,
            **kwargs,
        )
        group.members = [
            GroupMember(
                student_id=student.id,
                role=GroupMemberRole.LEADER if i == 0 else GroupMemberRole.MEMBER,
                is_active=student.id not in inactive_ids,
            )
            for i, student in enumerate(members)
        ]
        db_session.add(group)
        await db_session.flush()

        for i, student in enumerate(members):
            db_session.add(StudentGroupMembership(
                student_id=student.id,
                group_id=group.id,
                semester=semester,
                role=MembershipRole.LEADER if i == 0 else MembershipRole.MEMBER,
                is_active=student.id not in inactive_ids,
            ))
            if student.id not in inactive_ids:
                student.active_group_id = group.id

        await db_session.commit()
        return group
    return _make


@pytest.fixture
def make_project(db_session: AsyncSession):
    """Factory for projects owned by exactly one student or group"""
    async def _make(semester: int, student: Optional[Student] = None, group: Optional[Group] = None,
                    status: ProjectStatus = ProjectStatus.ACTIVE,
                    cache_for: Iterable[Student] = ()) -> Project:
        project = Project(
            title=fake.catch_phrase(),
            semester=semester,
            status=status,
            student_id=student.id if student else None,
            group_id=group.id if group else None,
        )
        db_session.add(project)
        await db_session.flush()

        for holder in cache_for:
            db_session.add(StudentCurrentProject(
                student_id=holder.id,
                project_id=project.id,
                semester=semester,
                status=CurrentProjectStatus.ACTIVE,
                role=CurrentProjectRole.SOLO if student else CurrentProjectRole.MEMBER,
            ))

        await db_session.commit()
        return project
    return _make
