"""
Group Status Engine
Derives the status a group should have from its membership and persists it.

compute_status() is pure: it only looks at a snapshot and says what the status
should be. GroupStatusService loads groups, runs the rules, and writes the
result with an optimistic versioned update.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spms.core.concurrency import apply_with_optimistic_retry, load_fresh
from spms.core.exceptions import GroupNotFoundError
from spms.core.logging_config import logger
from spms.models.group import Group, GroupStatus, PROTECTED_STATUSES, RECRUITING_STATUSES
from spms.models.student import Student
from spms.schemas.group_status import GroupStatusResult, PromotionCheck, GroupAudit


@dataclass(frozen=True)
class GroupSnapshot:
    """The parts of a group the status rules look at"""
    status: GroupStatus
    min_members: int
    max_members: int
    active_member_count: int
    is_active: bool = True

    @classmethod
    def from_group(cls, group: Group) -> "GroupSnapshot":
        return cls(
            status=GroupStatus(group.status),
            min_members=group.min_members,
            max_members=group.max_members,
            active_member_count=group.active_member_count,
            is_active=group.is_active,
        )

    @classmethod
    def from_members(cls, status: GroupStatus, min_members: int, max_members: int,
                     member_active_flags: Iterable[bool], is_active: bool = True) -> "GroupSnapshot":
        return cls(
            status=GroupStatus(status),
            min_members=min_members,
            max_members=max_members,
            active_member_count=sum(1 for flag in member_active_flags if flag),
            is_active=is_active,
        )


@dataclass(frozen=True)
class StatusComputation:
    """What compute_status decided"""
    new_status: GroupStatus
    new_is_active: bool
    changed: bool
    reason: str
    error: bool = False
    preserved: bool = False


NO_CHANGE_REASON = "No status change needed"


def compute_status(snapshot: GroupSnapshot) -> StatusComputation:
    """
    Apply the status rules in priority order:

    1. no active members          -> disbanded (overrides finalized/locked)
    2. more members than max      -> error state, nothing changes
    3. finalized/locked below min -> preserved, nothing changes
    4. below min                  -> forming
    5. in range while recruiting  -> complete
    6. anything else              -> unchanged

    Disbanded groups deliberately do not follow rules 4 and 5: a disbanded
    group that still has active members (below min or in range) keeps
    status disbanded and is_active=False. Moving it to forming would leave
    an inactive group in a recruiting status; reviving it is an
    administrator's call, not a routine pass's.
    """
    count = snapshot.active_member_count
    status = snapshot.status
    min_members = snapshot.min_members
    max_members = snapshot.max_members

    def unchanged(reason: str = NO_CHANGE_REASON, **flags) -> StatusComputation:
        return StatusComputation(status, snapshot.is_active, False, reason, **flags)

    if count == 0:
        if status != GroupStatus.DISBANDED or snapshot.is_active:
            return StatusComputation(
                GroupStatus.DISBANDED, False, True, "No active members remaining"
            )
        return unchanged()

    if count > max_members:
        return unchanged(
            f"ERROR: Group has {count} members but max is {max_members}. "
            f"Manual intervention required.",
            error=True,
        )

    if status in PROTECTED_STATUSES and count < min_members:
        return unchanged(
            f"Group has {count} members (below minimum {min_members}) but is "
            f"{status.value}. Status preserved; manual intervention may be needed.",
            preserved=True,
        )

    if status == GroupStatus.DISBANDED:
        return unchanged("Group is disbanded. Status preserved.")

    if count < min_members:
        if status != GroupStatus.FORMING:
            return StatusComputation(
                GroupStatus.FORMING, True, True,
                f"Member count ({count}) below minimum ({min_members})",
            )
        return unchanged()

    if status in RECRUITING_STATUSES:
        return StatusComputation(
            GroupStatus.COMPLETE, True, True,
            f"Member count ({count}) within valid range ({min_members}-{max_members})",
        )

    return unchanged()


class GroupStatusService:
    """Loads groups, applies compute_status, and audits groups against semesters"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_group(self, group_id: str) -> Group:
        group = await load_fresh(self.db, Group, group_id)
        if not group:
            raise GroupNotFoundError(group_id)
        return group

    async def validate_and_update_group_status(self, group_id: str) -> GroupStatusResult:
        """
        Recompute a group's status and persist it if it changed.

        Calling this twice with no membership change in between returns
        status_changed=False the second time.

        Raises:
            GroupNotFoundError: group does not exist
            ConflictError: concurrent writers kept winning
        """
        outcome = {}

        def apply(group: Group) -> bool:
            snapshot = GroupSnapshot.from_group(group)
            computation = compute_status(snapshot)
            outcome.update(
                previous_status=snapshot.status,
                computation=computation,
                member_count=snapshot.active_member_count,
                min_members=snapshot.min_members,
                max_members=snapshot.max_members,
            )
            if not computation.changed:
                return False
            group.status = computation.new_status
            group.is_active = computation.new_is_active
            return True

        await apply_with_optimistic_retry(
            self.db,
            lambda: load_fresh(self.db, Group, group_id),
            apply,
            resource_type="Group",
            resource_id=group_id,
            not_found=lambda: GroupNotFoundError(group_id),
        )

        computation: StatusComputation = outcome["computation"]
        previous_status: GroupStatus = outcome["previous_status"]

        if computation.error:
            logger.error(
                f"Group {group_id} has {outcome['member_count']} members but max is "
                f"{outcome['max_members']}. This is an error state.",
                extra={"group_id": group_id},
            )
        elif computation.preserved:
            logger.warning(f"Group {group_id}: {computation.reason}", extra={"group_id": group_id})
        elif computation.changed:
            logger.log_status_change(
                "Group", group_id, previous_status.value, computation.new_status.value,
                reason=computation.reason,
            )

        return GroupStatusResult(
            status_changed=computation.changed,
            previous_status=previous_status,
            current_status=computation.new_status,
            member_count=outcome["member_count"],
            min_members=outcome["min_members"],
            max_members=outcome["max_members"],
            reason=computation.reason,
            error=computation.error,
            preserved=computation.preserved,
        )

    async def disband_group(self, group_id: str) -> bool:
        """Mark a group disbanded and inactive. Returns True if anything changed."""
        def apply(group: Group) -> bool:
            if group.status == GroupStatus.DISBANDED and not group.is_active:
                return False
            group.status = GroupStatus.DISBANDED
            group.is_active = False
            return True

        _, changed = await apply_with_optimistic_retry(
            self.db,
            lambda: load_fresh(self.db, Group, group_id),
            apply,
            resource_type="Group",
            resource_id=group_id,
            not_found=lambda: GroupNotFoundError(group_id),
        )
        return changed

    async def get_member_semesters(self, group: Group) -> dict:
        """Map active member student id -> current semester, for members that still exist"""
        member_ids = [m.student_id for m in group.active_members]
        if not member_ids:
            return {}
        result = await self.db.execute(
            select(Student.id, Student.current_semester).where(Student.id.in_(member_ids))
        )
        return {student_id: semester for student_id, semester in result.all()}

    async def check_all_members_promoted(self, group_id: str, target_semester: int) -> PromotionCheck:
        """Check whether every active member is at or beyond ``target_semester``"""
        group = await self._get_group(group_id)

        if group.active_member_count == 0:
            return PromotionCheck(
                all_promoted=True,
                group_semester=group.semester,
                target_semester=target_semester,
                reason="No active members in group",
            )

        semesters = list((await self.get_member_semesters(group)).values())
        promoted_count = sum(1 for s in semesters if s >= target_semester)

        return PromotionCheck(
            all_promoted=all(s >= target_semester for s in semesters),
            total_members=group.active_member_count,
            promoted_count=promoted_count,
            current_semesters=semesters,
            group_semester=group.semester,
            target_semester=target_semester,
        )

    async def validate_group_for_semester(self, group_id: str, semester: int) -> GroupAudit:
        """Audit a group against a semester without changing anything"""
        group = await self._get_group(group_id)

        issues = []
        warnings = []
        active_members = group.active_members
        count = len(active_members)

        if group.semester != semester:
            issues.append(
                f"Group semester ({group.semester}) does not match expected semester ({semester})"
            )

        if count < group.min_members:
            issues.append(f"Group has {count} active members but minimum is {group.min_members}")
        if count > group.max_members:
            issues.append(f"Group has {count} active members but maximum is {group.max_members}")

        if count == 0 and group.status != GroupStatus.DISBANDED:
            issues.append("Group has no active members but status is not disbanded")

        if group.min_members <= count <= group.max_members and group.status == GroupStatus.FORMING:
            warnings.append('Group has sufficient members but status is still "forming"')

        if not any(m.student_id == group.leader_id for m in active_members):
            issues.append("Group leader is not an active member")

        return GroupAudit(
            valid=not issues,
            issues=issues,
            warnings=warnings,
            member_count=count,
            group_status=group.status,
            group_semester=group.semester,
        )
