"""
Optimistic-concurrency helpers.

Versioned models (Student, Group, Project) declare ``version_id_col``, so
SQLAlchemy adds ``WHERE version = :seen`` to every UPDATE and raises
``StaleDataError`` when another writer got there first. These helpers turn
that into a read-modify-write retry loop: roll back, re-read the row, re-apply
the intended change, try again.
"""
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from spms.core.config import settings
from spms.core.exceptions import ConflictError
from spms.core.logging_config import logger

T = TypeVar("T")


async def load_fresh(db: AsyncSession, model: Type[T], entity_id: str) -> Optional[T]:
    """Load a row by id, overwriting whatever the session has cached for it"""
    result = await db.execute(
        select(model)
        .where(model.id == entity_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def apply_with_optimistic_retry(
    db: AsyncSession,
    load: Callable[[], Awaitable[Optional[T]]],
    mutate: Callable[[T], bool],
    *,
    resource_type: str,
    resource_id: str,
    not_found: Optional[Callable[[], Exception]] = None,
    max_attempts: Optional[int] = None,
) -> Tuple[Optional[T], bool]:
    """
    Apply ``mutate`` to a freshly loaded entity and commit, retrying on version conflicts.

    Args:
        db: Session that owns the write. It is committed on success and rolled
            back before every retry.
        load: Coroutine factory returning the current row (use ``load_fresh``).
        mutate: Applies the intended change in place and returns True if anything
            changed. It must be safe to call again on a newer version of the row.
        resource_type / resource_id: Used for logging and ConflictError.
        not_found: Exception factory raised when ``load`` returns None. When
            omitted a vanished row yields ``(None, False)``.
        max_attempts: Defaults to settings.OPTIMISTIC_RETRY_ATTEMPTS.

    Returns:
        ``(entity, changed)``

    Raises:
        ConflictError: every attempt hit a concurrent update.
    """
    attempts = max_attempts or settings.OPTIMISTIC_RETRY_ATTEMPTS

    for attempt in range(1, attempts + 1):
        entity = await load()
        if entity is None:
            if not_found is not None:
                raise not_found()
            return None, False

        if not mutate(entity):
            return entity, False

        try:
            await db.commit()
            return entity, True
        except StaleDataError:
            await db.rollback()
            logger.warning(
                f"Version conflict on {resource_type} {resource_id} "
                f"(attempt {attempt}/{attempts}), re-reading",
                extra={"resource_type": resource_type, "resource_id": resource_id, "attempt": attempt},
            )

    raise ConflictError(resource_type, resource_id, attempts)
