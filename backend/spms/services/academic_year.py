"""
Academic year resolution.

Services never look the academic year up themselves; callers pass it in.
Entry points (Celery tasks, operator scripts, HTTP handlers) resolve it once
with resolve_academic_year() and thread the value down.
"""
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spms.core.config import settings
from spms.models.system_setting import SystemSetting

ACADEMIC_YEAR_SETTING_KEY = "academic.current_year"


def default_academic_year(today: Optional[date] = None) -> str:
    """Calendar-derived academic year, e.g. 2025 -> "2025-26" """
    year = (today or date.today()).year
    return f"{year}-{(year + 1) % 100:02d}"


async def resolve_academic_year(db: AsyncSession, today: Optional[date] = None) -> str:
    """
    Current academic year, in order of precedence:
    CURRENT_ACADEMIC_YEAR env override, the admin-configured
    ``academic.current_year`` system setting, then default_academic_year().
    """
    if settings.CURRENT_ACADEMIC_YEAR:
        return settings.CURRENT_ACADEMIC_YEAR

    setting = await db.scalar(
        select(SystemSetting).where(SystemSetting.key == ACADEMIC_YEAR_SETTING_KEY)
    )
    if setting is not None and setting.value:
        return str(setting.value)

    return default_academic_year(today)
