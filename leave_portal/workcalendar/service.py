"""Working-day calculation and holiday lookup."""

from __future__ import annotations

from datetime import date, timedelta
from typing import AbstractSet, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.constants import WEEKEND_DAYS
from leave_portal.common.exceptions import InvalidRange
from leave_portal.workcalendar.models import Holiday


def working_days(
    start: date,
    end: date,
    exclude_holidays: bool,
    holidays: Iterable[date] = (),
    *,
    weekly_offs: AbstractSet[int] = WEEKEND_DAYS,
) -> int:
    """Count days in the inclusive range [start, end] that are not weekly offs.

    When *exclude_holidays* is true, dates in *holidays* are dropped as well.
    A holiday falling on a weekend is only removed once.

    Raises:
        InvalidRange: start is after end.
    """
    if start > end:
        raise InvalidRange(start, end)

    holiday_set = frozenset(holidays) if exclude_holidays else frozenset()
    count = 0
    current = start
    while current <= end:
        if current.weekday() not in weekly_offs and current not in holiday_set:
            count += 1
        current += timedelta(days=1)
    return count


class HolidayService:
    """Reads the externally maintained holiday set."""

    @staticmethod
    async def get_holiday_dates(
        db: AsyncSession,
        from_date: date,
        to_date: date,
    ) -> set[date]:
        """Return mandatory holiday dates in the given range (optional holidays excluded)."""

        result = await db.execute(
            select(Holiday.date).where(
                Holiday.date >= from_date,
                Holiday.date <= to_date,
                Holiday.is_optional.is_(False),
            )
        )
        return {row[0] for row in result.all()}
