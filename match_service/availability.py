from datetime import date, datetime
from typing import Iterable, List, Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import AvailabilityRow
from .schemas import AvailabilityRecord


def day_of_week(when: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (when.weekday() + 1) % 7


def _as_date(when: date | datetime) -> date:
    return when.date() if isinstance(when, datetime) else when


def is_available_on(records: Iterable[AvailabilityRecord], when: date | datetime) -> bool:
    day = _as_date(when)
    dow = day_of_week(day)
    for r in records:
        if r.is_recurring and r.day_of_week == dow:
            return True
        if r.specific_date is not None and r.specific_date == day:
            return True
    return False


def to_availability_record(row: AvailabilityRow) -> AvailabilityRecord:
    return AvailabilityRecord(
        day_of_week=row.day_of_week,
        is_recurring=bool(row.is_recurring),
        specific_date=row.specific_date,
    )


class AvailabilityOracle(Protocol):
    async def find_availability(self, candidate_id: str, on: date) -> List[AvailabilityRecord]: ...


async def is_available(oracle: AvailabilityOracle, candidate_id: str, when: date | datetime) -> bool:
    day = _as_date(when)
    records = await oracle.find_availability(candidate_id, day)
    return is_available_on(records, day)


class SqlAvailabilityOracle:
    """Read-only view over the availabilities table owned by the planning service."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def find_availability(self, candidate_id: str, on: date) -> List[AvailabilityRecord]:
        stmt = select(AvailabilityRow).where(
            AvailabilityRow.provider_id == candidate_id,
            or_(
                (AvailabilityRow.is_recurring.is_(True)) & (AvailabilityRow.day_of_week == day_of_week(on)),
                AvailabilityRow.specific_date == on,
            ),
        )
        async with self._sessions() as db:
            result = await db.execute(stmt)
            return [to_availability_record(row) for row in result.scalars().all()]
