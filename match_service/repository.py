import logging
from datetime import datetime
from typing import Iterable, List, Protocol, Set

from dateutil import parser
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .availability import to_availability_record
from .geo import bounding_box
from .models import ProviderCategoryRow, ProviderRow, QuoteRow, ServiceRequestRow
from .schemas import Coordinate, MatchCandidate, MatchFilters, MatchRequest

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("open", "quoting")


class CandidatePool(Protocol):
    async def find_eligible_candidates(
        self,
        category_id: str,
        anchor: Coordinate,
        max_radius_km: float,
        filters: MatchFilters | None = None,
    ) -> List[MatchCandidate]: ...


class RequestPool(Protocol):
    async def find_open_requests(
        self,
        category_ids: Iterable[str],
        anchor: Coordinate,
        radius_km: float,
    ) -> List[MatchRequest]: ...


class QuoteLedger(Protocol):
    async def quoted_request_ids(self, candidate_id: str) -> Set[str]: ...


def _coordinate(lat, lon) -> Coordinate | None:
    if lat is None or lon is None:
        return None
    return Coordinate(latitude=lat, longitude=lon)


def _parse_dates(raw) -> List[datetime]:
    dates = []
    for value in raw or []:
        if isinstance(value, datetime):
            dates.append(value)
            continue
        try:
            dates.append(parser.isoparse(value))
        except (TypeError, ValueError):
            logger.warning("skipping unparseable alternative date %r", value)
    return dates


def to_match_candidate(row: ProviderRow) -> MatchCandidate:
    return MatchCandidate(
        id=str(row.id),
        address=row.address or "",
        coordinates=_coordinate(row.latitude, row.longitude),
        service_radius_km=row.service_radius_km,
        hourly_rate=row.hourly_rate,
        average_rating=row.average_rating,
        completed_bookings=row.completed_bookings or 0,
        response_rate=row.response_rate,
        availabilities=[to_availability_record(a) for a in row.availabilities or []],
        category_ids=[c.category_id for c in row.categories or []],
        is_approved=bool(row.is_approved),
        is_active=bool(row.is_active),
    )


def to_match_request(row: ServiceRequestRow) -> MatchRequest:
    return MatchRequest(
        id=str(row.id),
        category_id=str(row.category_id),
        address=row.address or "",
        coordinates=_coordinate(row.latitude, row.longitude),
        preferred_date=row.preferred_date,
        alternative_dates=_parse_dates(row.alternative_dates),
        budget=row.budget,
        estimated_duration_hours=row.estimated_duration_hours,
        created_at=row.created_at,
    )


def _map_rows(rows, mapper, kind: str) -> list:
    mapped = []
    for row in rows:
        try:
            mapped.append(mapper(row))
        except ValidationError as e:
            logger.warning("skipping %s %s with invalid data: %s", kind, row.id, e)
    return mapped


class SqlCandidatePool:
    """
    Coarse pre-filter over the providers table: category, approval/active flags,
    and a bounding box around the anchor. Providers without stored coordinates
    are kept so the engine can geocode their address.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    def build_query(self, category_id: str, anchor: Coordinate, max_radius_km: float, filters: MatchFilters | None = None):
        box = bounding_box(anchor, max_radius_km)
        stmt = (
            select(ProviderRow)
            .join(ProviderCategoryRow, ProviderCategoryRow.provider_id == ProviderRow.id)
            .where(
                ProviderCategoryRow.category_id == category_id,
                ProviderRow.is_approved.is_(True),
                ProviderRow.is_active.is_(True),
                (ProviderRow.latitude.is_(None))
                | (
                    ProviderRow.latitude.between(box.min_latitude, box.max_latitude)
                    & ProviderRow.longitude.between(box.min_longitude, box.max_longitude)
                ),
            )
            .order_by(ProviderRow.id)
        )

        if filters is not None:
            if filters.min_rating is not None:
                stmt = stmt.where(ProviderRow.average_rating >= filters.min_rating)
            if filters.max_hourly_rate is not None:
                stmt = stmt.where(ProviderRow.hourly_rate <= filters.max_hourly_rate)
            if filters.min_experience is not None:
                stmt = stmt.where(ProviderRow.completed_bookings >= filters.min_experience)

        return stmt

    async def find_eligible_candidates(self, category_id: str, anchor: Coordinate, max_radius_km: float, filters: MatchFilters | None = None) -> List[MatchCandidate]:
        stmt = self.build_query(category_id, anchor, max_radius_km, filters)
        async with self._sessions() as db:
            result = await db.execute(stmt)
            rows = result.scalars().unique().all()
        return _map_rows(rows, to_match_candidate, "provider")


class SqlRequestPool:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    def build_query(self, category_ids: Iterable[str], anchor: Coordinate, radius_km: float):
        box = bounding_box(anchor, radius_km)
        return (
            select(ServiceRequestRow)
            .where(
                ServiceRequestRow.category_id.in_(list(category_ids)),
                ServiceRequestRow.status.in_(OPEN_STATUSES),
                (ServiceRequestRow.latitude.is_(None))
                | (
                    ServiceRequestRow.latitude.between(box.min_latitude, box.max_latitude)
                    & ServiceRequestRow.longitude.between(box.min_longitude, box.max_longitude)
                ),
            )
            .order_by(ServiceRequestRow.created_at.desc(), ServiceRequestRow.id)
        )

    async def find_open_requests(self, category_ids: Iterable[str], anchor: Coordinate, radius_km: float) -> List[MatchRequest]:
        category_ids = list(category_ids)
        if not category_ids:
            return []
        async with self._sessions() as db:
            result = await db.execute(self.build_query(category_ids, anchor, radius_km))
            rows = result.scalars().all()
        return _map_rows(rows, to_match_request, "service request")


class SqlQuoteLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def quoted_request_ids(self, candidate_id: str) -> Set[str]:
        stmt = select(QuoteRow.service_request_id).where(QuoteRow.provider_id == candidate_id)
        async with self._sessions() as db:
            result = await db.execute(stmt)
            return {str(x) for x in result.scalars().all()}
