from datetime import date, datetime, timezone

import pytest

from match_service.models import AvailabilityRow, ProviderCategoryRow, ProviderRow, ServiceRequestRow
from match_service.repository import (
    SqlCandidatePool,
    SqlQuoteLedger,
    SqlRequestPool,
    to_match_candidate,
    to_match_request,
)
from match_service.schemas import AvailabilityRecord, MatchFilters

from .conftest import PARIS


class FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def scalars(self):
        return self

    def unique(self):
        return self

    def all(self):
        return list(self._rows)


class FakeSession:
    def __init__(self, rows):
        self.rows = rows
        self.statements = []

    async def execute(self, stmt):
        self.statements.append(stmt)
        return FakeResult(self.rows)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def session_factory(rows):
    session = FakeSession(rows)
    return (lambda: session), session


def provider_row(id="p-1", **overrides):
    data = dict(
        id=id,
        email=f"{id}@example.com",
        address="1 Rue de Rivoli, Paris",
        latitude=48.8566,
        longitude=2.3522,
        service_radius_km=15.0,
        hourly_rate=45.0,
        average_rating=4.2,
        completed_bookings=12,
        response_rate=80.0,
        is_approved=True,
        is_active=True,
        categories=[ProviderCategoryRow(provider_id=id, category_id="plumbing")],
        availabilities=[
            AvailabilityRow(provider_id=id, day_of_week=1, is_recurring=True),
            AvailabilityRow(provider_id=id, is_recurring=False, specific_date=date(2026, 3, 12)),
        ],
    )
    data.update(overrides)
    return ProviderRow(**data)


def request_row(id="r-1", **overrides):
    data = dict(
        id=id,
        category_id="plumbing",
        address="1 Rue de Rivoli, Paris",
        latitude=None,
        longitude=None,
        preferred_date=datetime(2026, 3, 11, 9, tzinfo=timezone.utc),
        alternative_dates=["2026-03-12T09:00:00+00:00", "not a date"],
        budget=60.0,
        status="open",
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return ServiceRequestRow(**data)


def test_to_match_candidate():
    cand = to_match_candidate(provider_row())
    assert cand.id == "p-1"
    assert cand.coordinates == PARIS
    assert cand.category_ids == ["plumbing"]
    assert cand.availabilities == [
        AvailabilityRecord(day_of_week=1, is_recurring=True),
        AvailabilityRecord(specific_date=date(2026, 3, 12)),
    ]


def test_to_match_candidate_without_coordinates():
    cand = to_match_candidate(provider_row(latitude=None, completed_bookings=None, categories=[], availabilities=[]))
    assert cand.coordinates is None
    assert cand.completed_bookings == 0


def test_to_match_request_parses_alternative_dates():
    req = to_match_request(request_row())
    assert req.coordinates is None
    assert req.alternative_dates == [datetime(2026, 3, 12, 9, tzinfo=timezone.utc)]
    assert req.budget == 60.0


def test_candidate_query_shape():
    stmt = SqlCandidatePool(None).build_query("plumbing", PARIS, 50, MatchFilters(min_rating=4, max_hourly_rate=80))
    sql = str(stmt)
    assert "JOIN provider_categories" in sql
    assert "providers.latitude IS NULL" in sql
    assert "providers.average_rating >=" in sql
    assert "providers.hourly_rate <=" in sql
    assert "ORDER BY providers.id" in sql


@pytest.mark.asyncio
async def test_candidate_pool_skips_invalid_rows():
    factory, session = session_factory([provider_row("p-1"), provider_row("p-2", average_rating=7.5)])
    out = await SqlCandidatePool(factory).find_eligible_candidates("plumbing", PARIS, 50)
    assert [c.id for c in out] == ["p-1"]
    assert len(session.statements) == 1


@pytest.mark.asyncio
async def test_request_pool_maps_rows():
    factory, _ = session_factory([request_row("r-1"), request_row("r-2")])
    out = await SqlRequestPool(factory).find_open_requests(["plumbing"], PARIS, 20)
    assert [r.id for r in out] == ["r-1", "r-2"]


@pytest.mark.asyncio
async def test_request_pool_without_categories_skips_query():
    factory, session = session_factory([request_row()])
    assert await SqlRequestPool(factory).find_open_requests([], PARIS, 20) == []
    assert session.statements == []


def test_request_query_filters_open_statuses():
    sql = str(SqlRequestPool(None).build_query(["plumbing"], PARIS, 20))
    assert "service_requests.status IN" in sql
    assert "ORDER BY service_requests.created_at DESC" in sql


@pytest.mark.asyncio
async def test_quote_ledger_returns_ids_as_strings():
    factory, _ = session_factory(["r-1", "r-2"])
    assert await SqlQuoteLedger(factory).quoted_request_ids("p-1") == {"r-1", "r-2"}
