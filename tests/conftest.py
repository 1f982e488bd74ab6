"""
Pytest fixtures and in-memory stand-ins for the engine's collaborators.
"""

import asyncio
import math
from datetime import datetime, timezone

import pytest

from match_service.availability import day_of_week
from match_service.cache import MemoryCacheStore, TTLCache
from match_service.geocoding import GeocodeResult, Geocoder, ReverseGeocodeResult
from match_service.schemas import AvailabilityRecord, Coordinate, MatchCandidate, MatchRequest

PARIS = Coordinate(latitude=48.8566, longitude=2.3522)
KM_PER_DEGREE = 6371.0 * math.pi / 180

# a Wednesday
PREFERRED = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)


def north_of(origin: Coordinate, km: float) -> Coordinate:
    return Coordinate(latitude=origin.latitude + km / KM_PER_DEGREE, longitude=origin.longitude)


def make_request(**overrides) -> MatchRequest:
    data = {
        "id": "req-1",
        "category_id": "plumbing",
        "address": "1 Rue de Rivoli, Paris",
        "coordinates": PARIS,
        "preferred_date": PREFERRED,
        "budget": 50.0,
        "created_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return MatchRequest(**data)


def make_candidate(id: str = "p-1", km: float = 5.0, **overrides) -> MatchCandidate:
    data = {
        "id": id,
        "address": f"{id} street",
        "coordinates": north_of(PARIS, km),
        "service_radius_km": 20.0,
        "hourly_rate": 50.0,
        "average_rating": 4.5,
        "completed_bookings": 20,
        "response_rate": 90.0,
        "availabilities": [AvailabilityRecord(is_recurring=True, day_of_week=day_of_week(PREFERRED))],
        "category_ids": ["plumbing"],
    }
    data.update(overrides)
    return MatchCandidate(**data)


class FakeProvider:
    """Geocoding provider answering from a dict and counting upstream calls."""

    name = "fake"

    def __init__(self, known=None, delay: float = 0.0, fail: bool = False):
        self.known = dict(known or {})
        self.delay = delay
        self.fail = fail
        self.forward_calls = []
        self.reverse_calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def forward(self, address):
        self.forward_calls.append(address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if self.fail:
            raise RuntimeError("upstream exploded")
        coord = self.known.get(address.strip().lower())
        if coord is None:
            return None
        return GeocodeResult(coordinate=coord, formatted_address=address, provider=self.name)

    async def reverse(self, coordinate):
        self.reverse_calls.append(coordinate)
        if self.delay:
            await asyncio.sleep(self.delay)
        for address, coord in self.known.items():
            if coord == coordinate:
                return ReverseGeocodeResult(address=address, provider=self.name)
        return None


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeCandidatePool:
    def __init__(self, candidates=()):
        self.candidates = list(candidates)
        self.calls = []

    async def find_eligible_candidates(self, category_id, anchor, max_radius_km, filters=None):
        self.calls.append((category_id, anchor, max_radius_km))
        return [c for c in self.candidates if category_id in c.category_ids]


class FakeRequestPool:
    def __init__(self, requests=()):
        self.requests = list(requests)
        self.calls = []

    async def find_open_requests(self, category_ids, anchor, radius_km):
        self.calls.append((list(category_ids), anchor, radius_km))
        wanted = set(category_ids)
        return [r for r in self.requests if r.category_id in wanted]


class FakeQuoteLedger:
    def __init__(self, quoted=None):
        self.quoted = quoted or {}

    async def quoted_request_ids(self, candidate_id):
        return set(self.quoted.get(candidate_id, ()))


class FakeOracle:
    def __init__(self, records=None):
        self.records = records or {}

    async def find_availability(self, candidate_id, on):
        return list(self.records.get(candidate_id, ()))


class FakePublisher:
    def __init__(self, enabled: bool = True, fail_for=()):
        self.enabled = enabled
        self.fail_for = set(fail_for)
        self.published = []

    async def publish(self, routing_key, message_body):
        if any(f'"provider_id":"{pid}"' in message_body for pid in self.fail_for):
            return False
        self.published.append((routing_key, message_body))
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider(
        {
            "1 rue de rivoli, paris": PARIS,
            "1 rue x, paris": Coordinate(latitude=48.86, longitude=2.35),
        }
    )


@pytest.fixture
def geocoder(provider, clock):
    return Geocoder(provider, TTLCache(MemoryCacheStore(clock=clock), ttl_seconds=24 * 60 * 60), timeout=1.0)
