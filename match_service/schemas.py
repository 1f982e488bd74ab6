from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class AvailabilityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    # 0 = Sunday .. 6 = Saturday
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    is_recurring: bool = False
    specific_date: date | None = None


class MatchRequest(BaseModel):
    """Read-only projection of a service request, limited to what scoring reads."""

    model_config = ConfigDict(frozen=True)

    id: str
    category_id: str
    address: str = ""
    coordinates: Coordinate | None = None
    preferred_date: datetime | None = None
    alternative_dates: List[datetime] = Field(default_factory=list)
    budget: float | None = Field(default=None, ge=0)
    estimated_duration_hours: float | None = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MatchCandidate(BaseModel):
    """Read-only projection of a provider, limited to what scoring reads."""

    model_config = ConfigDict(frozen=True)

    id: str
    address: str = ""
    coordinates: Coordinate | None = None
    service_radius_km: float | None = Field(default=None, gt=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    # 0 means "not rated yet"
    average_rating: float | None = Field(default=None, ge=0, le=5)
    completed_bookings: int = Field(default=0, ge=0)
    response_rate: float | None = Field(default=None, ge=0, le=100)
    availabilities: List[AvailabilityRecord] = Field(default_factory=list)
    category_ids: List[str] = Field(default_factory=list)
    is_approved: bool = True
    is_active: bool = True


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    distance: float = Field(ge=0, le=100)
    availability: float = Field(ge=0, le=100)
    rating: float = Field(ge=0, le=100)
    experience: float = Field(ge=0, le=100)
    price: float = Field(ge=0, le=100)
    response_rate: float = Field(ge=0, le=100)
    total: float = Field(ge=0, le=100)

    def subscores(self) -> dict:
        return self.model_dump(exclude={"total"})


class MatchResult(BaseModel):
    candidate: MatchCandidate
    breakdown: ScoreBreakdown
    score: float
    distance_km: float | None = None


class RequestMatchResult(BaseModel):
    request: MatchRequest
    breakdown: ScoreBreakdown
    score: float
    distance_km: float | None = None


class FailureReason(str, Enum):
    GEOCODING_FAILED = "geocoding_failed"


class MatchResultSet(BaseModel):
    results: List[MatchResult | RequestMatchResult] = Field(default_factory=list)
    total: int = 0
    reason: FailureReason | None = None


class MatchFilters(BaseModel):
    min_rating: float | None = Field(default=None, ge=0, le=5)
    max_hourly_rate: float | None = Field(default=None, ge=0)
    max_distance_km: float | None = Field(default=None, ge=0)
    min_experience: int | None = Field(default=None, ge=0)
    min_score: float | None = Field(default=None, ge=0, le=100)
    available_now: bool = False


SortKey = Literal["score", "distance", "budget", "recency"]


class PaginationOptions(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: SortKey = "score"
    max_distance_km: float | None = Field(default=None, ge=0)
    min_score_threshold: float | None = Field(default=None, ge=0, le=100)

    @field_validator("sort_by", mode="before")
    @classmethod
    def _legacy_sort_names(cls, v):
        # the provider app still sends "created_at" for recency
        if v == "created_at":
            return "recency"
        return v


class ScoreDistribution(BaseModel):
    excellent: int = 0
    good: int = 0
    average: int = 0
    poor: int = 0


class MatchingStatistics(BaseModel):
    request_id: str
    total_candidates: int = 0
    average_score: float = 0.0
    min_score: float | None = None
    max_score: float | None = None
    score_distribution: ScoreDistribution = Field(default_factory=ScoreDistribution)


class DeliveryResult(BaseModel):
    candidate_id: str
    delivered: bool
    error: str | None = None


# ---- HTTP payloads ----

class FindMatchesBody(BaseModel):
    request: MatchRequest
    limit: int = Field(default=10, ge=1, le=100)
    filters: MatchFilters = Field(default_factory=MatchFilters)
    min_score_threshold: float | None = Field(default=None, ge=0, le=100)


class FindRequestsBody(BaseModel):
    candidate: MatchCandidate
    pagination: PaginationOptions = Field(default_factory=PaginationOptions)
