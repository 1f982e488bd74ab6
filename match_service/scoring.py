"""
Multi-criteria scoring of a provider against a service request.

Six independent scorers each map (request, candidate, context) to [0, 100];
the aggregator combines them with a fixed, validated weight set.
"""

import math
from dataclasses import asdict, dataclass, field, fields
from typing import Callable, Dict, Mapping, Tuple

from .availability import is_available_on
from .errors import ConfigurationError
from .geo import haversine_distance
from .schemas import Coordinate, MatchCandidate, MatchRequest, ScoreBreakdown

CRITERIA = ("distance", "availability", "rating", "experience", "price", "response_rate")

WEIGHT_TOLERANCE = 0.01
MIN_SCORE_THRESHOLD = 40.0


@dataclass(frozen=True)
class Weights:
    distance: float = 0.30
    availability: float = 0.25
    rating: float = 0.20
    experience: float = 0.10
    price: float = 0.10
    response_rate: float = 0.05

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or math.isnan(value) or value < 0:
                raise ConfigurationError(f"Weight for {f.name!r} must be a non-negative number, got {value!r}")
        total = sum(getattr(self, c) for c in CRITERIA)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(f"Matching weights must sum to 1.00 (currently {total:.2f})")

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> "Weights":
        unknown = set(values) - set(CRITERIA)
        if unknown:
            raise ConfigurationError(f"Unknown matching criteria: {', '.join(sorted(unknown))}")
        return cls(**dict(values))

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ScoringConfig:
    default_service_radius_km: float = 20.0
    min_rating: float = 3.0
    # (completed bookings, score) points of a piecewise-linear ramp; flat after the last point
    experience_breakpoints: Tuple[Tuple[int, float], ...] = ((0, 30.0), (5, 50.0), (20, 70.0), (50, 85.0), (100, 100.0))
    # (max relative difference between hourly rate and budget, score)
    price_bands: Tuple[Tuple[float, float], ...] = ((0.10, 100.0), (0.20, 85.0), (0.30, 70.0), (0.50, 50.0))
    price_floor: float = 30.0
    neutral_availability: float = 50.0
    neutral_rating: float = 50.0
    neutral_price: float = 70.0
    neutral_response_rate: float = 70.0

    def __post_init__(self):
        if self.default_service_radius_km <= 0:
            raise ConfigurationError("default_service_radius_km must be positive")
        if not 0 <= self.min_rating <= 5:
            raise ConfigurationError("min_rating must be within 0..5")

        points = self.experience_breakpoints
        if not points or points[0][0] != 0:
            raise ConfigurationError("experience_breakpoints must start at 0 completed bookings")
        for (c1, s1), (c2, s2) in zip(points, points[1:]):
            if c2 <= c1 or s2 < s1:
                raise ConfigurationError("experience_breakpoints must be increasing in bookings and non-decreasing in score")

        bands = self.price_bands
        for (t1, s1), (t2, s2) in zip(bands, bands[1:]):
            if t2 <= t1 or s2 > s1:
                raise ConfigurationError("price_bands must be increasing in tolerance and non-increasing in score")

        scores = [s for _, s in points] + [s for _, s in bands] + [
            self.price_floor,
            self.neutral_availability,
            self.neutral_rating,
            self.neutral_price,
            self.neutral_response_rate,
        ]
        if any(not 0 <= s <= 100 for s in scores):
            raise ConfigurationError("every configured score must lie within 0..100")


DEFAULT_SCORING_CONFIG = ScoringConfig()


@dataclass(frozen=True)
class ScoringContext:
    anchor: Coordinate | None = None
    location: Coordinate | None = None
    distance_km: float | None = None
    config: ScoringConfig = field(default=DEFAULT_SCORING_CONFIG)

    @classmethod
    def between(cls, anchor: Coordinate | None, location: Coordinate | None, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> "ScoringContext":
        distance = None
        if anchor is not None and location is not None:
            distance = haversine_distance(anchor, location)
        return cls(anchor=anchor, location=location, distance_km=distance, config=config)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def service_radius(candidate: MatchCandidate, config: ScoringConfig) -> float:
    radius = candidate.service_radius_km
    if radius is None:
        return config.default_service_radius_km
    if radius <= 0:
        raise ConfigurationError(f"Provider {candidate.id} has a non-positive service radius ({radius})")
    return radius


def score_distance(request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> float:
    radius = service_radius(candidate, ctx.config)
    # unknown distance is never rewarded
    if ctx.distance_km is None:
        return 0.0
    if ctx.distance_km > radius:
        return 0.0
    return round(clamp(100 - (ctx.distance_km / radius) * 100), 2)


def score_availability(request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> float:
    if request.preferred_date is None:
        return ctx.config.neutral_availability

    dates = [request.preferred_date, *request.alternative_dates]
    available = sum(1 for d in dates if is_available_on(candidate.availabilities, d))
    return round(clamp(available / len(dates) * 100), 2)


def score_rating(request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> float:
    rating = candidate.average_rating or 0.0
    if rating == 0:
        return ctx.config.neutral_rating
    if rating < ctx.config.min_rating:
        return 0.0
    return round(clamp(rating / 5 * 100), 2)


def score_experience(request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> float:
    points = ctx.config.experience_breakpoints
    count = max(0, candidate.completed_bookings)

    if count >= points[-1][0]:
        return round(clamp(points[-1][1]), 2)

    for (c1, s1), (c2, s2) in zip(points, points[1:]):
        if c1 <= count <= c2:
            return round(clamp(s1 + (count - c1) / (c2 - c1) * (s2 - s1)), 2)
    return round(clamp(points[0][1]), 2)


def score_price(request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> float:
    budget = request.budget
    rate = candidate.hourly_rate
    if not budget or not rate:
        return ctx.config.neutral_price

    diff = abs(rate - budget) / budget
    for tolerance, score in ctx.config.price_bands:
        if diff <= tolerance:
            return score
    return ctx.config.price_floor


def score_response_rate(request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> float:
    if candidate.response_rate is None:
        return ctx.config.neutral_response_rate
    return round(clamp(candidate.response_rate), 2)


Scorer = Callable[[MatchRequest, MatchCandidate, ScoringContext], float]

SCORERS: Dict[str, Scorer] = {
    "distance": score_distance,
    "availability": score_availability,
    "rating": score_rating,
    "experience": score_experience,
    "price": score_price,
    "response_rate": score_response_rate,
}


def is_admitted(total: float, threshold: float = MIN_SCORE_THRESHOLD) -> bool:
    return total >= threshold


class ScoreAggregator:
    def __init__(self, weights: Weights | None = None, config: ScoringConfig | None = None):
        self.weights = weights or Weights()
        self.config = config or DEFAULT_SCORING_CONFIG

    def context(self, anchor: Coordinate | None, location: Coordinate | None) -> ScoringContext:
        return ScoringContext.between(anchor, location, self.config)

    def score(self, request: MatchRequest, candidate: MatchCandidate, ctx: ScoringContext) -> ScoreBreakdown:
        subscores = {name: clamp(SCORERS[name](request, candidate, ctx)) for name in CRITERIA}
        total = sum(subscores[name] * getattr(self.weights, name) for name in CRITERIA)
        return ScoreBreakdown(**subscores, total=round(clamp(total), 2))
