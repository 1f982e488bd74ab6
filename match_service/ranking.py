import math
from typing import Callable, Iterable, List, Sequence, TypeVar

from .schemas import (
    MatchFilters,
    MatchingStatistics,
    MatchResult,
    RequestMatchResult,
    ScoreDistribution,
    SortKey,
)

AVAILABLE_NOW_MIN_SCORE = 80.0

T = TypeVar("T")

Predicate = Callable[[MatchResult], bool]


def _distance_key(distance_km: float | None) -> float:
    # unknown distance sorts after every known one
    return distance_km if distance_km is not None else math.inf


def build_predicates(filters: MatchFilters) -> List[Predicate]:
    preds: List[Predicate] = []

    if filters.min_rating is not None:
        preds.append(lambda r: (r.candidate.average_rating or 0) >= filters.min_rating)

    if filters.max_hourly_rate is not None:
        preds.append(
            lambda r: r.candidate.hourly_rate is not None and r.candidate.hourly_rate <= filters.max_hourly_rate
        )

    if filters.max_distance_km is not None:
        preds.append(lambda r: r.distance_km is not None and r.distance_km <= filters.max_distance_km)

    if filters.min_experience is not None:
        preds.append(lambda r: r.candidate.completed_bookings >= filters.min_experience)

    if filters.min_score is not None:
        preds.append(lambda r: r.score >= filters.min_score)

    if filters.available_now:
        preds.append(lambda r: r.breakdown.availability >= AVAILABLE_NOW_MIN_SCORE)

    return preds


def apply_filters(results: Iterable[MatchResult], filters: MatchFilters | None) -> List[MatchResult]:
    if filters is None:
        return list(results)
    preds = build_predicates(filters)
    return [r for r in results if all(p(r) for p in preds)]


def sort_results(results: Iterable[MatchResult]) -> List[MatchResult]:
    return sorted(
        results,
        key=lambda r: (-r.score, _distance_key(r.distance_km), r.candidate.id),
    )


def sort_request_results(results: Iterable[RequestMatchResult], sort_by: SortKey = "score") -> List[RequestMatchResult]:
    def by_score(r: RequestMatchResult):
        return (-r.score, _distance_key(r.distance_km), r.request.id)

    if sort_by == "distance":
        key = lambda r: (_distance_key(r.distance_km), -r.score, r.request.id)
    elif sort_by == "budget":
        # highest budget first; requests without a budget last
        key = lambda r: (-(r.request.budget if r.request.budget is not None else -math.inf), -r.score, r.request.id)
    elif sort_by == "recency":
        key = lambda r: (-r.request.created_at.timestamp(), -r.score, r.request.id)
    else:
        key = by_score

    return sorted(results, key=key)


def paginate(items: Sequence[T], page: int, limit: int) -> List[T]:
    start = (max(1, page) - 1) * limit
    return list(items[start:start + limit])


def dedupe(results: Iterable[T], key: Callable[[T], str]) -> List[T]:
    seen = set()
    unique = []
    for r in results:
        k = key(r)
        if k in seen:
            continue
        seen.add(k)
        unique.append(r)
    return unique


def bucket_of(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "average"
    return "poor"


def compute_statistics(request_id: str, scores: Sequence[float]) -> MatchingStatistics:
    if not scores:
        return MatchingStatistics(request_id=request_id)

    distribution = ScoreDistribution()
    for s in scores:
        bucket = bucket_of(s)
        setattr(distribution, bucket, getattr(distribution, bucket) + 1)

    return MatchingStatistics(
        request_id=request_id,
        total_candidates=len(scores),
        average_score=round(sum(scores) / len(scores), 2),
        min_score=min(scores),
        max_score=max(scores),
        score_distribution=distribution,
    )
