from datetime import datetime, timezone

import pytest

from match_service.ranking import (
    apply_filters,
    bucket_of,
    compute_statistics,
    dedupe,
    paginate,
    sort_request_results,
    sort_results,
)
from match_service.schemas import MatchFilters, MatchResult, RequestMatchResult, ScoreBreakdown

from .conftest import make_candidate, make_request


def breakdown(total, availability=100.0):
    return ScoreBreakdown(
        distance=50, availability=availability, rating=80, experience=50, price=70, response_rate=70, total=total
    )


def result(id, score, distance=5.0, availability=100.0, **candidate):
    return MatchResult(
        candidate=make_candidate(id, **candidate),
        breakdown=breakdown(score, availability),
        score=score,
        distance_km=distance,
    )


def request_result(id, score, distance=5.0, budget=None, created=1):
    req = make_request(id=id, budget=budget, created_at=datetime(2026, 3, created, tzinfo=timezone.utc))
    return RequestMatchResult(request=req, breakdown=breakdown(score), score=score, distance_km=distance)


def ids(results):
    return [r.candidate.id for r in results]


def test_sort_by_score_then_distance_then_id():
    results = [
        result("c", 70, 3.0),
        result("b", 70, 3.0),
        result("a", 70, 8.0),
        result("d", 90, 10.0),
        result("e", 70, None),
    ]
    assert ids(sort_results(results)) == ["d", "b", "c", "a", "e"]


def test_filters_min_rating_and_max_rate():
    results = [
        result("a", 80, average_rating=4.8, hourly_rate=60),
        result("b", 80, average_rating=3.5, hourly_rate=40),
        result("c", 80, average_rating=4.9, hourly_rate=None),
    ]
    filtered = apply_filters(results, MatchFilters(min_rating=4.0, max_hourly_rate=70))
    assert ids(filtered) == ["a"]


def test_filter_max_distance_rejects_unknown_distance():
    results = [result("a", 80, 4.0), result("b", 80, 12.0), result("c", 80, None)]
    assert ids(apply_filters(results, MatchFilters(max_distance_km=10))) == ["a"]


def test_filter_experience_score_and_available_now():
    results = [
        result("a", 85, completed_bookings=40),
        result("b", 85, completed_bookings=2),
        result("c", 45, completed_bookings=40),
        result("d", 85, availability=50, completed_bookings=40),
    ]
    filters = MatchFilters(min_experience=10, min_score=60, available_now=True)
    assert ids(apply_filters(results, filters)) == ["a"]


def test_no_filters_keeps_everything():
    results = [result("a", 10), result("b", 20)]
    assert apply_filters(results, None) == results
    assert apply_filters(results, MatchFilters()) == results


def test_sort_request_results_by_key():
    results = [
        request_result("r1", 60, distance=2.0, budget=100, created=1),
        request_result("r2", 80, distance=9.0, budget=None, created=3),
        request_result("r3", 70, distance=5.0, budget=300, created=2),
    ]
    by = lambda key: [r.request.id for r in sort_request_results(results, key)]
    assert by("score") == ["r2", "r3", "r1"]
    assert by("distance") == ["r1", "r3", "r2"]
    assert by("budget") == ["r3", "r1", "r2"]
    assert by("recency") == ["r2", "r3", "r1"]


def test_paginate():
    items = list(range(45))
    assert paginate(items, 1, 20) == list(range(20))
    assert paginate(items, 3, 20) == list(range(40, 45))
    assert paginate(items, 4, 20) == []


def test_dedupe_keeps_first():
    items = [("a", 1), ("b", 2), ("a", 3)]
    assert dedupe(items, key=lambda x: x[0]) == [("a", 1), ("b", 2)]


@pytest.mark.parametrize(
    "score,bucket",
    [(100, "excellent"), (80, "excellent"), (79.99, "good"), (60, "good"), (40, "average"), (39.99, "poor"), (0, "poor")],
)
def test_bucket_of(score, bucket):
    assert bucket_of(score) == bucket


def test_compute_statistics():
    stats = compute_statistics("req-1", [90, 75, 50, 20])
    assert stats.total_candidates == 4
    assert stats.average_score == 58.75
    assert stats.min_score == 20
    assert stats.max_score == 90
    assert stats.score_distribution.model_dump() == {"excellent": 1, "good": 1, "average": 1, "poor": 1}


def test_compute_statistics_empty():
    stats = compute_statistics("req-1", [])
    assert stats.total_candidates == 0
    assert stats.average_score == 0
    assert stats.min_score is None
