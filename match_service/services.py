import asyncio
import logging
from datetime import datetime
from typing import List, Sequence

from .availability import AvailabilityOracle, is_available, is_available_on
from .errors import ConfigurationError
from .geocoding import Geocoder
from .notifications import MatchNotifier
from .ranking import apply_filters, compute_statistics, dedupe, paginate, sort_request_results, sort_results
from .repository import CandidatePool, QuoteLedger, RequestPool
from .schemas import (
    Coordinate,
    DeliveryResult,
    FailureReason,
    MatchCandidate,
    MatchFilters,
    MatchingStatistics,
    MatchRequest,
    MatchResult,
    MatchResultSet,
    PaginationOptions,
    RequestMatchResult,
)
from .scoring import MIN_SCORE_THRESHOLD, ScoreAggregator, ScoringConfig, Weights, is_admitted, service_radius

logger = logging.getLogger(__name__)

DEFAULT_COARSE_RADIUS_KM = 50.0
DEFAULT_MAX_CONCURRENCY = 16
# how many ranked providers the statistics and replacement searches look at
WIDE_LIMIT = 100


class MatchingService:
    """
    Ranks providers for a service request (and open requests for a provider).

    Scoring is read-only over the request/provider projections; candidates are
    scored concurrently, bounded by `max_concurrency`, and the ranked output is
    deterministic for identical inputs and cache state.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        candidate_pool: CandidatePool,
        request_pool: RequestPool | None = None,
        quote_ledger: QuoteLedger | None = None,
        availability_oracle: AvailabilityOracle | None = None,
        notifier: MatchNotifier | None = None,
        weights: Weights | None = None,
        config: ScoringConfig | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        coarse_radius_km: float = DEFAULT_COARSE_RADIUS_KM,
        min_score_threshold: float = MIN_SCORE_THRESHOLD,
    ):
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        if coarse_radius_km <= 0:
            raise ConfigurationError("coarse_radius_km must be positive")

        self.geocoder = geocoder
        self.candidate_pool = candidate_pool
        self.request_pool = request_pool
        self.quote_ledger = quote_ledger
        self.availability_oracle = availability_oracle
        self.notifier = notifier
        self.aggregator = ScoreAggregator(weights, config)
        self.max_concurrency = max_concurrency
        self.coarse_radius_km = coarse_radius_km
        self.min_score_threshold = min_score_threshold

    @property
    def weights(self) -> Weights:
        return self.aggregator.weights

    async def _resolve(self, address: str, known: Coordinate | None) -> Coordinate | None:
        if known is not None:
            return known
        return await self.geocoder.geocode(address)

    # ---- request -> providers ----

    async def _score_candidate(self, request: MatchRequest, candidate: MatchCandidate, anchor: Coordinate, sem: asyncio.Semaphore) -> MatchResult | None:
        async with sem:
            try:
                location = await self._resolve(candidate.address, candidate.coordinates)
                if location is None:
                    logger.warning(
                        "provider %s skipped for request %s: address %r could not be geocoded",
                        candidate.id, request.id, candidate.address,
                    )
                    return None

                ctx = self.aggregator.context(anchor, location)
                breakdown = self.aggregator.score(request, candidate, ctx)
            except Exception:
                logger.exception("scoring failed for provider %s on request %s", candidate.id, request.id)
                return None

        logger.debug(
            "request %s provider %s scored %.2f (%s)",
            request.id, candidate.id, breakdown.total, breakdown.subscores(),
        )
        return MatchResult(
            candidate=candidate,
            breakdown=breakdown,
            score=breakdown.total,
            distance_km=ctx.distance_km,
        )

    async def _score_candidates(self, request: MatchRequest, candidates: Sequence[MatchCandidate], anchor: Coordinate) -> List[MatchResult]:
        sem = asyncio.Semaphore(self.max_concurrency)
        unique = dedupe(candidates, key=lambda c: c.id)
        scored = await asyncio.gather(*[self._score_candidate(request, c, anchor, sem) for c in unique])
        return [r for r in scored if r is not None]

    async def _scored_pool(self, request: MatchRequest, filters: MatchFilters | None):
        """Returns (failure reason, scored results, pool size)."""
        anchor = await self._resolve(request.address, request.coordinates)
        if anchor is None:
            logger.error(
                "GeocodingFailed: request %s address %r could not be resolved; returning no matches",
                request.id, request.address,
            )
            return FailureReason.GEOCODING_FAILED, [], 0

        candidates = await self.candidate_pool.find_eligible_candidates(
            request.category_id, anchor, self.coarse_radius_km, filters
        )
        if not candidates:
            logger.info("no eligible providers for request %s in category %s", request.id, request.category_id)
            return None, [], 0

        scored = await self._score_candidates(request, candidates, anchor)
        return None, scored, len(candidates)

    async def find_matches_for_request(
        self,
        request: MatchRequest,
        limit: int = 10,
        filters: MatchFilters | None = None,
        min_score_threshold: float | None = None,
    ) -> MatchResultSet:
        threshold = self.min_score_threshold if min_score_threshold is None else min_score_threshold

        reason, scored, pool_size = await self._scored_pool(request, filters)
        if reason is not None or not scored:
            return MatchResultSet(reason=reason)

        admitted = [r for r in scored if is_admitted(r.score, threshold)]
        ranked = sort_results(apply_filters(admitted, filters))
        results = ranked[:max(0, limit)]

        logger.info(
            "matching completed for request %s: %d candidates, %d scored, %d admitted, %d returned",
            request.id, pool_size, len(scored), len(ranked), len(results),
        )
        return MatchResultSet(results=results, total=len(ranked))

    async def get_matching_statistics(self, request: MatchRequest) -> MatchingStatistics:
        _, scored, _ = await self._scored_pool(request, None)
        ranked = sort_results(scored)[:WIDE_LIMIT]
        return compute_statistics(request.id, [r.score for r in ranked])

    async def find_replacement_candidates(
        self,
        request: MatchRequest,
        scheduled_at: datetime,
        exclude_candidate_id: str | None = None,
        limit: int = 20,
    ) -> MatchResultSet:
        matches = await self.find_matches_for_request(request, limit=WIDE_LIMIT)
        if matches.reason is not None:
            return matches

        replacements = []
        for m in matches.results:
            if exclude_candidate_id is not None and m.candidate.id == exclude_candidate_id:
                continue
            if self.availability_oracle is not None:
                available = await is_available(self.availability_oracle, m.candidate.id, scheduled_at)
            else:
                available = is_available_on(m.candidate.availabilities, scheduled_at)
            if available:
                replacements.append(m)

        logger.info(
            "replacement search for request %s at %s: %d of %d matches available",
            request.id, scheduled_at.isoformat(), len(replacements), len(matches.results),
        )
        return MatchResultSet(results=replacements[:limit], total=len(replacements))

    async def notify_matches(self, request: MatchRequest, limit: int = 10, filters: MatchFilters | None = None) -> List[DeliveryResult]:
        if self.notifier is None:
            raise ConfigurationError("no notifier configured")

        matches = await self.find_matches_for_request(request, limit=limit, filters=filters)
        if not matches.results:
            return []
        return await self.notifier.notify(request, matches.results)

    # ---- provider -> requests ----

    async def _score_request(self, request: MatchRequest, candidate: MatchCandidate, anchor: Coordinate, sem: asyncio.Semaphore) -> RequestMatchResult | None:
        async with sem:
            try:
                location = await self._resolve(request.address, request.coordinates)
                if location is None:
                    logger.warning(
                        "request %s skipped for provider %s: address %r could not be geocoded",
                        request.id, candidate.id, request.address,
                    )
                    return None

                ctx = self.aggregator.context(location, anchor)
                breakdown = self.aggregator.score(request, candidate, ctx)
            except Exception:
                logger.exception("scoring failed for request %s on provider %s", request.id, candidate.id)
                return None

        return RequestMatchResult(
            request=request,
            breakdown=breakdown,
            score=breakdown.total,
            distance_km=ctx.distance_km,
        )

    async def find_matches_for_candidate(self, candidate: MatchCandidate, pagination: PaginationOptions | None = None) -> MatchResultSet:
        if self.request_pool is None:
            raise ConfigurationError("no request pool configured")

        pagination = pagination or PaginationOptions()
        threshold = self.min_score_threshold if pagination.min_score_threshold is None else pagination.min_score_threshold

        anchor = await self._resolve(candidate.address, candidate.coordinates)
        if anchor is None:
            logger.error(
                "GeocodingFailed: provider %s address %r could not be resolved; returning no requests",
                candidate.id, candidate.address,
            )
            return MatchResultSet(reason=FailureReason.GEOCODING_FAILED)

        if pagination.max_distance_km is not None:
            radius = pagination.max_distance_km
        else:
            radius = service_radius(candidate, self.aggregator.config)
        requests = await self.request_pool.find_open_requests(candidate.category_ids, anchor, radius)
        if not requests:
            return MatchResultSet()

        quoted = set()
        if self.quote_ledger is not None:
            quoted = await self.quote_ledger.quoted_request_ids(candidate.id)
        fresh = [r for r in dedupe(requests, key=lambda r: r.id) if r.id not in quoted]

        sem = asyncio.Semaphore(self.max_concurrency)
        scored = await asyncio.gather(*[self._score_request(r, candidate, anchor, sem) for r in fresh])

        kept = [
            r for r in scored
            if r is not None
            and is_admitted(r.score, threshold)
            and (pagination.max_distance_km is None or (r.distance_km is not None and r.distance_km <= pagination.max_distance_km))
        ]
        ranked = sort_request_results(kept, pagination.sort_by)
        page = paginate(ranked, pagination.page, pagination.limit)

        logger.info(
            "request discovery for provider %s: %d open, %d already quoted, %d admitted, page %d returned %d",
            candidate.id, len(requests), len(requests) - len(fresh), len(ranked), pagination.page, len(page),
        )
        return MatchResultSet(results=page, total=len(ranked))
