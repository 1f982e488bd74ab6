import json
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Protocol, Sequence

from .schemas import DeliveryResult, MatchRequest, MatchResult

logger = logging.getLogger(__name__)

MATCHED_EVENT = "service_request.matched"


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False)


class Publisher(Protocol):
    enabled: bool

    async def publish(self, routing_key: str, message_body: str) -> bool: ...


class MatchNotifier(Protocol):
    async def notify(self, request: MatchRequest, matches: Sequence[MatchResult]) -> List[DeliveryResult]: ...


class EventMatchNotifier:
    """
    Hands each selected provider to the notification service as a domain
    event; delivery (email, push, SMS) happens downstream of the broker.
    """

    def __init__(self, publisher: Publisher):
        self.publisher = publisher

    async def notify(self, request: MatchRequest, matches: Sequence[MatchResult]) -> List[DeliveryResult]:
        if not self.publisher.enabled:
            logger.info("match events disabled; %d providers not notified for request %s", len(matches), request.id)
            return [DeliveryResult(candidate_id=m.candidate.id, delivered=False, error="events disabled") for m in matches]

        results = []
        for rank, m in enumerate(matches, start=1):
            event = build_event(
                MATCHED_EVENT,
                {
                    "service_request_id": request.id,
                    "category_id": request.category_id,
                    "provider_id": m.candidate.id,
                    "rank": rank,
                    "score": m.score,
                    "distance_km": round(m.distance_km, 2) if m.distance_km is not None else None,
                    "breakdown": m.breakdown.model_dump(),
                },
            )
            ok = await self.publisher.publish(MATCHED_EVENT, to_json(event))
            if not ok:
                logger.warning("match event not published for request %s provider %s", request.id, m.candidate.id)
            results.append(
                DeliveryResult(
                    candidate_id=m.candidate.id,
                    delivered=ok,
                    error=None if ok else "publish failed",
                )
            )
        return results
