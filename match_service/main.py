import logging

import httpx
from fastapi import FastAPI

from . import config
from .availability import SqlAvailabilityOracle
from .cache import MemoryCacheStore, RedisCacheStore, TTLCache
from .db import get_engine, get_session
from .geocoding import Geocoder, build_provider
from .logging_config import configure_logging
from .notifications import EventMatchNotifier
from .rabbitmq import RabbitPublisher
from .repository import SqlCandidatePool, SqlQuoteLedger, SqlRequestPool
from .routes import router
from .services import MatchingService

logger = logging.getLogger(__name__)

app = FastAPI(title="Match Service")
app.include_router(router)

publisher = RabbitPublisher(config.RABBIT_URL)

_resources = {}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "match-service",
        "events_enabled": publisher.enabled,
        "geocoding_provider": config.GEOCODING_PROVIDER,
        "ready": getattr(app.state, "matching_service", None) is not None,
    }


@app.on_event("startup")
async def startup():
    configure_logging(config.LOG_LEVEL)

    http_client = httpx.AsyncClient(timeout=config.GEOCODING_TIMEOUT)
    _resources["http_client"] = http_client

    if config.REDIS_URL:
        store = RedisCacheStore.from_url(config.REDIS_URL)
    else:
        logger.warning("REDIS_URL not set; geocode cache is process-local")
        store = MemoryCacheStore()
    _resources["cache_store"] = store

    provider = build_provider(
        config.GEOCODING_PROVIDER,
        http_client,
        api_key=config.GOOGLE_MAPS_API_KEY,
        user_agent=config.GEOCODING_USER_AGENT,
        max_per_second=config.GEOCODING_MAX_PER_SECOND,
    )
    geocoder = Geocoder(provider, TTLCache(store, config.GEOCODE_CACHE_TTL_SECONDS), timeout=config.GEOCODING_TIMEOUT)

    if not config.DATABASE_URL:
        logger.warning("MATCH_DATABASE_URL not set; matching endpoints disabled")
        return

    engine = get_engine(config.DATABASE_URL)
    _resources["engine"] = engine
    sessions = get_session(engine)

    # never crash the service if RabbitMQ is temporarily unavailable
    try:
        await publisher.connect()
    except Exception as e:
        logger.warning("RabbitMQ connect failed at startup; continuing without match events: %s", e)

    app.state.matching_service = MatchingService(
        geocoder,
        SqlCandidatePool(sessions),
        request_pool=SqlRequestPool(sessions),
        quote_ledger=SqlQuoteLedger(sessions),
        availability_oracle=SqlAvailabilityOracle(sessions),
        notifier=EventMatchNotifier(publisher),
        weights=config.load_weights(),
        max_concurrency=config.MAX_CONCURRENCY,
        coarse_radius_km=config.COARSE_RADIUS_KM,
        min_score_threshold=config.MIN_SCORE_THRESHOLD,
    )
    logger.info("match-service ready (weights %s)", app.state.matching_service.weights.as_dict())


@app.on_event("shutdown")
async def shutdown():
    app.state.matching_service = None
    try:
        await publisher.close()
    except Exception as e:
        logger.warning("RabbitMQ close failed: %s", e)

    http_client = _resources.pop("http_client", None)
    if http_client is not None:
        await http_client.aclose()

    store = _resources.pop("cache_store", None)
    if store is not None:
        await store.close()

    engine = _resources.pop("engine", None)
    if engine is not None:
        await engine.dispose()
