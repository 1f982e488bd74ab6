import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Protocol

import httpx
from pydantic import BaseModel, Field

from .cache import TTLCache, hash_key
from .errors import ConfigurationError, GeocodingFailed, ProviderTimeout
from .geo import haversine_distance
from .schemas import Coordinate

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NOMINATIM_URL = "https://nominatim.openstreetmap.org"

DEFAULT_TIMEOUT = 5.0

# Nominatim's usage policy allows one request per second.
NOMINATIM_MAX_PER_SECOND = 1.0
GOOGLE_MAX_PER_SECOND = 50.0


class RateLimiter:
    """Spaces outbound calls at least 1/max_per_second apart within this process."""

    def __init__(
        self,
        max_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        if max_per_second <= 0:
            raise ConfigurationError(f"max_per_second must be positive, got {max_per_second}")
        self.interval = 1.0 / max_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def wait(self) -> None:
        async with self._lock:
            now = self._clock()
            delay = self._next_slot - now
            if delay > 0:
                await self._sleep(delay)
                now = self._next_slot
            self._next_slot = now + self.interval


class GeocodeResult(BaseModel):
    coordinate: Coordinate
    formatted_address: str | None = None
    provider: str


class ReverseGeocodeResult(BaseModel):
    address: str
    components: Dict[str, str | None] = Field(default_factory=dict)
    provider: str


class GeocodingProvider(Protocol):
    name: str

    async def forward(self, address: str) -> GeocodeResult | None: ...

    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None: ...


async def _get_json(client: httpx.AsyncClient, url: str, label: str, **kwargs):
    try:
        response = await client.get(url, **kwargs)
        response.raise_for_status()
        return response.json()
    except httpx.TimeoutException:
        raise ProviderTimeout(label, client.timeout.read or DEFAULT_TIMEOUT)
    except httpx.HTTPStatusError as e:
        raise GeocodingFailed(label, f"HTTP {e.response.status_code}")
    except (httpx.HTTPError, ValueError) as e:
        raise GeocodingFailed(label, str(e) or e.__class__.__name__)


def _google_components(components: list) -> Dict[str, str | None]:
    extracted = {
        "street_number": None,
        "street": None,
        "city": None,
        "postal_code": None,
        "country": None,
    }
    wanted = {
        "street_number": "street_number",
        "route": "street",
        "locality": "city",
        "postal_code": "postal_code",
        "country": "country",
    }
    for component in components or []:
        for t in component.get("types", []):
            if t in wanted:
                extracted[wanted[t]] = component.get("long_name")
                break
    return extracted


class GoogleGeocodingProvider:
    name = "google"

    def __init__(self, api_key: str | None, client: httpx.AsyncClient, max_per_second: float = GOOGLE_MAX_PER_SECOND):
        if not api_key:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY is required for the google geocoding provider")
        self._api_key = api_key
        self._client = client
        self._limiter = RateLimiter(max_per_second)

    async def forward(self, address: str) -> GeocodeResult | None:
        await self._limiter.wait()
        data = await _get_json(
            self._client,
            GOOGLE_GEOCODE_URL,
            address,
            params={"address": address, "key": self._api_key},
        )
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK" or not data.get("results"):
            raise GeocodingFailed(address, f"google status {status}")

        first = data["results"][0]
        location = first["geometry"]["location"]
        return GeocodeResult(
            coordinate=Coordinate(latitude=location["lat"], longitude=location["lng"]),
            formatted_address=first.get("formatted_address"),
            provider=self.name,
        )

    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        label = f"{coordinate.latitude},{coordinate.longitude}"
        await self._limiter.wait()
        data = await _get_json(
            self._client,
            GOOGLE_GEOCODE_URL,
            label,
            params={"latlng": label, "key": self._api_key},
        )
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK" or not data.get("results"):
            raise GeocodingFailed(label, f"google status {status}")

        first = data["results"][0]
        return ReverseGeocodeResult(
            address=first["formatted_address"],
            components=_google_components(first.get("address_components")),
            provider=self.name,
        )


class NominatimGeocodingProvider:
    name = "openstreetmap"

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str = "ServicePlatform/1.0",
        base_url: str = NOMINATIM_URL,
        max_per_second: float = NOMINATIM_MAX_PER_SECOND,
    ):
        self._client = client
        self._headers = {"User-Agent": user_agent}
        self._base_url = base_url.rstrip("/")
        self._limiter = RateLimiter(max_per_second)

    async def forward(self, address: str) -> GeocodeResult | None:
        await self._limiter.wait()
        data = await _get_json(
            self._client,
            f"{self._base_url}/search",
            address,
            params={"q": address, "format": "json", "limit": 1},
            headers=self._headers,
        )
        if not data:
            return None

        first = data[0]
        try:
            coordinate = Coordinate(latitude=float(first["lat"]), longitude=float(first["lon"]))
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingFailed(address, f"malformed nominatim result: {e}")
        return GeocodeResult(
            coordinate=coordinate,
            formatted_address=first.get("display_name"),
            provider=self.name,
        )

    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        label = f"{coordinate.latitude},{coordinate.longitude}"
        await self._limiter.wait()
        data = await _get_json(
            self._client,
            f"{self._base_url}/reverse",
            label,
            params={"lat": coordinate.latitude, "lon": coordinate.longitude, "format": "json"},
            headers=self._headers,
        )
        if not data or "display_name" not in data:
            return None

        parts = data.get("address") or {}
        return ReverseGeocodeResult(
            address=data["display_name"],
            components={
                "street_number": parts.get("house_number"),
                "street": parts.get("road"),
                "city": parts.get("city") or parts.get("town") or parts.get("village"),
                "postal_code": parts.get("postcode"),
                "country": parts.get("country"),
            },
            provider=self.name,
        )


def build_provider(
    name: str,
    client: httpx.AsyncClient,
    api_key: str | None = None,
    user_agent: str = "ServicePlatform/1.0",
    max_per_second: float | None = None,
) -> GeocodingProvider:
    name = (name or "").strip().lower()
    if name == "google":
        return GoogleGeocodingProvider(api_key, client, max_per_second=max_per_second or GOOGLE_MAX_PER_SECOND)
    if name in ("openstreetmap", "osm", "nominatim"):
        return NominatimGeocodingProvider(
            client,
            user_agent=user_agent,
            max_per_second=max_per_second or NOMINATIM_MAX_PER_SECOND,
        )
    raise ConfigurationError(f"Unknown geocoding provider {name!r}")


class Geocoder:
    """
    Address <-> coordinate resolution through one configured provider, with a
    TTL cache in front. Lookups never raise: failures come back as None and are
    not cached, so the next call retries upstream.
    """

    def __init__(self, provider: GeocodingProvider, cache: TTLCache, timeout: float = DEFAULT_TIMEOUT):
        self.provider = provider
        self.cache = cache
        self.timeout = timeout

    @staticmethod
    def cache_key(address: str) -> str:
        return hash_key("geocode", address)

    @staticmethod
    def reverse_cache_key(coordinate: Coordinate) -> str:
        return f"reverse_geocode:{coordinate.latitude:.6f}:{coordinate.longitude:.6f}"

    async def lookup(self, address: str) -> GeocodeResult | None:
        if not address or not address.strip():
            return None

        async def load():
            result = await self._call(address, lambda: self.provider.forward(address.strip()))
            if result is None:
                return None
            logger.info("geocoded %r via %s", address, self.provider.name)
            return result.model_dump_json()

        raw = await self.cache.get_or_load(self.cache_key(address), load)
        if raw is None:
            return None
        return GeocodeResult.model_validate_json(raw)

    async def geocode(self, address: str) -> Coordinate | None:
        result = await self.lookup(address)
        return result.coordinate if result else None

    async def reverse_geocode(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        label = f"{coordinate.latitude},{coordinate.longitude}"

        async def load():
            result = await self._call(label, lambda: self.provider.reverse(coordinate))
            return result.model_dump_json() if result else None

        raw = await self.cache.get_or_load(self.reverse_cache_key(coordinate), load)
        if raw is None:
            return None
        return ReverseGeocodeResult.model_validate_json(raw)

    async def clear_cache(self, address: str) -> None:
        await self.cache.invalidate(self.cache_key(address))

    async def distance_between_addresses(self, a: str, b: str, unit: str = "km") -> float | None:
        first, second = await asyncio.gather(self.geocode(a), self.geocode(b))
        if first is None or second is None:
            return None
        return round(haversine_distance(first, second, unit), 2)

    async def _call(self, label: str, fn: Callable[[], Awaitable]):
        try:
            try:
                result = await asyncio.wait_for(fn(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ProviderTimeout(label, self.timeout)
        except GeocodingFailed as e:
            logger.warning("geocoding failed for %r via %s: %s", label, self.provider.name, e.cause)
            return None
        except Exception:
            logger.exception("unexpected geocoding error for %r via %s", label, self.provider.name)
            return None

        if result is None:
            logger.warning("geocoding returned no result for %r via %s", label, self.provider.name)
        return result
