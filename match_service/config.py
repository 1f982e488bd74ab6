import os

from .errors import ConfigurationError
from .scoring import CRITERIA, Weights

DATABASE_URL = os.getenv("MATCH_DATABASE_URL")  # optional: no pools without it
REDIS_URL = os.getenv("REDIS_URL")  # optional: in-memory geocode cache without it
RABBIT_URL = os.getenv("RABBIT_URL")  # optional: match events disabled without it

LOG_LEVEL = os.getenv("MATCH_LOG_LEVEL") or "INFO"

GEOCODING_PROVIDER = (os.getenv("GEOCODING_PROVIDER") or "openstreetmap").strip().lower()
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
GEOCODING_USER_AGENT = os.getenv("GEOCODING_USER_AGENT") or "ServicePlatform/1.0"
GEOCODING_TIMEOUT = float(os.getenv("GEOCODING_TIMEOUT") or "5.0")
# optional: provider default (1/s for Nominatim, 50/s for Google) without it
GEOCODING_MAX_PER_SECOND = float(os.getenv("GEOCODING_MAX_PER_SECOND") or "0") or None
GEOCODE_CACHE_TTL_SECONDS = int(os.getenv("GEOCODE_CACHE_TTL_SECONDS") or str(24 * 60 * 60))

MIN_SCORE_THRESHOLD = float(os.getenv("MATCH_MIN_SCORE") or "40")
MAX_CONCURRENCY = int(os.getenv("MATCH_MAX_CONCURRENCY") or "16")
# Coarse radius handed to the candidate pool before exact distances are computed.
COARSE_RADIUS_KM = float(os.getenv("MATCH_COARSE_RADIUS_KM") or "50")

MATCH_WEIGHTS = os.getenv("MATCH_WEIGHTS")


def parse_weights(raw: str) -> Weights:
    """
    Parse "distance=0.3,availability=0.25,..." into a Weights value.
    Criteria left out keep their default weight; the result must still sum to 1.
    """
    values = {}
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        name = name.strip().lower()
        if not sep:
            raise ConfigurationError(f"Malformed weight entry {part!r}; expected name=value")
        if name not in CRITERIA:
            raise ConfigurationError(f"Unknown matching criterion {name!r}")
        try:
            values[name] = float(value)
        except ValueError:
            raise ConfigurationError(f"Weight for {name!r} is not a number: {value!r}")

    return Weights.from_mapping(values)


def load_weights() -> Weights:
    if not MATCH_WEIGHTS:
        return Weights()
    return parse_weights(MATCH_WEIGHTS)
