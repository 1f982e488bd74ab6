"""Matching engine for the handyman marketplace: ranks providers against service requests."""

from .errors import ConfigurationError, GeocodingFailed, MatchingError, ProviderTimeout
from .scoring import ScoreAggregator, ScoringConfig, Weights
from .services import MatchingService

__all__ = [
    "ConfigurationError",
    "GeocodingFailed",
    "MatchingError",
    "MatchingService",
    "ProviderTimeout",
    "ScoreAggregator",
    "ScoringConfig",
    "Weights",
]
