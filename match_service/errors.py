class MatchingError(Exception):
    pass


class GeocodingFailed(MatchingError):
    def __init__(self, address: str, cause: str = ""):
        self.address = address
        self.cause = cause
        super().__init__(f"Geocoding failed for {address!r}: {cause}" if cause else f"Geocoding failed for {address!r}")


class ProviderTimeout(GeocodingFailed):
    def __init__(self, address: str, timeout: float):
        self.timeout = timeout
        super().__init__(address, f"provider timed out after {timeout}s")


class ConfigurationError(MatchingError, ValueError):
    pass
