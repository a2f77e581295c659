"""
Error taxonomy for the caching and routing subsystem.

Network failures are recovered inside the services (cache fallback, then a
reported negative outcome). ``InvalidFeatureVector`` is the one fault that is
always surfaced to the caller because it points to a data-extraction bug.
"""

from typing import Optional


class FloodRouteError(Exception):
    """Base class for all floodroute errors."""


class NetworkUnavailable(FloodRouteError):
    """A network collaborator could not be reached or answered with an error."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class RequestTimeout(NetworkUnavailable):
    """A network collaborator did not answer within its timeout."""


class TileFetchFailed(FloodRouteError):
    """A tile could not be served from the cache nor fetched from the network."""

    def __init__(self, url: str, reason: str = ""):
        super().__init__(f"Tile unavailable: {url} {reason}".strip())
        self.url = url
        self.reason = reason


class CacheUnavailable(FloodRouteError):
    """The persistent store failed; callers treat this as a cache miss."""


class NoDataInBounds(FloodRouteError):
    """A raster or index lookup fell outside the available data."""


class InvalidFeatureVector(FloodRouteError):
    """A feature vector had the wrong length or contained non-finite values."""

    def __init__(self, features, reason: str):
        super().__init__(f"Invalid feature vector {list(features)!r}: {reason}")
        self.features = list(features)
        self.reason = reason


class NoRouteFound(FloodRouteError):
    """Neither the routing engine nor the route cache produced a route."""


class NoSafePointFound(FloodRouteError):
    """No probed point around a destination was under the risk threshold."""
