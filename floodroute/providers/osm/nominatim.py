"""
Place search through OpenStreetMap Nominatim (geopy client).
"""

import asyncio
import logging
import time
from typing import List, Optional
from urllib.parse import urlparse

from geopy.exc import GeocoderServiceError, GeocoderTimedOut
from geopy.geocoders import Nominatim

from floodroute.errors import NetworkUnavailable, RequestTimeout
from floodroute.providers.base import PlaceSearchProvider
from floodroute.providers.models import Coordinate, Landmark

logger = logging.getLogger(__name__)

VIEWBOX_HALF_WIDTH_DEGREES = 0.5


class NominatimSearchProvider(PlaceSearchProvider):
    """
    Free-text search biased towards a viewbox around the caller.

    Requests are spaced by ``query_delay`` seconds as the Nominatim usage
    policy asks.
    """

    def __init__(
        self,
        endpoint: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "floodroute/0.1",
        timeout: float = 10.0,
        query_delay: float = 1.0,
    ):
        parsed = urlparse(endpoint)
        self.geolocator = Nominatim(
            user_agent=user_agent,
            domain=parsed.netloc or parsed.path,
            scheme=parsed.scheme or "https",
            timeout=timeout,
        )
        self._last_request_time: float = 0.0
        self._query_delay = query_delay
        self._request_lock = asyncio.Lock()

    async def _wait_before_request(self) -> None:
        async with self._request_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._query_delay:
                await asyncio.sleep(self._query_delay - elapsed)
            self._last_request_time = time.monotonic()

    async def search(
        self, query: str, near: Optional[Coordinate] = None, limit: int = 10
    ) -> List[Landmark]:
        kwargs = {"exactly_one": False, "limit": limit, "addressdetails": True}
        if near is not None:
            d = VIEWBOX_HALF_WIDTH_DEGREES
            kwargs["viewbox"] = [
                (near.latitude - d, near.longitude - d),
                (near.latitude + d, near.longitude + d),
            ]
            kwargs["bounded"] = False

        await self._wait_before_request()
        try:
            locations = await asyncio.to_thread(self.geolocator.geocode, query, **kwargs)
        except GeocoderTimedOut as e:
            raise RequestTimeout(f"Nominatim timed out for '{query}': {e}") from e
        except GeocoderServiceError as e:
            raise NetworkUnavailable(f"Nominatim unavailable for '{query}': {e}") from e

        results = [self._to_landmark(location) for location in locations or []]
        logger.debug(f"🔍 Nominatim returned {len(results)} results for '{query}'")
        return results

    @staticmethod
    def _to_landmark(location) -> Landmark:
        raw = location.raw or {}
        display_name = raw.get("display_name") or location.address or ""
        name = raw.get("name") or display_name.split(",")[0].strip() or "Unknown"
        return Landmark(
            name=name,
            display_name=display_name,
            coordinate=Coordinate(latitude=location.latitude, longitude=location.longitude),
            type=raw.get("type") or raw.get("class") or "unknown",
            data={k: raw[k] for k in ("osm_id", "osm_type", "class", "address") if k in raw} or None,
        )
