"""
Place search with offline fallbacks.

A search first asks the network provider. Results are cached under the
normalized query and also stored as landmarks. When the provider fails, the
search cache is tried, then a substring search over stored landmarks.
"""

import logging
from typing import List, Optional

from floodroute.cache.store import BoundedCacheStore
from floodroute.errors import NetworkUnavailable
from floodroute.providers.base import PlaceSearchProvider
from floodroute.providers.models import Coordinate, Landmark, SearchOutcome

logger = logging.getLogger(__name__)


class PlaceSearchService:
    """Free-text place search over the network, the search cache and landmarks."""

    def __init__(self, provider: PlaceSearchProvider, store: BoundedCacheStore):
        self.provider = provider
        self.store = store

    async def search(self, query: str, near: Optional[Coordinate] = None) -> SearchOutcome:
        query = query.strip()
        if not query:
            return SearchOutcome(query=query, results=[], source="network")

        try:
            results = await self.provider.search(query, near=near)
        except NetworkUnavailable as e:
            logger.warning(f"⚠️ Search provider unavailable for '{query}': {e}")
            return await self._offline_search(query)

        await self.store.put_search_results(query, results)
        await self.store.put_landmarks(results)
        return SearchOutcome(query=query, results=results, source="network")

    async def _offline_search(self, query: str) -> SearchOutcome:
        cached = await self.store.get_search_results(query)
        if cached is not None:
            logger.info(f"📦 {len(cached)} cached results for '{query}'")
            return SearchOutcome(query=query, results=cached, is_offline=True, source="search_cache")

        landmarks = await self.store.search_landmarks(query)
        logger.info(f"📦 {len(landmarks)} landmarks matching '{query}'")
        return SearchOutcome(query=query, results=landmarks, is_offline=True, source="landmarks")

    async def landmarks_near(self, center: Coordinate, radius_km: float = 5.0) -> List[Landmark]:
        return await self.store.landmarks_near(center, radius_km)
