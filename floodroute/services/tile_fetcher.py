"""
Read-through tile access with offline fallback and area pre-caching.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple

from floodroute.cache.store import BoundedCacheStore
from floodroute.config.settings import FloodRouteSettings, get_settings
from floodroute.errors import NetworkUnavailable, TileFetchFailed
from floodroute.providers.base import TileSource
from floodroute.providers.models import Coordinate
from floodroute.utils.geo_utils import tiles_for_area

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class TileFetcher:
    """
    Serves map tiles from the cache, downloading and storing misses.

    Network failures are reported as a missing tile (None) and counted,
    never raised to the caller.
    """

    def __init__(
        self,
        store: BoundedCacheStore,
        tile_source: TileSource,
        settings: Optional[FloodRouteSettings] = None,
    ):
        self.store = store
        self.tile_source = tile_source
        self.settings = settings or get_settings()
        self.failures = 0

    def tile_url(self, zoom: int, x: int, y: int) -> str:
        return self.settings.tile_url_template.format(z=zoom, x=x, y=y)

    async def _get_tile_with_source(self, zoom: int, x: int, y: int) -> Tuple[Optional[bytes], str]:
        url = self.tile_url(zoom, x, y)

        cached = await self.store.get_tile(url)
        if cached is not None:
            return cached, "cache"

        try:
            data = await self.tile_source.fetch(url)
        except (NetworkUnavailable, TileFetchFailed) as e:
            self.failures += 1
            logger.warning(f"Tile {zoom}/{x}/{y} unavailable: {e}")
            return None, "failed"

        await self.store.put_tile(url, data, zoom, x, y)
        return data, "network"

    async def get_tile(self, zoom: int, x: int, y: int) -> Optional[bytes]:
        """
        Tile bytes from the cache or the network.

        Returns:
            PNG bytes, or None when the tile is not cached and cannot be fetched
        """
        data, _ = await self._get_tile_with_source(zoom, x, y)
        return data

    async def precache_area(
        self,
        center: Coordinate,
        radius_km: float,
        min_zoom: int = 12,
        max_zoom: int = 16,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, int]:
        """
        Download every tile covering a circle for a range of zoom levels.

        Tiles already cached are not downloaded again.

        Returns:
            Summary with total, cached, downloaded and failed counts
        """
        tiles = [
            (zoom, x, y)
            for zoom in range(min_zoom, max_zoom + 1)
            for x, y in tiles_for_area(center.latitude, center.longitude, radius_km, zoom)
        ]
        summary = {"total": len(tiles), "cached": 0, "downloaded": 0, "failed": 0}
        logger.info(
            f"📥 Pre-caching {len(tiles)} tiles around "
            f"({center.latitude:.4f}, {center.longitude:.4f}), zoom {min_zoom}-{max_zoom}"
        )

        for done, (zoom, x, y) in enumerate(tiles, start=1):
            _, source = await self._get_tile_with_source(zoom, x, y)
            if source == "cache":
                summary["cached"] += 1
            elif source == "network":
                summary["downloaded"] += 1
                await asyncio.sleep(self.settings.tile_precache_delay)
            else:
                summary["failed"] += 1

            if progress is not None:
                progress(done, len(tiles))

        logger.info(f"Pre-cache finished: {summary}")
        return summary

    async def close(self) -> None:
        await self.tile_source.close()
