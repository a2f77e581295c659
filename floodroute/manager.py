"""
Service wiring.

Builds the cache store, spatial index, predictor and collaborators from
settings and exposes them to the HTTP routers and the CLI through a global
manager instance.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from floodroute.cache.store import BoundedCacheStore
from floodroute.config.settings import FloodRouteSettings, get_settings
from floodroute.database.connection import create_engine_for
from floodroute.providers.base import HazardPredictor, PlaceSearchProvider, RoutingEngine, TileSource
from floodroute.providers.osm import NominatimSearchProvider, OSMTileSource
from floodroute.providers.osrm import OSRMRoutingEngine
from floodroute.providers.predictor import RuleBasedHazardPredictor
from floodroute.providers.predictor.weather import weather_condition_from_code
from floodroute.services import PlaceSearchService, RiskEngine, RouteOrchestrator, TileFetcher
from floodroute.spatial import DataSource, SpatialIndex, create_data_source
from floodroute.utils.clock import Clock

logger = logging.getLogger(__name__)


class FloodRouteManager:
    """
    Owns every long-lived component.

    Collaborators default to the OSM/OSRM/Nominatim adapters and the
    rule-based predictor; tests pass doubles instead.
    """

    def __init__(
        self,
        settings: Optional[FloodRouteSettings] = None,
        engine: Optional[AsyncEngine] = None,
        data_source: Optional[DataSource] = None,
        predictor: Optional[HazardPredictor] = None,
        routing_engine: Optional[RoutingEngine] = None,
        tile_source: Optional[TileSource] = None,
        search_provider: Optional[PlaceSearchProvider] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.engine = engine or create_engine_for(s.database_url, echo=s.database_echo)
        self.store = BoundedCacheStore(self.engine, s, clock=clock)
        self.spatial_index = SpatialIndex(
            self.engine,
            data_source or create_data_source(s),
            sample_cache_size=s.raster_sample_cache_size,
        )
        condition = s.weather_condition if s.weather_code is None else weather_condition_from_code(s.weather_code)
        self.predictor = predictor or RuleBasedHazardPredictor(condition, s.rainfall_mm)
        self.risk_engine = RiskEngine(self.spatial_index, self.predictor, s, clock=clock)
        if s.rain_multiplier is not None:
            self.risk_engine.set_rain_multiplier(s.rain_multiplier)

        self.routing_engine = routing_engine or OSRMRoutingEngine(
            s.osrm_base_url,
            profile=s.osrm_profile,
            timeout=s.routing_timeout,
            user_agent=s.http_user_agent,
        )
        self.orchestrator = RouteOrchestrator(self.routing_engine, self.risk_engine, self.store)

        self.tile_fetcher = TileFetcher(
            self.store,
            tile_source or OSMTileSource(timeout=s.tile_fetch_timeout, user_agent=s.http_user_agent),
            s,
        )
        self.search_service = PlaceSearchService(
            search_provider
            or NominatimSearchProvider(
                s.nominatim_endpoint, user_agent=s.http_user_agent, timeout=s.search_timeout
            ),
            self.store,
        )
        self._initialized = False

    async def initialize(self) -> None:
        """Create tables and prune expired cache entries (idempotent)."""
        if self._initialized:
            return
        await self.store.initialize()
        self._initialized = True
        logger.info("✅ FloodRoute services ready")

    async def close(self) -> None:
        await self.tile_fetcher.close()
        await self.routing_engine.close()
        self.spatial_index.close()
        await self.store.close()
        self._initialized = False
        logger.info("FloodRoute services closed")

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "cache": await self.store.stats(),
            "risk_cache": self.risk_engine.cache_stats(),
            "spatial": self.spatial_index.stats(),
            "tile_fetch_failures": self.tile_fetcher.failures,
        }


# Global manager instance
_global_manager: Optional[FloodRouteManager] = None


def get_manager() -> FloodRouteManager:
    """
    Get the global manager instance.

    Returns:
        Global FloodRouteManager instance
    """
    global _global_manager
    if _global_manager is None:
        _global_manager = FloodRouteManager()
    return _global_manager


def set_manager(manager: Optional[FloodRouteManager]) -> None:
    """Replace the global manager (useful for testing)."""
    global _global_manager
    _global_manager = manager


def reset_manager() -> None:
    """Reset the global manager (useful for testing)."""
    set_manager(None)
