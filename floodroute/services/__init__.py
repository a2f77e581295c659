"""
Services combining the cache store, spatial index and collaborators.
"""
from floodroute.services.place_search_service import PlaceSearchService
from floodroute.services.risk_engine import RiskEngine, apply_rain_multiplier
from floodroute.services.route_orchestrator import RouteOrchestrator
from floodroute.services.tile_fetcher import TileFetcher

__all__ = [
    "PlaceSearchService",
    "RiskEngine",
    "RouteOrchestrator",
    "TileFetcher",
    "apply_rain_multiplier",
]
