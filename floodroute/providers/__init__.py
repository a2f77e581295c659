"""
External collaborators: tile server, routing engine, place search and the
hazard predictor, plus the unified models they exchange.
"""
from floodroute.providers.base import (
    HazardPredictor,
    PlaceSearchProvider,
    RoutingEngine,
    TileSource,
)

__all__ = [
    "HazardPredictor",
    "PlaceSearchProvider",
    "RoutingEngine",
    "TileSource",
]
