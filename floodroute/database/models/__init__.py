"""
SQLAlchemy models for the cache tables and spatial datasets.
"""
from floodroute.database.models.tile import TileEntry
from floodroute.database.models.landmark import LandmarkEntry
from floodroute.database.models.route import RouteEntry
from floodroute.database.models.search import SearchEntry
from floodroute.database.models.spatial import SpatialRoad, SpatialHazardPoint

__all__ = [
    "TileEntry",
    "LandmarkEntry",
    "RouteEntry",
    "SearchEntry",
    "SpatialRoad",
    "SpatialHazardPoint",
]
