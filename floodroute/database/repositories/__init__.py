"""
Repositories wrapping SQL access for each table.
"""
from floodroute.database.repositories.base import KeyedRepository
from floodroute.database.repositories.tile import TileRepository
from floodroute.database.repositories.landmark import LandmarkRepository
from floodroute.database.repositories.route import RouteRepository
from floodroute.database.repositories.search import SearchRepository
from floodroute.database.repositories.spatial import SpatialRepository

__all__ = [
    "KeyedRepository",
    "TileRepository",
    "LandmarkRepository",
    "RouteRepository",
    "SearchRepository",
    "SpatialRepository",
]
