"""
Base interfaces for the external collaborators of the routing subsystem.

Each collaborator (tile server, routing engine, hazard model, place search)
is reached only through one of these contracts, so services can be tested
with in-memory doubles and deployments can swap implementations.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .models import Coordinate, HazardPrediction, Landmark, RouteGeometry


class TileSource(ABC):
    """Fetches raster map tiles by URL."""

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """
        Download a tile.

        Raises:
            RequestTimeout: the server did not answer in time
            NetworkUnavailable: transport failure
            TileFetchFailed: the server answered without a tile
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class RoutingEngine(ABC):
    """Computes drivable routes between two coordinates."""

    @abstractmethod
    async def route(
        self,
        start: Coordinate,
        end: Coordinate,
        alternatives: bool = False,
    ) -> List[RouteGeometry]:
        """
        Compute a route and optionally its alternatives.

        Returns:
            Routes in the engine's preference order; empty when no route exists

        Raises:
            RequestTimeout, NetworkUnavailable
        """
        pass

    async def close(self) -> None:
        return None


class HazardPredictor(ABC):
    """Opaque model turning a feature vector into a flood prediction."""

    feature_count: int = 6

    @abstractmethod
    async def predict(self, features: Sequence[float]) -> HazardPrediction:
        """
        Predict flood probability and magnitude.

        Args:
            features: [elevation, slope, flow_accumulation, distance_to_road,
                       population, distance_to_landslide]
        """
        pass


class PlaceSearchProvider(ABC):
    """Free-text place search."""

    @abstractmethod
    async def search(
        self, query: str, near: Optional[Coordinate] = None, limit: int = 10
    ) -> List[Landmark]:
        """
        Search places matching a text query, biased towards ``near``.

        Raises:
            RequestTimeout, NetworkUnavailable
        """
        pass
