"""
Pytest configuration and shared fixtures.

Provides temporary SQLite databases, a controllable clock and in-memory
doubles for the spatial index and hazard predictor.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

import pytest

# Add the project root to Python path
import sys
from pathlib import Path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from floodroute.cache.store import BoundedCacheStore
from floodroute.config.settings import FloodRouteSettings, reset_settings
from floodroute.database.connection import create_engine_for
from floodroute.manager import reset_manager
from floodroute.providers.base import HazardPredictor
from floodroute.providers.models import (
    Coordinate,
    HazardPrediction,
    Landmark,
    NearestResult,
    RasterLayer,
    SpatialDataset,
)


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 7, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubSpatialIndex:
    """
    Spatial index double.

    Raster values come from per-layer functions of the coordinate; nearest
    lookups return None (no road, no hazard point) unless distances are set.
    """

    def __init__(
        self,
        layers: Optional[Dict[RasterLayer, Callable[[Coordinate], Optional[float]]]] = None,
        distances: Optional[Dict[SpatialDataset, float]] = None,
    ):
        self.layers = layers or {}
        self.distances = distances or {}
        self.sample_calls = 0

    async def sample(self, coordinate: Coordinate, layer: RasterLayer) -> Optional[float]:
        self.sample_calls += 1
        func = self.layers.get(RasterLayer(layer))
        return func(coordinate) if func else None

    async def nearest(self, coordinate: Coordinate, dataset: SpatialDataset, search_radius_degrees=None):
        from floodroute.providers.models import SpatialEntry

        distance = self.distances.get(SpatialDataset(dataset))
        if distance is None:
            return None
        return NearestResult(
            entry=SpatialEntry(id="stub", coordinate=coordinate),
            distance_m=distance,
        )


class ElevationPredictor(HazardPredictor):
    """Predictor whose probability is a function of the elevation feature."""

    def __init__(self, probability_for: Callable[[float], float], magnitude: float = 0.5):
        self.probability_for = probability_for
        self.magnitude = magnitude
        self.calls: List[List[float]] = []

    async def predict(self, features: Sequence[float]) -> HazardPrediction:
        self.calls.append(list(features))
        return HazardPrediction(probability=self.probability_for(features[0]), magnitude=self.magnitude)


@pytest.fixture(autouse=True)
def reset_globals():
    """Isolate tests from the global settings and manager singletons."""
    reset_settings()
    reset_manager()
    yield
    reset_settings()
    reset_manager()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite file."""
    return FloodRouteSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}",
        tile_precache_delay=0.0,
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine_for(settings.database_url)
    yield engine
    await engine.dispose()


@pytest.fixture
async def store(engine, settings, clock):
    store = BoundedCacheStore(engine, settings, clock=clock)
    await store.initialize()
    return store


@pytest.fixture
def sample_coordinates():
    """Points around Metro Manila and Pampanga."""
    return {
        "manila": Coordinate(latitude=14.5995, longitude=120.9842),
        "quezon_city": Coordinate(latitude=14.6760, longitude=121.0437),
        "san_fernando": Coordinate(latitude=15.0286, longitude=120.6898),
        "candaba": Coordinate(latitude=15.0931, longitude=120.8283),
    }


@pytest.fixture
def sample_landmarks():
    return [
        Landmark(
            name="Rizal Park",
            display_name="Rizal Park, Ermita, Manila",
            coordinate=Coordinate(latitude=14.5831, longitude=120.9794),
            type="park",
        ),
        Landmark(
            name="Manila City Hall",
            display_name="Manila City Hall, Padre Burgos Avenue, Manila",
            coordinate=Coordinate(latitude=14.5896, longitude=120.9813),
            type="townhall",
        ),
        Landmark(
            name="Quezon Memorial Circle",
            display_name="Quezon Memorial Circle, Quezon City",
            coordinate=Coordinate(latitude=14.6514, longitude=121.0493),
            type="park",
        ),
    ]


def distance_surface(center: Coordinate) -> Callable[[Coordinate], float]:
    """Elevation layer equal to the distance in metres from a centre point."""
    return lambda c: center.distance_to(c)
