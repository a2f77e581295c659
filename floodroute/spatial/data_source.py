"""
Raster data sources for the spatial index.

Two interchangeable variants exist and a deployment uses exactly one:

- SyntheticDataSource derives deterministic terrain values from reference
  tables (elevation anchor points, wetlands, urban centres).
- RealDataSource reads per-layer GeoTIFF rasters with rasterio.
"""

import asyncio
import json
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import rasterio
from rasterio.windows import Window

from floodroute.config.settings import FloodRouteSettings
from floodroute.errors import NoDataInBounds
from floodroute.providers.models import RasterLayer
from floodroute.utils.geo_utils import (
    GeoTransform,
    calculate_distance_meters,
    geo_to_pixel,
    pixel_to_geo,
)

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_PATH = Path(__file__).parent / "reference_data.json"

# About 30 m pixels over the Philippine archipelago (116E-126E, 4N-21N)
SYNTHETIC_GEOTRANSFORM: GeoTransform = (116.0, 0.00027778, 0.0, 21.0, 0.0, -0.00027778)
SYNTHETIC_WIDTH = 36000
SYNTHETIC_HEIGHT = 61200
SYNTHETIC_NODATA = -9999.0


@dataclass(frozen=True)
class RasterGrid:
    """Georeferencing of a raster layer."""
    geotransform: GeoTransform
    width: int
    height: int
    nodata: Optional[float] = None

    def contains(self, px: int, py: int) -> bool:
        return 0 <= px < self.width and 0 <= py < self.height

    def pixel_for(self, lat: float, lon: float) -> Tuple[int, int]:
        """
        Raises:
            NoDataInBounds: the point lies outside the raster
        """
        px, py = geo_to_pixel(lat, lon, self.geotransform)
        if not self.contains(px, py):
            raise NoDataInBounds(f"({lat}, {lon}) maps to pixel ({px}, {py}) outside {self.width}x{self.height}")
        return px, py


class DataSource(ABC):
    """Provides raster layers to the spatial index."""

    name: str = "abstract"

    @abstractmethod
    def grid(self, layer: RasterLayer) -> Optional[RasterGrid]:
        """Georeferencing of a layer, or None when the layer is unavailable."""
        pass

    @abstractmethod
    async def read_pixel(self, layer: RasterLayer, px: int, py: int) -> Optional[float]:
        """
        Value of one pixel; None for nodata.

        Callers check the pixel against ``grid(layer)`` first.
        """
        pass

    def close(self) -> None:
        return None


# ----------------------------------------------------------------------
# Synthetic terrain
# ----------------------------------------------------------------------


@dataclass
class ReferenceData:
    """Reference tables driving the synthetic terrain model."""
    elevation_points: List[Tuple[float, float, float]]
    urban_centers: List[Tuple[float, float, float]]
    wetlands: List[Dict[str, float]] = field(default_factory=list)
    default_elevation: float = 50.0
    rural_population: float = 100.0
    slope_sample_degrees: float = 0.01

    @classmethod
    def from_dict(cls, data: dict) -> "ReferenceData":
        return cls(
            elevation_points=[
                (float(p["latitude"]), float(p["longitude"]), float(p["elevation"]))
                for p in data.get("elevation_points", [])
            ],
            urban_centers=[
                (float(c["latitude"]), float(c["longitude"]), float(c["population"]))
                for c in data.get("urban_centers", [])
            ],
            wetlands=[
                {
                    "min_lat": float(w["min_lat"]),
                    "max_lat": float(w["max_lat"]),
                    "min_lon": float(w["min_lon"]),
                    "max_lon": float(w["max_lon"]),
                    "extra_flow": float(w.get("extra_flow", 10000)),
                }
                for w in data.get("wetlands", [])
            ],
            default_elevation=float(data.get("default_elevation", 50.0)),
            rural_population=float(data.get("rural_population", 100.0)),
            slope_sample_degrees=float(data.get("slope_sample_degrees", 0.01)),
        )

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ReferenceData":
        """Load tables from a JSON file (the bundled Pampanga tables by default)."""
        path = Path(path) if path else DEFAULT_REFERENCE_PATH
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        logger.debug(f"Loaded reference data from {path}")
        return cls.from_dict(data)


class SyntheticDataSource(DataSource):
    """
    Deterministic terrain derived from reference tables.

    Values are computed at the centre of the requested pixel, so the same
    pixel always yields the same value.
    """

    name = "synthetic"

    def __init__(
        self,
        reference: Optional[ReferenceData] = None,
        grid: Optional[RasterGrid] = None,
    ):
        self.reference = reference or ReferenceData.load()
        self._grid = grid or RasterGrid(
            geotransform=SYNTHETIC_GEOTRANSFORM,
            width=SYNTHETIC_WIDTH,
            height=SYNTHETIC_HEIGHT,
            nodata=SYNTHETIC_NODATA,
        )

    def grid(self, layer: RasterLayer) -> Optional[RasterGrid]:
        return self._grid

    async def read_pixel(self, layer: RasterLayer, px: int, py: int) -> Optional[float]:
        lat, lon = pixel_to_geo(px, py, self._grid.geotransform)
        return self.value_at(layer, lat, lon)

    def value_at(self, layer: RasterLayer, lat: float, lon: float) -> float:
        if layer is RasterLayer.ELEVATION:
            return self.elevation(lat, lon)
        if layer is RasterLayer.SLOPE:
            return self.slope(lat, lon)
        if layer is RasterLayer.FLOW_ACCUMULATION:
            elevation = self.elevation(lat, lon)
            return self.flow_accumulation(lat, lon, elevation, self.slope(lat, lon))
        return self.population(lat, lon)

    def elevation(self, lat: float, lon: float, power: float = 2.0) -> float:
        """Inverse-distance-weighted elevation in metres."""
        total_weight = 0.0
        weighted_sum = 0.0
        for p_lat, p_lon, p_elev in self.reference.elevation_points:
            dist = calculate_distance_meters(lat, lon, p_lat, p_lon)
            if dist < 1:
                return p_elev
            weight = 1.0 / dist ** power
            total_weight += weight
            weighted_sum += weight * p_elev

        if total_weight == 0:
            return self.reference.default_elevation
        return weighted_sum / total_weight

    def slope(self, lat: float, lon: float) -> float:
        """Slope in degrees from central differences of the elevation field."""
        step = self.reference.slope_sample_degrees
        e_north = self.elevation(lat + step, lon)
        e_south = self.elevation(lat - step, lon)
        e_east = self.elevation(lat, lon + step)
        e_west = self.elevation(lat, lon - step)

        dx = (e_east - e_west) / (2 * step * 111000)
        dy = (e_north - e_south) / (2 * step * 111000)
        return math.degrees(math.atan(math.sqrt(dx * dx + dy * dy)))

    def flow_accumulation(self, lat: float, lon: float, elevation: float, slope: float) -> float:
        """Flow accumulation grows on low, flat ground and inside wetlands."""
        base_flow = 1000.0
        elevation_factor = max(0.0, (200 - elevation) / 200) * 5000
        slope_factor = max(0.0, (10 - slope) / 10) * 3000
        flow = base_flow + elevation_factor + slope_factor

        for wetland in self.reference.wetlands:
            if (
                wetland["min_lat"] <= lat <= wetland["max_lat"]
                and wetland["min_lon"] <= lon <= wetland["max_lon"]
            ):
                return flow + wetland["extra_flow"]
        return flow

    def population(self, lat: float, lon: float) -> float:
        """Population density falling off with distance to the nearest urban centre."""
        min_dist = math.inf
        max_pop = 0.0
        for c_lat, c_lon, c_pop in self.reference.urban_centers:
            dist = calculate_distance_meters(lat, lon, c_lat, c_lon)
            if dist < min_dist:
                min_dist = dist
                max_pop = c_pop

        if min_dist < 1000:
            return max_pop
        if min_dist < 5000:
            return max_pop * (1 - (min_dist - 1000) / 4000) * 0.8
        if min_dist < 15000:
            return max_pop * 0.2 * (1 - (min_dist - 5000) / 10000)
        return self.reference.rural_population


# ----------------------------------------------------------------------
# GeoTIFF rasters
# ----------------------------------------------------------------------


class RealDataSource(DataSource):
    """
    Per-layer GeoTIFF rasters read with rasterio.

    Datasets are opened lazily and single pixels are read in a worker thread
    so the event loop never blocks on disk I/O.
    """

    name = "real"

    def __init__(self, raster_paths: Dict[Union[RasterLayer, str], Union[str, Path]]):
        self.raster_paths = {RasterLayer(k): Path(v) for k, v in raster_paths.items()}
        self._datasets: Dict[RasterLayer, "rasterio.io.DatasetReader"] = {}
        self._grids: Dict[RasterLayer, RasterGrid] = {}
        self._lock = threading.Lock()

        for layer, path in self.raster_paths.items():
            if not path.exists():
                raise FileNotFoundError(f"Raster file not found for {layer.value}: {path}")

    def _open(self, layer: RasterLayer):
        with self._lock:
            dataset = self._datasets.get(layer)
            if dataset is None:
                dataset = rasterio.open(self.raster_paths[layer])
                t = dataset.transform
                self._grids[layer] = RasterGrid(
                    geotransform=(t.c, t.a, t.b, t.f, t.d, t.e),
                    width=dataset.width,
                    height=dataset.height,
                    nodata=dataset.nodata,
                )
                self._datasets[layer] = dataset
                logger.info(
                    f"Opened {layer.value} raster {self.raster_paths[layer]} "
                    f"({dataset.width}x{dataset.height})"
                )
            return dataset

    def grid(self, layer: RasterLayer) -> Optional[RasterGrid]:
        if layer not in self.raster_paths:
            return None
        if layer not in self._grids:
            self._open(layer)
        return self._grids[layer]

    def _read(self, layer: RasterLayer, px: int, py: int) -> Optional[float]:
        dataset = self._open(layer)
        with self._lock:
            data = dataset.read(1, window=Window(px, py, 1, 1))
        value = float(data[0, 0])
        nodata = self._grids[layer].nodata
        if math.isnan(value) or (nodata is not None and value == nodata):
            return None
        return value

    async def read_pixel(self, layer: RasterLayer, px: int, py: int) -> Optional[float]:
        if layer not in self.raster_paths:
            return None
        return await asyncio.to_thread(self._read, layer, px, py)

    def close(self) -> None:
        with self._lock:
            for dataset in self._datasets.values():
                dataset.close()
            self._datasets.clear()


def create_data_source(settings: FloodRouteSettings) -> DataSource:
    """Build the data source variant selected in settings."""
    if settings.data_source == "real":
        logger.info(f"Using GeoTIFF rasters: {sorted(settings.raster_paths)}")
        return RealDataSource(settings.raster_paths)

    reference = ReferenceData.load(settings.reference_data_path)
    logger.info(
        f"Using synthetic terrain with {len(reference.elevation_points)} elevation anchors"
    )
    return SyntheticDataSource(reference=reference)
