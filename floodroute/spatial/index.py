"""
Raster sampling and nearest-neighbour lookups.

Raster values come from the configured DataSource and are memoised per
(layer, px, py) in a bounded LRU. Roads and hazard points live in SQL tables
and are found with a bounding-box pre-filter followed by Haversine ranking.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from floodroute.cache.lru import BoundedLRU
from floodroute.database.connection import create_session_maker, session_scope
from floodroute.database.models import SpatialHazardPoint, SpatialRoad
from floodroute.database.repositories import SpatialRepository
from floodroute.errors import CacheUnavailable, NoDataInBounds
from floodroute.providers.models import (
    Coordinate,
    NearestResult,
    RasterLayer,
    SpatialDataset,
    SpatialEntry,
)
from floodroute.spatial.data_source import DataSource

logger = logging.getLogger(__name__)

NEAREST_CANDIDATE_LIMIT = 50

_DATASET_MODELS = {
    SpatialDataset.ROADS: SpatialRoad,
    SpatialDataset.HAZARD_POINTS: SpatialHazardPoint,
}


class SpatialIndex:
    """
    Spatial queries over rasters and point datasets.

    Args:
        engine: Async engine holding the spatial tables
        data_source: Raster provider (synthetic or real)
        sample_cache_size: Capacity of the raster sample LRU
    """

    def __init__(
        self,
        engine: AsyncEngine,
        data_source: DataSource,
        sample_cache_size: int = 100_000,
    ):
        self._session_maker = create_session_maker(engine)
        self.data_source = data_source
        self.sample_cache: BoundedLRU = BoundedLRU(sample_cache_size)

    async def sample(
        self, coordinate: Coordinate, layer: Union[RasterLayer, str]
    ) -> Optional[float]:
        """
        Raster value under a coordinate.

        Returns:
            The pixel value, or None when the layer is unavailable, the
            coordinate falls outside the raster or the pixel is nodata
        """
        layer = RasterLayer(layer)
        grid = self.data_source.grid(layer)
        if grid is None:
            return None

        try:
            px, py = grid.pixel_for(coordinate.latitude, coordinate.longitude)
        except NoDataInBounds as e:
            logger.debug(f"{layer.value}: {e}")
            return None

        key = (layer.value, px, py)
        found, value = self.sample_cache.lookup(key)
        if found:
            return value

        value = await self.data_source.read_pixel(layer, px, py)
        if value is not None and grid.nodata is not None and value == grid.nodata:
            value = None
        self.sample_cache.put(key, value)
        return value

    async def nearest(
        self,
        coordinate: Coordinate,
        dataset: Union[SpatialDataset, str],
        search_radius_degrees: Optional[float] = None,
    ) -> Optional[NearestResult]:
        """
        Closest entry of a dataset by great-circle distance.

        Candidates are limited to a +/- search_radius_degrees box (dataset
        default when omitted).

        Returns:
            The nearest entry with its distance, or None when the box is empty
        """
        dataset = SpatialDataset(dataset)
        if search_radius_degrees is None:
            search_radius_degrees = dataset.default_search_radius

        try:
            async with session_scope(self._session_maker) as session:
                rows = await SpatialRepository(session, _DATASET_MODELS[dataset]).candidates_in_box(
                    coordinate.latitude,
                    coordinate.longitude,
                    search_radius_degrees,
                    limit=NEAREST_CANDIDATE_LIMIT,
                )
                entries = [self._entry_from_row(row) for row in rows]
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailable(str(e)) from e

        if not entries:
            return None

        best = min(entries, key=lambda e: coordinate.distance_to(e.coordinate))
        return NearestResult(entry=best, distance_m=coordinate.distance_to(best.coordinate))

    async def bulk_import(
        self,
        dataset: Union[SpatialDataset, str],
        records: Iterable[Union[SpatialEntry, Dict[str, Any]]],
    ) -> int:
        """
        Insert or replace dataset records.

        Records are SpatialEntry instances or dicts with ``id``, ``latitude``,
        ``longitude`` and optional ``properties``.

        Returns:
            Number of records written
        """
        dataset = SpatialDataset(dataset)
        model = _DATASET_MODELS[dataset]
        rows = [self._row_from_record(model, record) for record in records]

        try:
            async with session_scope(self._session_maker) as session:
                written = await SpatialRepository(session, model).bulk_upsert(rows)
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailable(str(e)) from e

        logger.info(f"Imported {written} {dataset.value} records")
        return written

    async def count(self, dataset: Union[SpatialDataset, str]) -> int:
        dataset = SpatialDataset(dataset)
        async with session_scope(self._session_maker) as session:
            return await SpatialRepository(session, _DATASET_MODELS[dataset]).count()

    @staticmethod
    def _entry_from_row(row) -> SpatialEntry:
        return SpatialEntry(
            id=row.id,
            coordinate=Coordinate(latitude=row.latitude, longitude=row.longitude),
            properties=row.properties or {},
        )

    @staticmethod
    def _row_from_record(model, record: Union[SpatialEntry, Dict[str, Any]]):
        if isinstance(record, SpatialEntry):
            return model(
                id=record.id,
                latitude=record.coordinate.latitude,
                longitude=record.coordinate.longitude,
                properties=record.properties,
            )
        return model(
            id=str(record["id"]),
            latitude=float(record["latitude"]),
            longitude=float(record["longitude"]),
            properties=dict(record.get("properties") or {}),
        )

    def close(self) -> None:
        self.data_source.close()

    def stats(self) -> Dict[str, Any]:
        return {
            "data_source": self.data_source.name,
            "sample_cache": self.sample_cache.snapshot(),
        }
