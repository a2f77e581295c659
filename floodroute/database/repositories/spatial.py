"""
Spatial dataset repository for database operations.
"""
from typing import Iterable, List, Type, Union

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from floodroute.database.models.spatial import SpatialHazardPoint, SpatialRoad

SpatialModel = Union[SpatialRoad, SpatialHazardPoint]


class SpatialRepository:
    """
    Repository for point datasets (roads, hazard points).

    Both tables share one schema, so the model class is a constructor argument.
    """

    def __init__(self, session: AsyncSession, model: Type[SpatialModel]):
        self.session = session
        self.model = model

    async def bulk_upsert(self, rows: Iterable[SpatialModel]) -> int:
        """
        Insert or replace rows by id.

        Returns:
            Number of rows written
        """
        count = 0
        for row in rows:
            await self.session.merge(row)
            count += 1
        await self.session.flush()
        return count

    async def candidates_in_box(
        self, lat: float, lon: float, radius_degrees: float, limit: int = 50
    ) -> List[SpatialModel]:
        """
        Rows inside a +/- radius_degrees box, closest (in degree space) first.
        """
        m = self.model
        planar = (m.latitude - lat) * (m.latitude - lat) + (m.longitude - lon) * (
            m.longitude - lon
        )
        result = await self.session.execute(
            select(m)
            .where(
                m.latitude.between(lat - radius_degrees, lat + radius_degrees),
                m.longitude.between(lon - radius_degrees, lon + radius_degrees),
            )
            .order_by(planar)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(self.model)
        )
        return result.scalar() or 0

    async def delete_all(self) -> int:
        result = await self.session.execute(delete(self.model))
        return result.rowcount
