"""
Landmark repository for database operations.
"""
from typing import List

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from floodroute.database.models.landmark import LandmarkEntry
from floodroute.database.repositories.base import KeyedRepository


class LandmarkRepository(KeyedRepository[LandmarkEntry]):
    """Repository for named places."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, LandmarkEntry, "key")

    async def in_box(
        self, min_lat: float, min_lon: float, max_lat: float, max_lon: float
    ) -> List[LandmarkEntry]:
        """Landmarks inside a latitude/longitude box."""
        result = await self.session.execute(
            select(LandmarkEntry).where(
                LandmarkEntry.latitude.between(min_lat, max_lat),
                LandmarkEntry.longitude.between(min_lon, max_lon),
            )
        )
        return list(result.scalars().all())

    async def search_text(self, text: str, limit: int = 20) -> List[LandmarkEntry]:
        """Case-insensitive substring match on name or display name."""
        pattern = f"%{text}%"
        result = await self.session.execute(
            select(LandmarkEntry)
            .where(
                or_(
                    LandmarkEntry.name.ilike(pattern),
                    LandmarkEntry.display_name.ilike(pattern),
                )
            )
            .order_by(LandmarkEntry.name)
            .limit(limit)
        )
        return list(result.scalars().all())
