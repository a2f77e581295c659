"""
Route repository for database operations.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floodroute.database.models.route import RouteEntry
from floodroute.database.repositories.base import KeyedRepository


class RouteRepository(KeyedRepository[RouteEntry]):
    """Repository for computed routes."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, RouteEntry, "route_key")

    async def find_near(
        self,
        start_lat: float,
        start_lon: float,
        end_lat: float,
        end_lon: float,
        tolerance_degrees: float,
        created_after: datetime,
    ) -> Optional[RouteEntry]:
        """
        Most recent route whose start and end both lie inside a box of
        +/- tolerance_degrees around the requested endpoints.
        """
        t = tolerance_degrees
        result = await self.session.execute(
            select(RouteEntry)
            .where(
                RouteEntry.start_lat.between(start_lat - t, start_lat + t),
                RouteEntry.start_lon.between(start_lon - t, start_lon + t),
                RouteEntry.end_lat.between(end_lat - t, end_lat + t),
                RouteEntry.end_lon.between(end_lon - t, end_lon + t),
                RouteEntry.created_at > created_after,
            )
            .order_by(RouteEntry.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
