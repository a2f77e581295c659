"""
Tile repository for database operations.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from floodroute.database.models.tile import TileEntry
from floodroute.database.repositories.base import KeyedRepository


class TileRepository(KeyedRepository[TileEntry]):
    """Repository for cached map tiles."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TileEntry, "url")

    async def get_valid(self, url: str, created_after: datetime) -> Optional[TileEntry]:
        """Tile by URL unless it is older than the cutoff."""
        result = await self.session.execute(
            select(TileEntry).where(
                TileEntry.url == url,
                TileEntry.created_at > created_after,
            )
        )
        return result.scalar_one_or_none()

    async def touch(self, url: str, accessed_at: datetime) -> None:
        """Refresh the last access time used for eviction."""
        await self.session.execute(
            update(TileEntry)
            .where(TileEntry.url == url)
            .values(last_accessed=accessed_at)
        )

    async def delete_least_recently_accessed(self, limit: int) -> int:
        """
        Delete the ``limit`` tiles with the oldest access time.

        Returns:
            Number of deleted tiles
        """
        oldest = (
            select(TileEntry.url)
            .order_by(TileEntry.last_accessed.asc(), TileEntry.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(
            delete(TileEntry).where(TileEntry.url.in_(oldest))
        )
        return result.rowcount
