"""
Search cache repository for database operations.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floodroute.database.models.search import SearchEntry
from floodroute.database.repositories.base import KeyedRepository


class SearchRepository(KeyedRepository[SearchEntry]):
    """Repository for cached text searches."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SearchEntry, "query")

    async def get_valid(self, query: str, created_after: datetime) -> Optional[SearchEntry]:
        result = await self.session.execute(
            select(SearchEntry).where(
                SearchEntry.query == query,
                SearchEntry.created_at > created_after,
            )
        )
        return result.scalar_one_or_none()
