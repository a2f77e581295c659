"""
Base repository with common operations for string-keyed tables.
"""
from datetime import datetime
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from floodroute.database.connection import Base

ModelType = TypeVar("ModelType", bound=Base)


class KeyedRepository(Generic[ModelType]):
    """Common operations for cache tables keyed by a single string column."""

    def __init__(self, session: AsyncSession, model: Type[ModelType], key_column: str):
        """
        Initialize repository with session and model class.

        Args:
            session: SQLAlchemy async session
            model: SQLAlchemy model class
            key_column: Name of the primary key column
        """
        self.session = session
        self.model = model
        self.key = getattr(model, key_column)

    async def get_by_key(self, key: str) -> Optional[ModelType]:
        result = await self.session.execute(
            select(self.model).where(self.key == key)
        )
        return result.scalar_one_or_none()

    async def upsert(self, instance: ModelType) -> ModelType:
        """
        Create or replace a row with the same primary key.

        Returns:
            The persistent instance
        """
        merged = await self.session.merge(instance)
        await self.session.flush()
        return merged

    async def delete_created_before(self, cutoff: datetime) -> int:
        """
        Delete rows created before a cutoff.

        Returns:
            Number of deleted rows
        """
        result = await self.session.execute(
            delete(self.model).where(self.model.created_at < cutoff)
        )
        return result.rowcount

    async def delete_all(self) -> int:
        result = await self.session.execute(delete(self.model))
        return result.rowcount

    async def count(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(self.model)
        )
        return result.scalar() or 0

    async def total_size(self) -> int:
        """Sum of the stored size_bytes column."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(self.model.size_bytes), 0))
        )
        return int(result.scalar() or 0)

    async def stats(self) -> dict[str, Any]:
        return {
            "count": await self.count(),
            "approx_size_bytes": await self.total_size(),
        }
