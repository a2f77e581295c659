"""
SearchEntry SQLAlchemy model.
"""
from datetime import datetime

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from floodroute.database.connection import Base


class SearchEntry(Base):
    """Ordered search results keyed by the normalized query."""

    __tablename__ = "search_cache"

    query: Mapped[str] = mapped_column(String(500), primary_key=True)
    results: Mapped[list] = mapped_column(JSON, nullable=False)
    size_bytes: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column(index=True)

    def __repr__(self) -> str:
        return f"<SearchEntry(query='{self.query[:50]}', results={len(self.results)})>"
