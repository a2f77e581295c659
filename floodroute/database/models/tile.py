"""
TileEntry SQLAlchemy model.
"""
from datetime import datetime

from sqlalchemy import Index, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from floodroute.database.connection import Base


class TileEntry(Base):
    """Cached map tile blob keyed by its URL."""

    __tablename__ = "map_tiles"

    url: Mapped[str] = mapped_column(String(500), primary_key=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    zoom: Mapped[int] = mapped_column()
    x: Mapped[int] = mapped_column()
    y: Mapped[int] = mapped_column()
    size_bytes: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column(index=True)
    last_accessed: Mapped[datetime] = mapped_column(index=True)

    __table_args__ = (
        Index("idx_tiles_zxy", "zoom", "x", "y"),
    )

    def __repr__(self) -> str:
        return f"<TileEntry(z={self.zoom}, x={self.x}, y={self.y}, size={self.size_bytes})>"
