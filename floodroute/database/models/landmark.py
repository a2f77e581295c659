"""
LandmarkEntry SQLAlchemy model.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from floodroute.database.connection import Base


class LandmarkEntry(Base):
    """
    Named place. The primary key is derived from (name, latitude, longitude)
    so writing the same place again replaces its payload.
    """

    __tablename__ = "landmarks"

    key: Mapped[str] = mapped_column(String(400), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    display_name: Mapped[str] = mapped_column(String(500), default="")
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    type: Mapped[str] = mapped_column(String(100), default="unknown")
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    size_bytes: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column()

    __table_args__ = (
        Index("idx_landmarks_lat_lon", "latitude", "longitude"),
    )

    def __repr__(self) -> str:
        return f"<LandmarkEntry(name='{self.name}', lat={self.latitude}, lon={self.longitude})>"
