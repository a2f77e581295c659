"""
RouteEntry SQLAlchemy model.
"""
from datetime import datetime

from sqlalchemy import JSON, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from floodroute.database.connection import Base


class RouteEntry(Base):
    """Computed route keyed by its quantized start and end."""

    __tablename__ = "routes"

    route_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    start_lat: Mapped[float] = mapped_column(Float)
    start_lon: Mapped[float] = mapped_column(Float)
    end_lat: Mapped[float] = mapped_column(Float)
    end_lon: Mapped[float] = mapped_column(Float)
    polyline: Mapped[list] = mapped_column(JSON, nullable=False)
    distance_m: Mapped[float] = mapped_column(Float)
    duration_s: Mapped[float] = mapped_column(Float)
    size_bytes: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column(index=True)

    __table_args__ = (
        Index("idx_routes_start", "start_lat", "start_lon"),
        Index("idx_routes_end", "end_lat", "end_lon"),
    )

    def __repr__(self) -> str:
        return f"<RouteEntry(key='{self.route_key}', distance={self.distance_m})>"
