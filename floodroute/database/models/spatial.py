"""
Spatial dataset SQLAlchemy models (roads and hazard points).
"""
from sqlalchemy import JSON, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from floodroute.database.connection import Base


class SpatialRoad(Base):
    """Road vertex used for distance-to-road features."""

    __tablename__ = "spatial_roads"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    properties: Mapped[dict] = mapped_column(JSON, default=dict)

    __table_args__ = (
        Index("idx_roads_lat_lon", "latitude", "longitude"),
    )


class SpatialHazardPoint(Base):
    """Recorded landslide or hazard event."""

    __tablename__ = "spatial_hazard_points"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    properties: Mapped[dict] = mapped_column(JSON, default=dict)

    __table_args__ = (
        Index("idx_hazard_points_lat_lon", "latitude", "longitude"),
    )
