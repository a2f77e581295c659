"""
Raster sampling and nearest-neighbour queries over environmental data.
"""
from floodroute.spatial.data_source import (
    DataSource,
    RasterGrid,
    RealDataSource,
    ReferenceData,
    SyntheticDataSource,
    create_data_source,
)
from floodroute.spatial.index import SpatialIndex

__all__ = [
    "DataSource",
    "RasterGrid",
    "RealDataSource",
    "ReferenceData",
    "SyntheticDataSource",
    "SpatialIndex",
    "create_data_source",
]
