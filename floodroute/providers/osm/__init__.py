from floodroute.providers.osm.nominatim import NominatimSearchProvider
from floodroute.providers.osm.tiles import OSMTileSource

__all__ = ["NominatimSearchProvider", "OSMTileSource"]
