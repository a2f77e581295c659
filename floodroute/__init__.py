"""
floodroute - offline-capable, risk-aware geospatial caching and routing.

The package keeps map tiles, landmarks, routes and search results in a bounded
local store, samples environmental layers for hazard features, turns those
features into flood risk and ranks evacuation routes by that risk.
"""

__version__ = "0.1.0"
