from floodroute.providers.osrm.engine import OSRMRoutingEngine

__all__ = ["OSRMRoutingEngine"]
