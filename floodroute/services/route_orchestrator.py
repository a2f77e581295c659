"""
Risk-aware route computation.

Routes come from the routing engine and are annotated with an average flood
risk sampled along the polyline. Successful routes are written through to the
route cache; when the engine is unreachable a cached route between nearby
endpoints is returned instead, flagged as offline.
"""

import logging
from typing import List, Optional, Sequence

from floodroute.cache.store import BoundedCacheStore
from floodroute.errors import FloodRouteError, InvalidFeatureVector, NetworkUnavailable
from floodroute.providers.base import RoutingEngine
from floodroute.providers.models import (
    CachedRoute,
    Coordinate,
    RouteDirection,
    RouteGeometry,
    RouteResult,
    RouteStep,
)
from floodroute.services.risk_engine import RiskEngine
from floodroute.utils.geo_utils import path_length_meters

logger = logging.getLogger(__name__)

RISK_SAMPLES_PER_ROUTE = 10

_TURN_PHRASES = {
    "left": "Turn left",
    "right": "Turn right",
    "slight left": "Turn slight left",
    "slight right": "Turn slight right",
    "sharp left": "Turn sharp left",
    "sharp right": "Turn sharp right",
    "uturn": "Make a U-turn",
}


def build_instruction(maneuver_type: str, modifier: Optional[str], street_name: str) -> str:
    """Human readable text for a routing maneuver."""
    street = f" onto {street_name}" if street_name else ""

    if maneuver_type == "depart":
        return f"Start{street}"
    if maneuver_type == "arrive":
        return "Arrive at destination"
    if maneuver_type == "turn":
        return f"{_TURN_PHRASES.get(modifier, 'Turn')}{street}"
    if maneuver_type == "merge":
        return f"Merge{street}"
    if maneuver_type == "roundabout":
        return f"Enter roundabout{street}"
    if maneuver_type == "exit roundabout":
        return f"Exit roundabout{street}"
    if maneuver_type == "fork":
        if modifier in ("left", "right"):
            return f"Keep {modifier}{street}"
        return f"At fork{street}"
    if maneuver_type == "end of road":
        if modifier in ("left", "right"):
            return f"At end of road, turn {modifier}{street}"
        return f"End of road{street}"
    if maneuver_type == "notification":
        return street_name or "Continue"
    # continue, new name and anything unknown
    return f"Continue{street}"


def directions_from_steps(steps: Sequence[RouteStep]) -> List[RouteDirection]:
    return [
        RouteDirection(
            instruction=build_instruction(s.maneuver_type, s.modifier, s.street_name),
            distance_m=s.distance_m,
            duration_s=s.duration_s,
            maneuver_type=s.maneuver_type,
            modifier=s.modifier,
            street_name=s.street_name,
            location=s.location,
        )
        for s in steps
    ]


def risk_sample_points(coordinates: Sequence[Coordinate]) -> List[Coordinate]:
    """Every ``max(1, n // 10)``-th point of a polyline."""
    stride = max(1, len(coordinates) // RISK_SAMPLES_PER_ROUTE)
    return list(coordinates[::stride])


class RouteOrchestrator:
    """
    Computes routes, ranks alternatives by risk and picks evacuation targets.

    Args:
        routing_engine: Route provider
        risk_engine: Risk scoring for polyline samples
        store: Route cache (optional; without it there is no offline fallback)
    """

    def __init__(
        self,
        routing_engine: RoutingEngine,
        risk_engine: RiskEngine,
        store: Optional[BoundedCacheStore] = None,
    ):
        self.routing_engine = routing_engine
        self.risk_engine = risk_engine
        self.store = store

    async def _sample_probability(self, sample: Coordinate) -> Optional[float]:
        try:
            risk = await self.risk_engine.risk_for(sample)
        except InvalidFeatureVector:
            raise
        except FloodRouteError as e:
            logger.warning(f"Skipping risk sample at {sample.as_tuple()}: {e}")
            return None
        return risk.flood_probability

    async def average_route_risk(self, coordinates: Sequence[Coordinate]) -> float:
        """
        Mean flood probability over the sampled polyline points.

        Samples whose prediction fails are left out of the mean; 0.0 when
        none succeed.

        Raises:
            InvalidFeatureVector: feature extraction produced unusable values
        """
        probabilities = []
        for sample in risk_sample_points(coordinates):
            probability = await self._sample_probability(sample)
            if probability is not None:
                probabilities.append(probability)
        if not probabilities:
            return 0.0
        return sum(probabilities) / len(probabilities)

    async def _to_result(
        self,
        geometry: RouteGeometry,
        consider_risk: bool = True,
        is_alternative: bool = False,
        is_offline: bool = False,
    ) -> RouteResult:
        risk = await self.average_route_risk(geometry.coordinates) if consider_risk else 0.0
        return RouteResult(
            coordinates=geometry.coordinates,
            distance_km=geometry.distance_m / 1000.0,
            duration_minutes=geometry.duration_s / 60.0,
            average_flood_risk=risk,
            directions=directions_from_steps(geometry.steps),
            is_alternative=is_alternative,
            is_offline=is_offline,
        )

    async def _write_through(self, start: Coordinate, end: Coordinate, geometry: RouteGeometry) -> None:
        if self.store is None:
            return
        await self.store.put_route(
            CachedRoute(
                start=start,
                end=end,
                polyline=geometry.coordinates,
                distance_m=geometry.distance_m,
                duration_s=geometry.duration_s,
            )
        )

    async def _offline_route(
        self, start: Coordinate, end: Coordinate, consider_risk: bool
    ) -> Optional[RouteResult]:
        if self.store is None:
            return None
        cached = await self.store.get_route(start, end)
        if cached is None:
            logger.warning("No cached route near the requested endpoints")
            return None

        logger.info(f"📦 Serving cached route ({cached.distance_m:.0f} m) while offline")
        geometry = RouteGeometry(
            coordinates=cached.polyline,
            distance_m=cached.distance_m or path_length_meters([c.as_tuple() for c in cached.polyline]),
            duration_s=cached.duration_s,
        )
        return await self._to_result(geometry, consider_risk=consider_risk, is_offline=True)

    async def find_route(
        self,
        start: Coordinate,
        end: Coordinate,
        consider_risk: bool = True,
    ) -> Optional[RouteResult]:
        """
        Route between two points, annotated with average flood risk.

        Falls back to a cached route when the routing engine is unreachable.

        Returns:
            The route, or None when neither the engine nor the cache has one
        """
        try:
            routes = await self.routing_engine.route(start, end, alternatives=False)
        except NetworkUnavailable as e:
            logger.warning(f"⚠️ Routing engine unavailable, trying route cache: {e}")
            return await self._offline_route(start, end, consider_risk)

        if not routes:
            logger.info("Routing engine found no route")
            return None

        geometry = routes[0]
        await self._write_through(start, end, geometry)
        return await self._to_result(geometry, consider_risk=consider_risk)

    async def find_alternative_routes(
        self,
        start: Coordinate,
        end: Coordinate,
        max_routes: int = 3,
    ) -> List[RouteResult]:
        """
        Up to ``max_routes`` routes sorted from safest to riskiest.

        Routes after the engine's first choice are flagged ``is_alternative``.
        When the alternatives request fails a single route is attempted.
        """
        try:
            geometries = await self.routing_engine.route(start, end, alternatives=True)
        except NetworkUnavailable as e:
            logger.warning(f"⚠️ Alternatives request failed, falling back to a single route: {e}")
            single = await self.find_route(start, end)
            return [single] if single is not None else []

        geometries = geometries[:max_routes]
        if not geometries:
            return []

        await self._write_through(start, end, geometries[0])
        results = [
            await self._to_result(g, is_alternative=i > 0)
            for i, g in enumerate(geometries)
        ]
        results.sort(key=lambda r: r.average_flood_risk)
        logger.info(
            f"Ranked {len(results)} routes by risk: "
            + ", ".join(f"{r.average_flood_risk:.2f}" for r in results)
        )
        return results

    async def find_route_to_best_destination(
        self,
        current: Coordinate,
        candidates: Sequence[Coordinate],
    ) -> Optional[RouteResult]:
        """
        Route to the candidate minimising ``distance_km * (1 + average_risk)``.

        Returns:
            The best route, or None when no candidate is reachable
        """
        best: Optional[RouteResult] = None
        for candidate in candidates:
            route = await self.find_route(current, candidate, consider_risk=True)
            if route is None:
                continue
            if best is None or route.destination_score < best.destination_score:
                best = route
        return best
