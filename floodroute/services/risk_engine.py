"""
Flood risk engine.

Turns a coordinate into the six-feature vector expected by the hazard
predictor, runs the prediction and keeps the result in a short-lived
in-memory cache keyed by the coordinate rounded to 3 decimals (~111 m).
Also aggregates risk along paths and searches for safe points around a
flooded destination.
"""

import asyncio
import logging
import math
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from floodroute.config.settings import FloodRouteSettings, get_settings
from floodroute.errors import CacheUnavailable, InvalidFeatureVector
from floodroute.providers.base import HazardPredictor
from floodroute.providers.models import (
    Coordinate,
    RasterLayer,
    RiskLevel,
    RiskResult,
    RiskSegment,
    RouteRiskAnalysis,
    SpatialDataset,
)
from floodroute.providers.predictor.weather import clamp_rain_multiplier
from floodroute.spatial.index import SpatialIndex
from floodroute.utils.clock import Clock, utc_now
from floodroute.utils.geo_utils import destination_point, interpolate, path_length_meters

logger = logging.getLogger(__name__)

FEATURE_NAMES = (
    "elevation",
    "slope",
    "flow_accumulation",
    "distance_to_road",
    "population",
    "distance_to_landslide",
)

# Feature fallbacks when data is missing
DEFAULT_RASTER_VALUE = 0.0
DEFAULT_ROAD_DISTANCE_M = 10_000.0
DEFAULT_HAZARD_DISTANCE_M = 100_000.0

SAFE_POINT_RADII_M = (100.0, 250.0, 500.0, 1000.0, 2000.0, 5000.0)
CACHE_PRUNE_FRACTION = 0.2

# Route analysis
ROUTE_SAMPLE_INTERVAL_M = 100.0
DEFAULT_TRAFFIC_SPEED_KMH = 40.0
MIN_SPEED_KMH = 5.0
MAX_SPEED_KMH = 100.0
MAX_FLOOD_SLOWDOWN = 0.7
MAX_RECOMMENDED_SEGMENTS = 3

RiskKey = Tuple[float, float]


def apply_rain_multiplier(base_risk: float, multiplier: float) -> float:
    """Scale a probability by a rain multiplier clamped to [1, 3]; result in [0, 1]."""
    return min(max(base_risk * clamp_rain_multiplier(multiplier), 0.0), 1.0)


async def gather_or_cancel(coroutines) -> list:
    """
    Run coroutines concurrently and return their results in order.

    When one raises, the others are cancelled and awaited before the error
    propagates.
    """
    tasks = [asyncio.create_task(c) for c in coroutines]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def validate_features(features: Sequence[float]) -> None:
    """
    Raises:
        InvalidFeatureVector: wrong length or a non-finite value
    """
    if len(features) != len(FEATURE_NAMES):
        raise InvalidFeatureVector(
            features, f"expected {len(FEATURE_NAMES)} values, got {len(features)}"
        )
    for name, value in zip(FEATURE_NAMES, features):
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidFeatureVector(features, f"{name} is not finite")


def flood_severity(probability: float) -> float:
    """Edge cost penalty for a flood probability, growing steeply from 0.6."""
    if probability < 0.1:
        return 0.0
    if probability < 0.3:
        return probability * 0.5
    if probability < 0.6:
        return probability * 2.0
    return probability ** 2 * 10.0


def edge_cost_hours(
    distance_m: float,
    probability: float,
    speed_kmh: float = DEFAULT_TRAFFIC_SPEED_KMH,
    rain_multiplier: float = 1.0,
) -> float:
    """
    Routing cost of an edge: ``(distance / speed) * (1 + severity) * rain``.

    Speed is clamped to [5, 100] km/h and the rain multiplier to [1, 3].
    """
    speed = min(max(speed_kmh, MIN_SPEED_KMH), MAX_SPEED_KMH)
    hours = distance_m / 1000.0 / speed
    return hours * (1.0 + flood_severity(probability)) * clamp_rain_multiplier(rain_multiplier)


def resample_path(
    path: Sequence[Coordinate], interval_m: float = ROUTE_SAMPLE_INTERVAL_M
) -> List[Coordinate]:
    """
    The first vertex, then ``ceil(length / interval)`` evenly spaced points
    along every segment, each segment ending on its far vertex.
    """
    if len(path) < 2:
        return list(path)

    samples = [path[0]]
    for start, end in zip(path, path[1:]):
        count = math.ceil(start.distance_to(end) / interval_m)
        for j in range(1, count + 1):
            lat, lon = interpolate(
                start.latitude, start.longitude, end.latitude, end.longitude, j / count
            )
            samples.append(Coordinate(latitude=lat, longitude=lon))
    return samples


def high_risk_segments(
    samples: Sequence[Coordinate], risks: Sequence[RiskResult]
) -> List[RiskSegment]:
    """Runs of consecutive samples at MODERATE or above, split where the band changes."""
    runs: List[Tuple[int, int, RiskLevel]] = []
    for i, risk in enumerate(risks):
        if not risk.requires_warning:
            continue
        if runs and runs[-1][1] == i - 1 and runs[-1][2] is risk.risk_level:
            runs[-1] = (runs[-1][0], i, risk.risk_level)
        else:
            runs.append((i, i, risk.risk_level))

    return [
        RiskSegment(
            start_index=first,
            end_index=last,
            risk_level=level,
            distance_m=path_length_meters([c.as_tuple() for c in samples[first:last + 1]]),
        )
        for first, last, level in runs
    ]


def estimated_travel_time_s(
    samples: Sequence[Coordinate],
    risks: Sequence[RiskResult],
    base_speed_kmh: float = DEFAULT_TRAFFIC_SPEED_KMH,
) -> float:
    """Travel time where each leg's speed drops by up to 70 % with its start risk."""
    total = 0.0
    for i in range(len(samples) - 1):
        distance = samples[i].distance_to(samples[i + 1])
        factor = min(max(1.0 - risks[i].flood_probability * MAX_FLOOD_SLOWDOWN, 0.3), 1.0)
        total += distance / 1000.0 / (base_speed_kmh * factor) * 3600.0
    return total


def is_route_recommended(
    overall_risk: float, max_risk: float, segments: Sequence[RiskSegment]
) -> bool:
    if overall_risk > 0.6 or max_risk > 0.8:
        return False
    if any(s.risk_level is RiskLevel.EXTREME for s in segments):
        return False
    return len(segments) <= MAX_RECOMMENDED_SEGMENTS


def select_safer_route(first: RouteRiskAnalysis, second: RouteRiskAnalysis) -> RouteRiskAnalysis:
    """Lower overall risk wins, then lower max risk, then the shorter path."""
    for key in ("overall_risk", "max_risk", "total_distance_m"):
        a, b = getattr(first, key), getattr(second, key)
        if not math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9):
            return first if a < b else second
    return second


def route_suggestions(analysis: RouteRiskAnalysis) -> List[str]:
    """Advice lines for a driver about to take an analysed route."""
    suggestions = []
    if not analysis.is_recommended:
        suggestions.append("This route passes through high-risk flood areas")

    if analysis.max_risk > 0.8:
        suggestions.append("Severe flood risk detected on this route")
        suggestions.append("Consider delaying travel or finding an alternative route")
    elif analysis.max_risk > 0.6:
        suggestions.append("High flood risk areas ahead")
        suggestions.append("Proceed with caution and monitor weather conditions")
    elif analysis.max_risk > 0.3:
        suggestions.append("Moderate flood risk on some segments")
        suggestions.append("Stay alert for weather updates")

    if analysis.high_risk_distance_m > 1000:
        suggestions.append(f"{analysis.high_risk_distance_m / 1000:.1f} km of high-risk segments")

    suggestions.append(f"Estimated travel time: {math.ceil(analysis.estimated_time_s / 60)} minutes")
    return suggestions


class RiskEngine:
    """
    Feature extraction, prediction and risk aggregation.

    Args:
        spatial_index: Source of raster samples and nearest-neighbour distances
        predictor: Hazard model
        settings: Cache TTL, size and batch limits
        clock: Returns the current naive UTC time; injectable for tests
    """

    def __init__(
        self,
        spatial_index: SpatialIndex,
        predictor: HazardPredictor,
        settings: Optional[FloodRouteSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.spatial_index = spatial_index
        self.predictor = predictor
        self.settings = settings or get_settings()
        self._clock = clock or utc_now
        self._cache: "OrderedDict[RiskKey, RiskResult]" = OrderedDict()
        self.rain_multiplier: Optional[float] = None

        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    async def _raster(self, coordinate: Coordinate, layer: RasterLayer) -> float:
        value = await self.spatial_index.sample(coordinate, layer)
        return DEFAULT_RASTER_VALUE if value is None else value

    async def _distance(
        self, coordinate: Coordinate, dataset: SpatialDataset, default: float
    ) -> float:
        try:
            nearest = await self.spatial_index.nearest(coordinate, dataset)
        except CacheUnavailable as e:
            logger.warning(f"Spatial lookup for {dataset.value} failed, using default: {e}")
            return default
        return default if nearest is None else nearest.distance_m

    async def features_for(self, coordinate: Coordinate) -> List[float]:
        """
        Feature vector in fixed order: elevation, slope, flow accumulation,
        distance to road, population, distance to landslide.
        """
        features = await asyncio.gather(
            self._raster(coordinate, RasterLayer.ELEVATION),
            self._raster(coordinate, RasterLayer.SLOPE),
            self._raster(coordinate, RasterLayer.FLOW_ACCUMULATION),
            self._distance(coordinate, SpatialDataset.ROADS, DEFAULT_ROAD_DISTANCE_M),
            self._raster(coordinate, RasterLayer.POPULATION),
            self._distance(coordinate, SpatialDataset.HAZARD_POINTS, DEFAULT_HAZARD_DISTANCE_M),
        )
        return [float(f) for f in features]

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(coordinate: Coordinate) -> RiskKey:
        return coordinate.rounded(3)

    def _is_fresh(self, result: RiskResult, now: datetime) -> bool:
        return now - result.computed_at < timedelta(seconds=self.settings.risk_cache_ttl)

    async def risk_for(self, coordinate: Coordinate) -> RiskResult:
        """
        Flood risk at a coordinate, served from cache when a fresh result
        exists for the same rounded location.

        Raises:
            InvalidFeatureVector: feature extraction produced unusable values
        """
        key = self.cache_key(coordinate)
        cached = self._cache.get(key)
        if cached is not None and self._is_fresh(cached, self._clock()):
            self._hits += 1
            return cached
        self._misses += 1

        features = await self.features_for(coordinate)
        validate_features(features)

        prediction = await self.predictor.predict(features)
        probability = prediction.probability
        if self.rain_multiplier is not None:
            probability = apply_rain_multiplier(probability, self.rain_multiplier)
        probability = min(max(probability, 0.0), 1.0)
        magnitude = max(prediction.magnitude, 0.0)

        result = RiskResult(
            coordinate=coordinate,
            flood_probability=probability,
            flood_magnitude=magnitude,
            risk_level=RiskLevel.from_probability(probability),
            features=features,
            computed_at=self._clock(),
        )

        self._cache[key] = result
        self._cache.move_to_end(key)
        if len(self._cache) > self.settings.risk_cache_max_entries:
            self.prune_cache()
        return result

    async def risk_for_batch(self, coordinates: Sequence[Coordinate]) -> List[RiskResult]:
        """
        Risk for many coordinates, output order matching input order.

        Chunks run one after another; within a chunk predictions run
        concurrently, so at most ``risk_batch_chunk_size`` are in flight. A
        failing prediction cancels the rest of its chunk and propagates.
        """
        chunk_size = max(1, self.settings.risk_batch_chunk_size)
        results: List[RiskResult] = []
        for i in range(0, len(coordinates), chunk_size):
            chunk = coordinates[i:i + chunk_size]
            results.extend(await gather_or_cancel(self.risk_for(c) for c in chunk))
        return results

    async def route_risk_stats(self, path: Sequence[Coordinate]) -> Dict[str, float]:
        """
        Aggregate risk over every point of a path.

        Returns:
            max, average, total, high_risk_count and high_risk_percentage
            (all zero for an empty path)
        """
        if not path:
            return {
                "max": 0.0,
                "average": 0.0,
                "total": 0.0,
                "high_risk_count": 0.0,
                "high_risk_percentage": 0.0,
            }

        risks = await self.risk_for_batch(path)
        probabilities = [r.flood_probability for r in risks]
        total = sum(probabilities)
        high_risk_count = sum(1 for r in risks if r.should_avoid)

        return {
            "max": max(probabilities),
            "average": total / len(probabilities),
            "total": total,
            "high_risk_count": float(high_risk_count),
            "high_risk_percentage": high_risk_count / len(risks) * 100.0,
        }

    async def find_safe_point(
        self,
        destination: Coordinate,
        max_risk_threshold: float = 0.3,
        max_radius_m: float = 5000.0,
        num_directions: int = 8,
    ) -> Optional[Coordinate]:
        """
        First point around a destination whose risk is under a threshold.

        Rings of increasing radius are probed in order, each at
        ``num_directions`` evenly spaced bearings starting north.

        Returns:
            The safe coordinate, or None when every probe is too risky
        """
        for radius in SAFE_POINT_RADII_M:
            if radius > max_radius_m:
                break
            for i in range(num_directions):
                bearing = 360.0 / num_directions * i
                lat, lon = destination_point(
                    destination.latitude, destination.longitude, bearing, radius
                )
                candidate = Coordinate(latitude=lat, longitude=lon)
                risk = await self.risk_for(candidate)
                if risk.flood_probability <= max_risk_threshold:
                    logger.info(
                        f"✅ Safe point {radius:.0f} m at {bearing:.0f}° from "
                        f"({destination.latitude:.5f}, {destination.longitude:.5f}), "
                        f"risk {risk.flood_probability:.2f}"
                    )
                    return candidate

        logger.warning(
            f"No safe point within {max_radius_m:.0f} m of "
            f"({destination.latitude:.5f}, {destination.longitude:.5f})"
        )
        return None

    async def analyze_route(
        self,
        path: Sequence[Coordinate],
        sample_interval_m: float = ROUTE_SAMPLE_INTERVAL_M,
    ) -> RouteRiskAnalysis:
        """
        Full risk assessment of a path resampled every ``sample_interval_m``.

        Edge costs use the current rain multiplier (1.0 when unset).

        Raises:
            ValueError: empty path
            InvalidFeatureVector: feature extraction produced unusable values
        """
        if not path:
            raise ValueError("Route path cannot be empty")

        samples = resample_path(path, sample_interval_m)
        risks = await self.risk_for_batch(samples)
        probabilities = [r.flood_probability for r in risks]
        max_risk = max(probabilities)
        average_risk = sum(probabilities) / len(probabilities)
        overall_risk = min(max_risk * 0.6 + average_risk * 0.4, 1.0)
        segments = high_risk_segments(samples, risks)

        rain = self.rain_multiplier or 1.0
        travel_cost = sum(
            edge_cost_hours(
                samples[i].distance_to(samples[i + 1]),
                risks[i].flood_probability,
                rain_multiplier=rain,
            )
            for i in range(len(samples) - 1)
        )

        analysis = RouteRiskAnalysis(
            samples=samples,
            point_risks=risks,
            overall_risk=overall_risk,
            max_risk=max_risk,
            average_risk=average_risk,
            total_distance_m=path_length_meters([c.as_tuple() for c in path]),
            estimated_time_s=estimated_travel_time_s(samples, risks),
            travel_cost_hours=travel_cost,
            is_recommended=is_route_recommended(overall_risk, max_risk, segments),
            high_risk_segments=segments,
        )
        logger.info(
            f"Analysed route of {analysis.total_distance_m:.0f} m over {len(samples)} samples: "
            f"overall {overall_risk:.2f}, {len(segments)} risky segments, "
            f"recommended={analysis.is_recommended}"
        )
        return analysis

    async def edge_cost(
        self,
        start: Coordinate,
        end: Coordinate,
        distance_m: Optional[float] = None,
        speed_kmh: float = DEFAULT_TRAFFIC_SPEED_KMH,
        rain_multiplier: Optional[float] = None,
    ) -> float:
        """
        Routing cost in hours of the edge start-end, scored by the risk at
        its midpoint.

        ``distance_m`` defaults to the great-circle length and
        ``rain_multiplier`` to the engine's current one.
        """
        if distance_m is None:
            distance_m = start.distance_to(end)
        if rain_multiplier is None:
            rain_multiplier = self.rain_multiplier or 1.0

        lat, lon = interpolate(start.latitude, start.longitude, end.latitude, end.longitude, 0.5)
        risk = await self.risk_for(Coordinate(latitude=lat, longitude=lon))
        return edge_cost_hours(distance_m, risk.flood_probability, speed_kmh, rain_multiplier)

    # ------------------------------------------------------------------
    # Rain and cache management
    # ------------------------------------------------------------------

    def set_rain_multiplier(self, multiplier: Optional[float]) -> None:
        """Apply a rain multiplier to every new prediction (None disables it)."""
        self.rain_multiplier = None if multiplier is None else clamp_rain_multiplier(multiplier)
        self.clear_cache()
        logger.info(f"Rain multiplier set to {self.rain_multiplier}")

    def prune_cache(self) -> int:
        """
        Drop expired results, then the oldest 20 % if still over capacity.

        Returns:
            Number of removed entries
        """
        now = self._clock()
        expired = [k for k, r in self._cache.items() if not self._is_fresh(r, now)]
        for key in expired:
            del self._cache[key]
        removed = len(expired)

        if len(self._cache) > self.settings.risk_cache_max_entries:
            oldest = sorted(self._cache.items(), key=lambda item: item[1].computed_at)
            drop = round(len(self._cache) * CACHE_PRUNE_FRACTION)
            for key, _ in oldest[:drop]:
                del self._cache[key]
            removed += drop

        if removed:
            logger.debug(f"Pruned {removed} risk cache entries, {len(self._cache)} left")
        return removed

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> Dict[str, int]:
        return {
            "size": len(self._cache),
            "max_size": self.settings.risk_cache_max_entries,
            "hits": self._hits,
            "misses": self._misses,
        }
