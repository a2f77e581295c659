"""
Tests for the RiskEngine: feature extraction, caching, batching,
route statistics, route analysis and safe-point search.
"""

import asyncio
import math
from datetime import datetime

import pytest

from conftest import ElevationPredictor, StubSpatialIndex, distance_surface
from floodroute.config.settings import FloodRouteSettings
from floodroute.errors import InvalidFeatureVector
from floodroute.providers.models import (
    Coordinate,
    RasterLayer,
    RiskLevel,
    RiskResult,
    RiskSegment,
    RouteRiskAnalysis,
    SpatialDataset,
)
from floodroute.services.risk_engine import (
    DEFAULT_HAZARD_DISTANCE_M,
    DEFAULT_ROAD_DISTANCE_M,
    RiskEngine,
    apply_rain_multiplier,
    edge_cost_hours,
    estimated_travel_time_s,
    flood_severity,
    high_risk_segments,
    is_route_recommended,
    resample_path,
    route_suggestions,
    select_safer_route,
    validate_features,
)
from floodroute.utils.geo_utils import destination_point

DESTINATION = Coordinate(latitude=15.0931, longitude=120.8283)


def make_engine(spatial_index, predictor, clock=None, **overrides) -> RiskEngine:
    return RiskEngine(spatial_index, predictor, FloodRouteSettings(**overrides), clock=clock)


class TestRainMultiplier:
    """Test suite for apply_rain_multiplier."""

    @pytest.mark.parametrize("base", [-0.5, 0.0, 0.5, 1.0, 1.5])
    @pytest.mark.parametrize("multiplier", [0.0, 1.0, 2.0, 10.0])
    def test_output_always_in_unit_interval(self, base, multiplier):
        """It should clamp the result to [0, 1] for any input."""
        assert 0.0 <= apply_rain_multiplier(base, multiplier) <= 1.0

    def test_multiplier_is_clamped(self):
        assert apply_rain_multiplier(0.2, 0.1) == pytest.approx(0.2)
        assert apply_rain_multiplier(0.2, 10.0) == pytest.approx(0.6)


class TestRiskBanding:
    """Test suite for RiskLevel.from_probability."""

    @pytest.mark.parametrize(
        "probability,level",
        [
            (0.1, RiskLevel.LOW),
            (0.3, RiskLevel.MODERATE),
            (0.5, RiskLevel.HIGH),
            (0.7, RiskLevel.VERY_HIGH),
            (0.9, RiskLevel.EXTREME),
        ],
    )
    def test_bands(self, probability, level):
        assert RiskLevel.from_probability(probability) is level

    def test_band_edges(self):
        assert RiskLevel.from_probability(0.2) is RiskLevel.MODERATE
        assert RiskLevel.from_probability(0.8) is RiskLevel.EXTREME


class TestFeatures:
    """Test suite for feature extraction."""

    @pytest.mark.asyncio
    async def test_feature_order(self):
        """It should produce [elevation, slope, flow, road, population, landslide]."""
        index = StubSpatialIndex(
            layers={
                RasterLayer.ELEVATION: lambda c: 4.0,
                RasterLayer.SLOPE: lambda c: 1.5,
                RasterLayer.FLOW_ACCUMULATION: lambda c: 9000.0,
                RasterLayer.POPULATION: lambda c: 2500.0,
            },
            distances={SpatialDataset.ROADS: 120.0, SpatialDataset.HAZARD_POINTS: 3500.0},
        )
        engine = make_engine(index, ElevationPredictor(lambda e: 0.1))
        assert await engine.features_for(DESTINATION) == [4.0, 1.5, 9000.0, 120.0, 2500.0, 3500.0]

    @pytest.mark.asyncio
    async def test_missing_data_defaults(self):
        """It should fall back to 0 for rasters and large distances for datasets."""
        engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e: 0.1))
        assert await engine.features_for(DESTINATION) == [
            0.0, 0.0, 0.0, DEFAULT_ROAD_DISTANCE_M, 0.0, DEFAULT_HAZARD_DISTANCE_M,
        ]

    def test_validate_features(self):
        validate_features([1.0] * 6)
        with pytest.raises(InvalidFeatureVector):
            validate_features([1.0] * 5)
        with pytest.raises(InvalidFeatureVector) as exc_info:
            validate_features([1.0, math.nan, 1.0, 1.0, 1.0, 1.0])
        assert "slope" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_non_finite_feature_is_raised_not_coerced(self):
        """It should surface InvalidFeatureVector and never call the predictor."""
        index = StubSpatialIndex(layers={RasterLayer.ELEVATION: lambda c: math.inf})
        predictor = ElevationPredictor(lambda e: 0.1)
        engine = make_engine(index, predictor)

        with pytest.raises(InvalidFeatureVector) as exc_info:
            await engine.risk_for(DESTINATION)
        assert math.isinf(exc_info.value.features[0])
        assert predictor.calls == []


class TestRiskFor:
    """Test suite for single-point risk."""

    @pytest.mark.asyncio
    async def test_risk_result(self, clock):
        engine = make_engine(
            StubSpatialIndex(layers={RasterLayer.ELEVATION: lambda c: 3.0}),
            ElevationPredictor(lambda e: 0.65, magnitude=0.9),
            clock=clock,
        )
        result = await engine.risk_for(DESTINATION)
        assert result.flood_probability == 0.65
        assert result.flood_magnitude == 0.9
        assert result.risk_level is RiskLevel.VERY_HIGH
        assert result.should_avoid
        assert result.computed_at == clock.now
        assert len(result.features) == 6

    @pytest.mark.asyncio
    async def test_predictor_output_is_clamped(self):
        for raw, expected in ((-0.5, 0.0), (1.5, 1.0)):
            engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e, raw=raw: raw))
            result = await engine.risk_for(DESTINATION)
            assert result.flood_probability == expected

    @pytest.mark.asyncio
    async def test_cache_hit_skips_prediction(self, clock):
        """It should reuse a fresh result for the same rounded coordinate."""
        index = StubSpatialIndex()
        predictor = ElevationPredictor(lambda e: 0.3)
        engine = make_engine(index, predictor, clock=clock)

        await engine.risk_for(Coordinate(latitude=15.09311, longitude=120.82834))
        samples_after_first = index.sample_calls
        await engine.risk_for(Coordinate(latitude=15.09309, longitude=120.82826))

        assert len(predictor.calls) == 1
        assert index.sample_calls == samples_after_first
        assert engine.cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_expires(self, clock):
        predictor = ElevationPredictor(lambda e: 0.3)
        engine = make_engine(StubSpatialIndex(), predictor, clock=clock)

        await engine.risk_for(DESTINATION)
        clock.advance(seconds=301)
        await engine.risk_for(DESTINATION)
        assert len(predictor.calls) == 2

    @pytest.mark.asyncio
    async def test_rain_multiplier_applies_to_new_predictions(self):
        engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e: 0.3))
        assert (await engine.risk_for(DESTINATION)).flood_probability == pytest.approx(0.3)

        engine.set_rain_multiplier(2.0)
        assert (await engine.risk_for(DESTINATION)).flood_probability == pytest.approx(0.6)

        engine.set_rain_multiplier(9.0)
        assert engine.rain_multiplier == 3.0
        assert (await engine.risk_for(DESTINATION)).flood_probability == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_prune_cache(self, clock):
        engine = make_engine(
            StubSpatialIndex(), ElevationPredictor(lambda e: 0.1), clock=clock, risk_cache_max_entries=10
        )
        for i in range(10):
            clock.advance(seconds=1)
            await engine.risk_for(Coordinate(latitude=15.0 + i * 0.01, longitude=120.8))
        assert engine.cache_stats()["size"] == 10

        # The 11th entry pushes the cache over capacity: the oldest 20 % go
        await engine.risk_for(Coordinate(latitude=16.0, longitude=120.8))
        assert engine.cache_stats()["size"] == 9

        clock.advance(seconds=400)
        assert engine.prune_cache() == 9
        assert engine.cache_stats()["size"] == 0


class TestRiskForBatch:
    """Test suite for batched risk."""

    @pytest.mark.asyncio
    async def test_order_preserved_with_skewed_latencies(self):
        """It should return results in input order whatever the completion order."""

        class SlowFirstPredictor(ElevationPredictor):
            async def predict(self, features):
                # Elevation encodes the position; earlier points finish last
                await asyncio.sleep(0.03 - features[0] * 0.01)
                return await super().predict(features)

        points = [Coordinate(latitude=15.0 + i * 0.01, longitude=120.8) for i in range(3)]
        elevations = {p: float(i) for i, p in enumerate(points)}
        index = StubSpatialIndex(layers={RasterLayer.ELEVATION: lambda c: elevations[c]})
        engine = make_engine(index, SlowFirstPredictor(lambda e: e / 10.0))

        results = await engine.risk_for_batch(points)
        assert [r.coordinate for r in results] == points
        assert [r.flood_probability for r in results] == pytest.approx([0.0, 0.1, 0.2])

    @pytest.mark.asyncio
    async def test_at_most_chunk_size_in_flight(self):
        """It should never run more than 10 predictions concurrently."""

        class TrackingPredictor(ElevationPredictor):
            def __init__(self):
                super().__init__(lambda e: 0.1)
                self.in_flight = 0
                self.peak = 0

            async def predict(self, features):
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
                await asyncio.sleep(0.001)
                self.in_flight -= 1
                return await super().predict(features)

        predictor = TrackingPredictor()
        engine = make_engine(StubSpatialIndex(), predictor)
        points = [Coordinate(latitude=14.0 + i * 0.01, longitude=121.0) for i in range(25)]

        results = await engine.risk_for_batch(points)
        assert len(results) == 25
        assert predictor.peak <= 10
        assert len(predictor.calls) == 25

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e: 0.1))
        assert await engine.risk_for_batch([]) == []

    @pytest.mark.asyncio
    async def test_failure_cancels_rest_of_chunk(self):
        """It should cancel the still-running predictions of a failing chunk."""
        engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e: 0.1))
        slow = Coordinate(latitude=15.0, longitude=120.8)
        broken = Coordinate(latitude=15.1, longitude=120.8)
        cancelled = []

        async def risk_for(coordinate):
            if coordinate == broken:
                raise InvalidFeatureVector([1.0], "expected 6 values, got 1")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(coordinate)
                raise

        engine.risk_for = risk_for
        with pytest.raises(InvalidFeatureVector):
            await engine.risk_for_batch([slow, broken])
        assert cancelled == [slow]


class TestRouteRiskStats:
    """Test suite for route statistics."""

    @pytest.mark.asyncio
    async def test_empty_path(self):
        engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e: 0.1))
        stats = await engine.route_risk_stats([])
        assert stats == {
            "max": 0.0,
            "average": 0.0,
            "total": 0.0,
            "high_risk_count": 0.0,
            "high_risk_percentage": 0.0,
        }

    @pytest.mark.asyncio
    async def test_stats(self):
        """It should aggregate probabilities and count VERY_HIGH or worse points."""
        path = [Coordinate(latitude=15.0 + i * 0.01, longitude=120.8) for i in range(4)]
        probabilities = {p: v for p, v in zip(path, (0.1, 0.5, 0.7, 0.9))}
        elevations = {p: float(i) for i, p in enumerate(path)}
        index = StubSpatialIndex(layers={RasterLayer.ELEVATION: lambda c: elevations[c]})
        engine = make_engine(index, ElevationPredictor(lambda e: probabilities[path[int(e)]]))

        stats = await engine.route_risk_stats(path)
        assert stats["max"] == pytest.approx(0.9)
        assert stats["total"] == pytest.approx(2.2)
        assert stats["average"] == pytest.approx(0.55)
        assert stats["high_risk_count"] == 2
        assert stats["high_risk_percentage"] == pytest.approx(50.0)


class TestFindSafePoint:
    """Test suite for the expanding-ring safe-point search."""

    def make_flooded_engine(self) -> RiskEngine:
        # Risk is 0 everywhere beyond 600 m from the destination
        index = StubSpatialIndex(layers={RasterLayer.ELEVATION: distance_surface(DESTINATION)})
        predictor = ElevationPredictor(lambda distance: 0.0 if distance > 600 else 0.9)
        return make_engine(index, predictor)

    @pytest.mark.asyncio
    async def test_returns_point_on_1km_ring(self):
        """It should skip the 500 m ring and return the first 1 km candidate."""
        engine = self.make_flooded_engine()
        safe = await engine.find_safe_point(DESTINATION)

        assert safe is not None
        assert DESTINATION.distance_to(safe) == pytest.approx(1000.0, abs=1.0)
        # First bearing tried is north
        assert safe.latitude > DESTINATION.latitude

    @pytest.mark.asyncio
    async def test_deterministic(self):
        first = await self.make_flooded_engine().find_safe_point(DESTINATION)
        second = await self.make_flooded_engine().find_safe_point(DESTINATION)
        assert first == second

    @pytest.mark.asyncio
    async def test_none_when_radius_too_small(self):
        engine = self.make_flooded_engine()
        assert await engine.find_safe_point(DESTINATION, max_radius_m=500.0) is None

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self):
        engine = make_engine(StubSpatialIndex(), ElevationPredictor(lambda e: 0.3))
        safe = await engine.find_safe_point(DESTINATION, max_risk_threshold=0.3)
        assert DESTINATION.distance_to(safe) == pytest.approx(100.0, abs=0.5)


def northward_path(*distances_m: float):
    """Points due north of DESTINATION at the given distances."""
    points = []
    for distance in distances_m:
        lat, lon = destination_point(DESTINATION.latitude, DESTINATION.longitude, 0.0, distance)
        points.append(Coordinate(latitude=lat, longitude=lon))
    return points


def risk_result(coordinate: Coordinate, probability: float) -> RiskResult:
    return RiskResult(
        coordinate=coordinate,
        flood_probability=probability,
        flood_magnitude=0.0,
        risk_level=RiskLevel.from_probability(probability),
        computed_at=datetime(2024, 7, 1),
    )


def analysis(**overrides) -> RouteRiskAnalysis:
    values = dict(
        samples=[DESTINATION],
        point_risks=[],
        overall_risk=0.2,
        max_risk=0.2,
        average_risk=0.2,
        total_distance_m=1000.0,
        estimated_time_s=90.0,
        travel_cost_hours=0.025,
        is_recommended=True,
        high_risk_segments=[],
    )
    values.update(overrides)
    return RouteRiskAnalysis(**values)


class TestRouteAnalysisHelpers:
    """Test suite for resampling, severity, segments and recommendation."""

    def test_resample_every_100m(self):
        start, end = northward_path(0.0, 250.0)
        samples = resample_path([start, end])
        # ceil(250 / 100) points after the first vertex
        assert len(samples) == 4
        assert samples[0] == start
        assert samples[-1].latitude == pytest.approx(end.latitude)
        assert start.distance_to(samples[1]) == pytest.approx(250.0 / 3, abs=0.5)

    def test_resample_short_paths(self):
        assert resample_path([DESTINATION]) == [DESTINATION]
        # A zero-length segment adds no samples
        assert resample_path([DESTINATION, DESTINATION]) == [DESTINATION]

    @pytest.mark.parametrize(
        "probability,severity",
        [(0.05, 0.0), (0.2, 0.1), (0.5, 1.0), (0.7, 4.9), (1.0, 10.0)],
    )
    def test_flood_severity(self, probability, severity):
        assert flood_severity(probability) == pytest.approx(severity)

    def test_edge_cost(self):
        """It should weigh travel hours by flood severity and rain."""
        assert edge_cost_hours(1000.0, 0.0) == pytest.approx(0.025)
        assert edge_cost_hours(1000.0, 0.5) == pytest.approx(0.05)
        assert edge_cost_hours(1000.0, 0.5, rain_multiplier=2.0) == pytest.approx(0.1)
        # Speed clamped to 5 km/h, rain multiplier to 3
        assert edge_cost_hours(1000.0, 0.0, speed_kmh=1.0) == pytest.approx(0.2)
        assert edge_cost_hours(1000.0, 0.0, rain_multiplier=10.0) == pytest.approx(0.075)

    def test_high_risk_segments(self):
        """It should group consecutive warning-level samples by band."""
        samples = northward_path(0.0, 100.0, 200.0, 300.0, 400.0, 500.0)
        probabilities = (0.1, 0.3, 0.35, 0.5, 0.1, 0.9)
        risks = [risk_result(c, p) for c, p in zip(samples, probabilities)]

        segments = high_risk_segments(samples, risks)

        assert [(s.start_index, s.end_index, s.risk_level) for s in segments] == [
            (1, 2, RiskLevel.MODERATE),
            (3, 3, RiskLevel.HIGH),
            (5, 5, RiskLevel.EXTREME),
        ]
        assert segments[0].distance_m == pytest.approx(100.0, abs=0.5)
        assert segments[1].distance_m == 0.0

    def test_no_segments_on_low_risk(self):
        samples = northward_path(0.0, 100.0)
        assert high_risk_segments(samples, [risk_result(c, 0.1) for c in samples]) == []

    def test_travel_time_slows_with_risk(self):
        samples = northward_path(0.0, 1000.0)
        dry = estimated_travel_time_s(samples, [risk_result(c, 0.0) for c in samples])
        flooded = estimated_travel_time_s(samples, [risk_result(c, 1.0) for c in samples])
        assert dry == pytest.approx(90.0, rel=1e-3)
        # Speed never drops below 30 %
        assert flooded == pytest.approx(300.0, rel=1e-3)

    def test_is_route_recommended(self):
        moderate = RiskSegment(start_index=0, end_index=1, risk_level=RiskLevel.MODERATE, distance_m=100.0)
        extreme = RiskSegment(start_index=2, end_index=2, risk_level=RiskLevel.EXTREME, distance_m=0.0)

        assert is_route_recommended(0.3, 0.5, [moderate])
        assert not is_route_recommended(0.61, 0.5, [])
        assert not is_route_recommended(0.3, 0.81, [])
        assert not is_route_recommended(0.3, 0.5, [extreme])
        assert is_route_recommended(0.3, 0.5, [moderate] * 3)
        assert not is_route_recommended(0.3, 0.5, [moderate] * 4)

    def test_select_safer_route(self):
        """It should compare overall risk, then max risk, then distance."""
        low = analysis(overall_risk=0.1)
        high = analysis(overall_risk=0.4)
        assert select_safer_route(low, high) is low
        assert select_safer_route(high, low) is low

        calm = analysis(max_risk=0.2)
        spiky = analysis(max_risk=0.5)
        assert select_safer_route(spiky, calm) is calm

        short = analysis(total_distance_m=800.0)
        long = analysis(total_distance_m=1200.0)
        assert select_safer_route(long, short) is short

        # Float noise in averages counts as a tie
        noisy = analysis(overall_risk=0.1 + 1e-15, total_distance_m=800.0)
        assert select_safer_route(analysis(overall_risk=0.1), noisy) is noisy

    def test_suggestions_for_severe_route(self):
        segment = RiskSegment(start_index=0, end_index=15, risk_level=RiskLevel.EXTREME, distance_m=1500.0)
        suggestions = route_suggestions(
            analysis(max_risk=0.9, is_recommended=False, high_risk_segments=[segment], estimated_time_s=125.0)
        )
        assert suggestions == [
            "This route passes through high-risk flood areas",
            "Severe flood risk detected on this route",
            "Consider delaying travel or finding an alternative route",
            "1.5 km of high-risk segments",
            "Estimated travel time: 3 minutes",
        ]

    def test_suggestions_for_calm_route(self):
        assert route_suggestions(analysis()) == ["Estimated travel time: 2 minutes"]


class TestAnalyzeRoute:
    """Test suite for RiskEngine.analyze_route and edge_cost."""

    def make_engine(self, probability_for, **overrides) -> RiskEngine:
        # Elevation encodes the distance from DESTINATION; no caching between samples
        index = StubSpatialIndex(layers={RasterLayer.ELEVATION: distance_surface(DESTINATION)})
        return make_engine(index, ElevationPredictor(probability_for), risk_cache_ttl=0, **overrides)

    @pytest.mark.asyncio
    async def test_flooded_tail(self):
        """It should flag the flooded last 300 m and not recommend the route."""
        engine = self.make_engine(lambda distance: 0.9 if distance > 650 else 0.1)
        path = northward_path(0.0, 1000.0)

        result = await engine.analyze_route(path)

        assert len(result.samples) == 11
        assert result.total_distance_m == pytest.approx(1000.0, abs=0.5)
        assert result.max_risk == pytest.approx(0.9)
        average = (4 * 0.9 + 7 * 0.1) / 11
        assert result.average_risk == pytest.approx(average)
        assert result.overall_risk == pytest.approx(0.9 * 0.6 + average * 0.4)
        assert [(s.start_index, s.end_index, s.risk_level) for s in result.high_risk_segments] == [
            (7, 10, RiskLevel.EXTREME),
        ]
        assert result.high_risk_segments[0].distance_m == pytest.approx(300.0, abs=0.5)
        assert not result.is_recommended

        leg_hours = 0.1 / 40.0
        assert result.travel_cost_hours == pytest.approx(
            7 * leg_hours * (1 + 0.05) + 3 * leg_hours * (1 + 8.1), rel=1e-3
        )
        assert result.estimated_time_s == pytest.approx(
            7 * leg_hours * 3600 / 0.93 + 3 * leg_hours * 3600 / 0.37, rel=1e-3
        )

    @pytest.mark.asyncio
    async def test_dry_route_is_recommended(self):
        engine = self.make_engine(lambda distance: 0.05)
        result = await engine.analyze_route(northward_path(0.0, 400.0, 800.0))
        assert result.is_recommended
        assert result.high_risk_segments == []
        assert len(result.samples) == 9

    @pytest.mark.asyncio
    async def test_rain_multiplier_raises_travel_cost(self):
        engine = self.make_engine(lambda distance: 0.0)
        path = northward_path(0.0, 1000.0)
        dry = await engine.analyze_route(path)
        engine.set_rain_multiplier(2.0)
        wet = await engine.analyze_route(path)
        assert dry.travel_cost_hours == pytest.approx(0.025, rel=1e-3)
        assert wet.travel_cost_hours == pytest.approx(0.05, rel=1e-3)

    @pytest.mark.asyncio
    async def test_empty_path(self):
        engine = self.make_engine(lambda distance: 0.1)
        with pytest.raises(ValueError):
            await engine.analyze_route([])

    @pytest.mark.asyncio
    async def test_edge_cost_uses_midpoint_risk(self):
        """It should score the edge by the risk halfway along it."""
        # Only the midpoint, 500 m out, is flooded
        engine = self.make_engine(lambda distance: 0.5 if 400 < distance < 600 else 0.0)
        start, end = northward_path(0.0, 1000.0)

        assert await engine.edge_cost(start, end) == pytest.approx(0.05, rel=1e-3)
        assert await engine.edge_cost(start, end, distance_m=2000.0) == pytest.approx(0.1)
        assert await engine.edge_cost(start, end, distance_m=1000.0, rain_multiplier=2.0) == pytest.approx(0.1)
