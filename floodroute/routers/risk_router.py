from functools import reduce

from fastapi import APIRouter, Depends, Query

from floodroute.errors import NoSafePointFound
from floodroute.manager import FloodRouteManager, get_manager
from floodroute.models.api_models import (
    BatchRiskRequest,
    BatchRiskResponse,
    EdgeCostRequest,
    EdgeCostResponse,
    RainMultiplierRequest,
    RainMultiplierResponse,
    RouteAnalysisRequest,
    RouteAnalysisResponse,
    RouteComparisonRequest,
    RouteComparisonResponse,
    RouteStatsRequest,
    RouteStatsResponse,
    SafePointResponse,
)
from floodroute.providers.models import Coordinate, RiskResult
from floodroute.providers.predictor.weather import rain_multiplier_from_precipitation
from floodroute.services.risk_engine import route_suggestions, select_safer_route

router = APIRouter()


@router.get("", response_model=RiskResult)
async def get_risk(
    lat: float = Query(..., ge=-90, le=90, description="Latitude"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude"),
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Flood risk at a single coordinate.
    """
    return await manager.risk_engine.risk_for(Coordinate(latitude=lat, longitude=lon))


@router.post("/batch", response_model=BatchRiskResponse)
async def get_risk_batch(
    request: BatchRiskRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Flood risk for many coordinates, in request order.
    """
    results = await manager.risk_engine.risk_for_batch(request.coordinates)
    return BatchRiskResponse(results=results)


@router.post("/route-stats", response_model=RouteStatsResponse)
async def get_route_stats(
    request: RouteStatsRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Aggregate risk along a path.
    """
    return RouteStatsResponse(**await manager.risk_engine.route_risk_stats(request.path))


@router.get("/safe-point", response_model=SafePointResponse)
async def get_safe_point(
    lat: float = Query(..., ge=-90, le=90, description="Destination latitude"),
    lon: float = Query(..., ge=-180, le=180, description="Destination longitude"),
    max_risk: float = Query(0.3, ge=0, le=1, description="Maximum acceptable flood probability"),
    max_radius_m: float = Query(5000.0, gt=0, description="Search radius in meters"),
    directions: int = Query(8, ge=1, le=36, description="Bearings probed per ring"),
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Nearest low-risk point around a flooded destination.
    """
    destination = Coordinate(latitude=lat, longitude=lon)
    safe_point = await manager.risk_engine.find_safe_point(
        destination,
        max_risk_threshold=max_risk,
        max_radius_m=max_radius_m,
        num_directions=directions,
    )
    if safe_point is None:
        raise NoSafePointFound(f"No point under risk {max_risk} within {max_radius_m:.0f} m")
    return SafePointResponse(
        destination=destination,
        safe_point=safe_point,
        distance_m=destination.distance_to(safe_point),
    )


@router.put("/rain-multiplier", response_model=RainMultiplierResponse)
async def set_rain_multiplier(
    request: RainMultiplierRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Set the rain multiplier applied to new predictions.

    An explicit multiplier wins over one derived from 24 h rainfall; an
    empty body disables the multiplier. Cached risk results are dropped.
    """
    multiplier = request.multiplier
    if multiplier is None and request.rain_24h_mm is not None:
        multiplier = rain_multiplier_from_precipitation(request.rain_24h_mm)
    manager.risk_engine.set_rain_multiplier(multiplier)
    return RainMultiplierResponse(rain_multiplier=manager.risk_engine.rain_multiplier)


@router.post("/route-analysis", response_model=RouteAnalysisResponse)
async def analyze_route(
    request: RouteAnalysisRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Resampled risk profile of a path with risky segments, travel time,
    recommendation and driver advice.
    """
    analysis = await manager.risk_engine.analyze_route(request.path, request.sample_interval_m)
    return RouteAnalysisResponse(analysis=analysis, suggestions=route_suggestions(analysis))


@router.post("/compare-routes", response_model=RouteComparisonResponse)
async def compare_routes(
    request: RouteComparisonRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Analyse candidate paths and point out the safest.
    """
    analyses = [
        await manager.risk_engine.analyze_route(path, request.sample_interval_m)
        for path in request.paths
    ]
    safest = reduce(select_safer_route, analyses)
    return RouteComparisonResponse(
        analyses=analyses,
        safest_index=next(i for i, a in enumerate(analyses) if a is safest),
    )


@router.post("/edge-cost", response_model=EdgeCostResponse)
async def get_edge_cost(
    request: EdgeCostRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Flood and rain weighted routing cost of one edge, in hours.
    """
    cost = await manager.risk_engine.edge_cost(
        request.start,
        request.end,
        distance_m=request.distance_m,
        speed_kmh=request.speed_kmh,
        rain_multiplier=request.rain_multiplier,
    )
    return EdgeCostResponse(cost_hours=cost)
