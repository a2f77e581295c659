from fastapi import APIRouter, Depends

from floodroute.errors import NoRouteFound
from floodroute.manager import FloodRouteManager, get_manager
from floodroute.models.api_models import (
    AlternativeRoutesRequest,
    AlternativeRoutesResponse,
    BestDestinationRequest,
    RouteRequest,
)
from floodroute.providers.models import RouteResult

router = APIRouter()


@router.post("", response_model=RouteResult)
async def find_route(
    request: RouteRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Route between two points with its average flood risk.
    """
    route = await manager.orchestrator.find_route(
        request.start, request.end, consider_risk=request.consider_risk
    )
    if route is None:
        raise NoRouteFound("No route available online or in the route cache")
    return route


@router.post("/alternatives", response_model=AlternativeRoutesResponse)
async def find_alternative_routes(
    request: AlternativeRoutesRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Alternative routes ranked from safest to riskiest.
    """
    routes = await manager.orchestrator.find_alternative_routes(
        request.start, request.end, max_routes=request.max_routes
    )
    if not routes:
        raise NoRouteFound("No route available online or in the route cache")
    return AlternativeRoutesResponse(routes=routes, recommended=routes[0])


@router.post("/best-destination", response_model=RouteResult)
async def find_best_destination(
    request: BestDestinationRequest,
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Route to the candidate with the best distance/risk trade-off.
    """
    route = await manager.orchestrator.find_route_to_best_destination(
        request.current, request.candidates
    )
    if route is None:
        raise NoRouteFound("None of the candidate destinations is reachable")
    return route
