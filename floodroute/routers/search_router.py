from typing import Optional

from fastapi import APIRouter, Depends, Query

from floodroute.manager import FloodRouteManager, get_manager
from floodroute.models.api_models import SearchResponse
from floodroute.providers.models import Coordinate

router = APIRouter()


@router.get("", response_model=SearchResponse)
async def search_places(
    q: str = Query(..., min_length=1, description="Free text query"),
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Bias latitude"),
    lon: Optional[float] = Query(None, ge=-180, le=180, description="Bias longitude"),
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Place search, answered from the cache or stored landmarks when offline.
    """
    near = Coordinate(latitude=lat, longitude=lon) if lat is not None and lon is not None else None
    outcome = await manager.search_service.search(q, near=near)
    return SearchResponse(**outcome.model_dump())
