from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import Response

from floodroute.manager import FloodRouteManager, get_manager

router = APIRouter()


@router.get("/tiles/{z}/{x}/{y}.png")
async def get_tile(
    z: int = Path(..., ge=0, le=22),
    x: int = Path(..., ge=0),
    y: int = Path(..., ge=0),
    manager: FloodRouteManager = Depends(get_manager),
):
    """
    Map tile from the cache, downloaded on a miss.
    """
    data = await manager.tile_fetcher.get_tile(z, x, y)
    if data is None:
        raise HTTPException(status_code=404, detail=f"Tile {z}/{x}/{y} is not available offline")
    return Response(content=data, media_type="image/png")
