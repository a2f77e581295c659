from fastapi import APIRouter, Depends, HTTPException

from floodroute.cache.store import CacheTable
from floodroute.manager import FloodRouteManager, get_manager
from floodroute.models.api_models import CacheStatsResponse

router = APIRouter()


@router.get("/stats", response_model=CacheStatsResponse)
async def cache_stats(manager: FloodRouteManager = Depends(get_manager)):
    """
    Entry counts and sizes per cache table.
    """
    return await manager.get_stats()


@router.delete("/{table}")
async def clear_cache(table: str, manager: FloodRouteManager = Depends(get_manager)):
    """
    Delete every entry of one table, or of every table with ``all``.
    """
    if table == "all":
        deleted = await manager.store.clear()
        manager.risk_engine.clear_cache()
        return {"deleted": deleted}

    try:
        cache_table = CacheTable(table)
    except ValueError:
        valid = ", ".join(["all"] + [t.value for t in CacheTable])
        raise HTTPException(status_code=400, detail=f"Unknown cache table '{table}'. Valid: {valid}")
    return {"deleted": await manager.store.clear(cache_table)}


@router.post("/prune")
async def prune_cache(manager: FloodRouteManager = Depends(get_manager)):
    """
    Remove expired entries.
    """
    pruned = await manager.store.prune_expired()
    pruned["risk"] = manager.risk_engine.prune_cache()
    return {"pruned": pruned}
