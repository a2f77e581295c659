"""
Bounded, expiring persistent store for tiles, landmarks, routes and searches.

All four tables live in the SQL database configured in settings. Every table
has its own asyncio lock so a read-modify-write section (tile insert plus
eviction scan, access-time refresh) never interleaves with another on the
same table. Storage failures never break callers: reads degrade to a miss
and writes are dropped, both logged and counted.
"""

import asyncio
import functools
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from floodroute.config.settings import FloodRouteSettings, get_settings
from floodroute.database.connection import create_session_maker, init_db, session_scope
from floodroute.database.models import LandmarkEntry, RouteEntry, SearchEntry, TileEntry
from floodroute.database.repositories import (
    LandmarkRepository,
    RouteRepository,
    SearchRepository,
    TileRepository,
)
from floodroute.errors import CacheUnavailable
from floodroute.providers.models import CachedRoute, Coordinate, Landmark
from floodroute.utils.clock import Clock, utc_now
from floodroute.utils.geo_utils import bounding_box, meters_to_degrees

logger = logging.getLogger(__name__)


class CacheTable(str, Enum):
    """Tables managed by the store."""
    TILES = "tiles"
    LANDMARKS = "landmarks"
    ROUTES = "routes"
    SEARCH = "search"


def normalize_query(query: str) -> str:
    """Lower-case a query and collapse runs of whitespace."""
    return " ".join(query.lower().split())


def landmark_key(name: str, latitude: float, longitude: float) -> str:
    return f"{name.strip()}|{latitude:.6f}|{longitude:.6f}"


def route_key(start: Coordinate, end: Coordinate) -> str:
    """Quantized start/end key (4 decimals, about 11 m)."""
    return (
        f"{start.latitude:.4f},{start.longitude:.4f};"
        f"{end.latitude:.4f},{end.longitude:.4f}"
    )


def _json_size(payload: Any) -> int:
    return len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))


def _miss_on_failure(default: Any = None):
    """Turn CacheUnavailable into a logged miss (or dropped write)."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self: "BoundedCacheStore", *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except CacheUnavailable as e:
                self._errors += 1
                logger.error(f"❌ {func.__name__}: cache unavailable: {e}")
                return default() if callable(default) else default

        return wrapper

    return decorator


class BoundedCacheStore:
    """
    Persistent cache with size and age bounds.

    Args:
        engine: Async SQLAlchemy engine holding the cache tables
        settings: Limits and TTLs (global settings when omitted)
        clock: Returns the current naive UTC time; injectable for tests.
               Readings are clamped so stored timestamps never go backwards.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        settings: Optional[FloodRouteSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.engine = engine
        self.settings = settings or get_settings()
        self._session_maker = create_session_maker(engine)
        self._clock = clock or utc_now
        self._last_now: Optional[datetime] = None
        self._locks = {table: asyncio.Lock() for table in CacheTable}

        self._hits = {table.value: 0 for table in CacheTable}
        self._misses = {table.value: 0 for table in CacheTable}
        self._evictions = 0
        self._errors = 0

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        now = self._clock()
        if self._last_now is not None and now < self._last_now:
            now = self._last_now
        self._last_now = now
        return now

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with session_scope(self._session_maker) as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailable(str(e)) from e

    async def initialize(self) -> Dict[str, int]:
        """
        Create the tables and drop entries past their age limit.

        Returns:
            Rows pruned per table
        """
        try:
            await init_db(self.engine)
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailable(str(e)) from e
        logger.info("✅ Cache store initialized")
        return await self.prune_expired()

    def _cutoff(self, now: datetime, table: CacheTable) -> Optional[datetime]:
        ttl = self.settings.get_cache_ttl(table.value)
        return None if ttl is None else now - timedelta(seconds=ttl)

    def _record(self, table: CacheTable, hit: bool) -> None:
        if hit:
            self._hits[table.value] += 1
        else:
            self._misses[table.value] += 1

    # ------------------------------------------------------------------
    # Generic contract
    # ------------------------------------------------------------------

    async def put(
        self,
        table: Union[CacheTable, str],
        key: Any,
        value: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Insert or replace an entry.

        Keys per table: tile URL, ignored for landmarks and routes (derived
        from the value), raw query text for searches. Tiles take
        ``metadata={"zoom", "x", "y"}``.
        """
        table = CacheTable(table)
        metadata = metadata or {}
        if table is CacheTable.TILES:
            await self.put_tile(
                key, value, metadata.get("zoom", 0), metadata.get("x", 0), metadata.get("y", 0)
            )
        elif table is CacheTable.LANDMARKS:
            await self.put_landmarks([value])
        elif table is CacheTable.ROUTES:
            await self.put_route(value)
        else:
            await self.put_search_results(key, value)

    async def get(self, table: Union[CacheTable, str], key: Any) -> Any:
        """
        Exact lookup.

        Keys per table: tile URL, (name, latitude, longitude) for landmarks,
        (start, end) coordinates for routes, query text for searches.
        """
        table = CacheTable(table)
        if table is CacheTable.TILES:
            return await self.get_tile(key)
        if table is CacheTable.LANDMARKS:
            name, latitude, longitude = key
            return await self.get_landmark(name, latitude, longitude)
        if table is CacheTable.ROUTES:
            start, end = key
            return await self.get_route(start, end, tolerance_m=0.0)
        return await self.get_search_results(key)

    async def get_by_proximity(
        self,
        table: Union[CacheTable, str],
        near: Union[Coordinate, Tuple[Coordinate, Coordinate]],
        tolerance_m: Optional[float] = None,
    ) -> Any:
        """
        Tolerance lookup.

        Routes take ``near=(start, end)`` and match when both endpoints are
        within tolerance; landmarks take a coordinate and return the closest
        one within tolerance.
        """
        table = CacheTable(table)
        if table is CacheTable.ROUTES:
            start, end = near
            return await self.get_route(start, end, tolerance_m=tolerance_m)
        if table is CacheTable.LANDMARKS:
            tolerance = self.settings.route_cache_tolerance_meters if tolerance_m is None else tolerance_m
            candidates = await self.landmarks_near(near, radius_km=tolerance / 1000.0)
            return candidates[0] if candidates else None
        raise ValueError(f"Proximity lookup is not supported for table '{table.value}'")

    # ------------------------------------------------------------------
    # Tiles
    # ------------------------------------------------------------------

    @_miss_on_failure()
    async def get_tile(self, url: str) -> Optional[bytes]:
        """Cached tile bytes; refreshes the tile's last access time."""
        async with self._locks[CacheTable.TILES]:
            async with self._session() as session:
                repo = TileRepository(session)
                now = self._now()
                entry = await repo.get_valid(url, self._cutoff(now, CacheTable.TILES))
                if entry is None:
                    self._record(CacheTable.TILES, hit=False)
                    return None
                data = entry.data
                await repo.touch(url, now)
        self._record(CacheTable.TILES, hit=True)
        return data

    @_miss_on_failure()
    async def put_tile(self, url: str, data: bytes, zoom: int, x: int, y: int) -> None:
        """Store a tile and evict old tiles until the size ceiling holds."""
        async with self._locks[CacheTable.TILES]:
            async with self._session() as session:
                repo = TileRepository(session)
                now = self._now()
                await repo.upsert(
                    TileEntry(
                        url=url,
                        data=data,
                        zoom=zoom,
                        x=x,
                        y=y,
                        size_bytes=len(data),
                        created_at=now,
                        last_accessed=now,
                    )
                )
                await self._enforce_tile_ceiling(repo)

    async def _enforce_tile_ceiling(self, repo: TileRepository) -> int:
        ceiling = self.settings.tile_cache_max_bytes
        fraction = self.settings.tile_eviction_fraction
        evicted = 0
        total = await repo.total_size()
        while total > ceiling:
            count = await repo.count()
            if count == 0:
                break
            batch = max(1, int(count * fraction))
            evicted += await repo.delete_least_recently_accessed(batch)
            total = await repo.total_size()
        if evicted:
            self._evictions += evicted
            logger.info(f"🧹 Evicted {evicted} tiles, cache now {total} bytes (ceiling {ceiling})")
        return evicted

    # ------------------------------------------------------------------
    # Landmarks
    # ------------------------------------------------------------------

    @staticmethod
    def _landmark_to_entry(landmark: Landmark, now: datetime) -> LandmarkEntry:
        lat, lon = landmark.coordinate.latitude, landmark.coordinate.longitude
        payload = landmark.model_dump(mode="json")
        return LandmarkEntry(
            key=landmark_key(landmark.name, lat, lon),
            name=landmark.name,
            display_name=landmark.display_name,
            latitude=lat,
            longitude=lon,
            type=landmark.type,
            data=landmark.data,
            size_bytes=_json_size(payload),
            created_at=now,
        )

    @staticmethod
    def _landmark_from_entry(entry: LandmarkEntry) -> Landmark:
        return Landmark(
            name=entry.name,
            display_name=entry.display_name or "",
            coordinate=Coordinate(latitude=entry.latitude, longitude=entry.longitude),
            type=entry.type or "unknown",
            data=entry.data,
        )

    @_miss_on_failure(default=0)
    async def put_landmarks(self, landmarks: Iterable[Landmark]) -> int:
        """
        Upsert landmarks keyed by (name, latitude, longitude).

        Returns:
            Number of landmarks written
        """
        written = 0
        async with self._locks[CacheTable.LANDMARKS]:
            async with self._session() as session:
                repo = LandmarkRepository(session)
                now = self._now()
                for landmark in landmarks:
                    await repo.upsert(self._landmark_to_entry(landmark, now))
                    written += 1
        logger.debug(f"Stored {written} landmarks")
        return written

    @_miss_on_failure()
    async def get_landmark(self, name: str, latitude: float, longitude: float) -> Optional[Landmark]:
        async with self._session() as session:
            entry = await LandmarkRepository(session).get_by_key(
                landmark_key(name, latitude, longitude)
            )
            landmark = self._landmark_from_entry(entry) if entry else None
        self._record(CacheTable.LANDMARKS, hit=landmark is not None)
        return landmark

    @_miss_on_failure(default=list)
    async def landmarks_near(self, center: Coordinate, radius_km: float = 5.0) -> List[Landmark]:
        """Landmarks within radius_km of center, closest first."""
        min_lat, min_lon, max_lat, max_lon = bounding_box(
            center.latitude, center.longitude, radius_km
        )
        async with self._session() as session:
            entries = await LandmarkRepository(session).in_box(min_lat, min_lon, max_lat, max_lon)
            landmarks = [self._landmark_from_entry(e) for e in entries]

        radius_m = radius_km * 1000.0
        ranked = sorted(
            ((center.distance_to(lm.coordinate), lm) for lm in landmarks),
            key=lambda pair: pair[0],
        )
        result = [lm for distance, lm in ranked if distance <= radius_m]
        self._record(CacheTable.LANDMARKS, hit=bool(result))
        return result

    @_miss_on_failure(default=list)
    async def search_landmarks(self, text: str, limit: Optional[int] = None) -> List[Landmark]:
        """Case-insensitive substring search over name and display name."""
        text = text.strip()
        if not text:
            return []
        limit = limit or self.settings.landmark_search_limit
        async with self._session() as session:
            entries = await LandmarkRepository(session).search_text(text, limit=limit)
            result = [self._landmark_from_entry(e) for e in entries]
        self._record(CacheTable.LANDMARKS, hit=bool(result))
        return result

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @_miss_on_failure()
    async def put_route(self, route: CachedRoute) -> None:
        """Upsert a route keyed by its quantized endpoints."""
        polyline = [[c.latitude, c.longitude] for c in route.polyline]
        async with self._locks[CacheTable.ROUTES]:
            async with self._session() as session:
                now = self._now()
                await RouteRepository(session).upsert(
                    RouteEntry(
                        route_key=route_key(route.start, route.end),
                        start_lat=route.start.latitude,
                        start_lon=route.start.longitude,
                        end_lat=route.end.latitude,
                        end_lon=route.end.longitude,
                        polyline=polyline,
                        distance_m=route.distance_m,
                        duration_s=route.duration_s,
                        size_bytes=_json_size(polyline),
                        created_at=now,
                    )
                )

    @_miss_on_failure()
    async def get_route(
        self,
        start: Coordinate,
        end: Coordinate,
        tolerance_m: Optional[float] = None,
    ) -> Optional[CachedRoute]:
        """
        Most recent unexpired route whose endpoints are both within tolerance.

        The metre tolerance is converted to degrees with 1 degree = 111,320 m
        and applied as a box on both axes.
        """
        if tolerance_m is None:
            tolerance_m = self.settings.route_cache_tolerance_meters
        # Exact lookups still need to absorb float noise from the database
        tolerance_deg = max(meters_to_degrees(tolerance_m), 1e-9)

        async with self._session() as session:
            now = self._now()
            entry = await RouteRepository(session).find_near(
                start.latitude,
                start.longitude,
                end.latitude,
                end.longitude,
                tolerance_deg,
                self._cutoff(now, CacheTable.ROUTES),
            )
            if entry is None:
                self._record(CacheTable.ROUTES, hit=False)
                return None
            route = CachedRoute(
                start=Coordinate(latitude=entry.start_lat, longitude=entry.start_lon),
                end=Coordinate(latitude=entry.end_lat, longitude=entry.end_lon),
                polyline=[Coordinate(latitude=lat, longitude=lon) for lat, lon in entry.polyline],
                distance_m=entry.distance_m,
                duration_s=entry.duration_s,
                created_at=entry.created_at,
            )
        self._record(CacheTable.ROUTES, hit=True)
        return route

    # ------------------------------------------------------------------
    # Search results
    # ------------------------------------------------------------------

    @_miss_on_failure()
    async def put_search_results(self, query: str, results: List[Landmark]) -> None:
        """Store ordered results under the normalized query."""
        payload = [r.model_dump(mode="json") for r in results]
        async with self._locks[CacheTable.SEARCH]:
            async with self._session() as session:
                await SearchRepository(session).upsert(
                    SearchEntry(
                        query=normalize_query(query),
                        results=payload,
                        size_bytes=_json_size(payload),
                        created_at=self._now(),
                    )
                )

    @_miss_on_failure()
    async def get_search_results(self, query: str) -> Optional[List[Landmark]]:
        async with self._session() as session:
            now = self._now()
            entry = await SearchRepository(session).get_valid(
                normalize_query(query), self._cutoff(now, CacheTable.SEARCH)
            )
            results = None if entry is None else [Landmark(**r) for r in entry.results]
        self._record(CacheTable.SEARCH, hit=results is not None)
        return results

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _repository(self, table: CacheTable, session: AsyncSession):
        return {
            CacheTable.TILES: TileRepository,
            CacheTable.LANDMARKS: LandmarkRepository,
            CacheTable.ROUTES: RouteRepository,
            CacheTable.SEARCH: SearchRepository,
        }[table](session)

    @_miss_on_failure(default=dict)
    async def clear(self, table: Optional[Union[CacheTable, str]] = None) -> Dict[str, int]:
        """
        Delete every entry of one table, or of all tables.

        Returns:
            Rows deleted per table
        """
        tables = [CacheTable(table)] if table is not None else list(CacheTable)
        deleted: Dict[str, int] = {}
        for t in tables:
            async with self._locks[t]:
                async with self._session() as session:
                    deleted[t.value] = await self._repository(t, session).delete_all()
        logger.info(f"Cache cleared: {deleted}")
        return deleted

    @_miss_on_failure(default=dict)
    async def prune_expired(self) -> Dict[str, int]:
        """
        Delete tiles, routes and searches past their age limit.

        Landmarks never expire.

        Returns:
            Rows deleted per table
        """
        pruned: Dict[str, int] = {}
        for t in (CacheTable.TILES, CacheTable.ROUTES, CacheTable.SEARCH):
            async with self._locks[t]:
                async with self._session() as session:
                    cutoff = self._cutoff(self._now(), t)
                    pruned[t.value] = await self._repository(t, session).delete_created_before(cutoff)
        if any(pruned.values()):
            logger.info(f"Pruned expired cache entries: {pruned}")
        return pruned

    @_miss_on_failure(default=dict)
    async def stats(self) -> Dict[str, Any]:
        """
        Count and approximate size per table, plus hit/miss counters.
        """
        stats: Dict[str, Any] = {}
        async with self._session() as session:
            for t in CacheTable:
                table_stats = await self._repository(t, session).stats()
                table_stats["hits"] = self._hits[t.value]
                table_stats["misses"] = self._misses[t.value]
                stats[t.value] = table_stats
        stats["tile_cache_max_bytes"] = self.settings.tile_cache_max_bytes
        stats["evictions"] = self._evictions
        stats["errors"] = self._errors
        return stats

    async def close(self) -> None:
        await self.engine.dispose()
