"""
Tests for the bounded persistent cache store.

Each test runs against a fresh SQLite file and a manually advanced clock.
"""

import pytest

from sqlalchemy.ext.asyncio import create_async_engine

from floodroute.cache.store import (
    BoundedCacheStore,
    CacheTable,
    landmark_key,
    normalize_query,
    route_key,
)
from floodroute.config.settings import FloodRouteSettings
from floodroute.providers.models import CachedRoute, Coordinate, Landmark

ROUTE_START = Coordinate(latitude=14.6000, longitude=120.9800)
ROUTE_END = Coordinate(latitude=14.6100, longitude=120.9900)


def make_route(start=ROUTE_START, end=ROUTE_END, distance_m=1500.0) -> CachedRoute:
    return CachedRoute(
        start=start,
        end=end,
        polyline=[start, Coordinate(latitude=14.6050, longitude=120.9850), end],
        distance_m=distance_m,
        duration_s=240.0,
    )


class TestKeys:
    """Test suite for cache key helpers."""

    def test_normalize_query(self):
        """It should lower-case and collapse whitespace."""
        assert normalize_query("  Rizal   PARK ") == "rizal park"

    def test_route_key_quantizes_to_four_decimals(self):
        """It should map endpoints within the same 4-decimal cell to one key."""
        a = route_key(ROUTE_START, ROUTE_END)
        b = route_key(Coordinate(latitude=14.60001, longitude=120.98002), ROUTE_END)
        assert a == b

    def test_landmark_key(self):
        assert landmark_key(" Rizal Park ", 14.5831, 120.9794) == "Rizal Park|14.583100|120.979400"


class TestTileCache:
    """Test suite for tile storage and eviction."""

    @pytest.mark.asyncio
    async def test_put_and_get_tile(self, store):
        """It should return stored tile bytes."""
        await store.put_tile("https://tiles/14/1/2.png", b"\x89PNG-data", 14, 1, 2)
        assert await store.get_tile("https://tiles/14/1/2.png") == b"\x89PNG-data"
        assert await store.get_tile("https://tiles/14/1/3.png") is None

    @pytest.mark.asyncio
    async def test_eviction_keeps_total_under_ceiling(self, engine, clock):
        """It should keep the aggregate tile size under the ceiling after every insert."""
        settings = FloodRouteSettings(tile_cache_max_bytes=1000)
        store = BoundedCacheStore(engine, settings, clock=clock)
        await store.initialize()

        # 12 x 100 bytes = 1.2x the ceiling
        for i in range(12):
            clock.advance(seconds=1)
            await store.put_tile(f"https://tiles/14/{i}/0.png", bytes(100), 14, i, 0)
            stats = await store.stats()
            assert stats["tiles"]["approx_size_bytes"] <= 1000

        stats = await store.stats()
        assert stats["evictions"] > 0
        # The newest tile always survives
        assert await store.get_tile("https://tiles/14/11/0.png") is not None

    @pytest.mark.asyncio
    async def test_eviction_prefers_least_recently_accessed(self, engine, clock):
        """It should evict tiles that were not read recently first."""
        settings = FloodRouteSettings(tile_cache_max_bytes=1000, tile_eviction_fraction=0.1)
        store = BoundedCacheStore(engine, settings, clock=clock)
        await store.initialize()

        for i in range(10):
            clock.advance(seconds=1)
            await store.put_tile(f"https://tiles/{i}.png", bytes(100), 14, i, 0)

        # Reading tile 0 makes it the most recently accessed
        clock.advance(seconds=1)
        assert await store.get_tile("https://tiles/0.png") is not None

        clock.advance(seconds=1)
        await store.put_tile("https://tiles/new.png", bytes(100), 14, 99, 0)

        assert await store.get_tile("https://tiles/0.png") is not None
        assert await store.get_tile("https://tiles/1.png") is None

    @pytest.mark.asyncio
    async def test_expired_tiles_are_misses_and_pruned(self, store, clock):
        """It should stop serving tiles older than the max age and prune them."""
        await store.put_tile("https://tiles/old.png", b"old", 14, 0, 0)
        clock.advance(days=8)
        assert await store.get_tile("https://tiles/old.png") is None

        pruned = await store.prune_expired()
        assert pruned["tiles"] == 1


class TestRouteCache:
    """Test suite for route storage, TTL and proximity matching."""

    @pytest.mark.asyncio
    async def test_route_ttl(self, store, clock):
        """It should serve a route at T+23h and not at T+25h."""
        await store.put_route(make_route())

        clock.advance(hours=23)
        assert await store.get_route(ROUTE_START, ROUTE_END) is not None

        clock.advance(hours=2)
        assert await store.get_route(ROUTE_START, ROUTE_END) is None

    @pytest.mark.asyncio
    async def test_proximity_match_within_tolerance(self, store):
        """It should match a start ~5 m away and reject a start ~200 m away."""
        await store.put_route(make_route())

        near = Coordinate(latitude=14.60004, longitude=120.98003)
        cached = await store.get_route(near, ROUTE_END)
        assert cached is not None
        assert cached.distance_m == 1500.0
        assert len(cached.polyline) == 3

        far = Coordinate(latitude=14.6018, longitude=120.9800)
        assert await store.get_route(far, ROUTE_END) is None

    @pytest.mark.asyncio
    async def test_upsert_replaces_route_with_same_key(self, store):
        """It should keep one row per quantized key with the latest payload."""
        await store.put_route(make_route(distance_m=1000.0))
        await store.put_route(make_route(distance_m=2000.0))

        cached = await store.get_route(ROUTE_START, ROUTE_END)
        assert cached.distance_m == 2000.0
        stats = await store.stats()
        assert stats["routes"]["count"] == 1

    @pytest.mark.asyncio
    async def test_generic_contract(self, store):
        """It should expose routes through put/get/get_by_proximity."""
        await store.put(CacheTable.ROUTES, None, make_route())
        assert await store.get("routes", (ROUTE_START, ROUTE_END)) is not None

        near = Coordinate(latitude=14.60004, longitude=120.98003)
        assert await store.get_by_proximity(CacheTable.ROUTES, (near, ROUTE_END)) is not None
        assert await store.get_by_proximity(CacheTable.ROUTES, (near, ROUTE_END), tolerance_m=1.0) is None

    @pytest.mark.asyncio
    async def test_proximity_not_supported_for_tiles(self, store):
        with pytest.raises(ValueError):
            await store.get_by_proximity(CacheTable.TILES, ROUTE_START)


class TestLandmarkCache:
    """Test suite for landmarks."""

    @pytest.mark.asyncio
    async def test_idempotent_upsert(self, store):
        """It should keep one row with the latest payload for the same key."""
        coordinate = Coordinate(latitude=14.5831, longitude=120.9794)
        await store.put_landmarks([Landmark(name="Rizal Park", coordinate=coordinate, type="park")])
        await store.put_landmarks([
            Landmark(name="Rizal Park", coordinate=coordinate, type="garden", data={"v": 2})
        ])

        stats = await store.stats()
        assert stats["landmarks"]["count"] == 1
        landmark = await store.get_landmark("Rizal Park", 14.5831, 120.9794)
        assert landmark.type == "garden"
        assert landmark.data == {"v": 2}

    @pytest.mark.asyncio
    async def test_landmarks_near_sorted_by_distance(self, store, sample_landmarks):
        """It should return landmarks within the radius, closest first."""
        await store.put_landmarks(sample_landmarks)
        center = Coordinate(latitude=14.5900, longitude=120.9815)

        nearby = await store.landmarks_near(center, radius_km=2.0)
        assert [lm.name for lm in nearby] == ["Manila City Hall", "Rizal Park"]

        everything = await store.landmarks_near(center, radius_km=20.0)
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_landmark_proximity_lookup(self, store, sample_landmarks):
        await store.put_landmarks(sample_landmarks)
        near = Coordinate(latitude=14.58312, longitude=120.97942)
        found = await store.get_by_proximity(CacheTable.LANDMARKS, near)
        assert found.name == "Rizal Park"

    @pytest.mark.asyncio
    async def test_search_landmarks_substring(self, store, sample_landmarks):
        """It should match names and display names case-insensitively."""
        await store.put_landmarks(sample_landmarks)
        results = await store.search_landmarks("park")
        assert {lm.name for lm in results} == {"Rizal Park"}

        results = await store.search_landmarks("quezon")
        assert [lm.name for lm in results] == ["Quezon Memorial Circle"]

        assert await store.search_landmarks("   ") == []

    @pytest.mark.asyncio
    async def test_landmarks_never_expire(self, store, clock, sample_landmarks):
        await store.put_landmarks(sample_landmarks)
        clock.advance(days=365)
        await store.prune_expired()
        assert (await store.stats())["landmarks"]["count"] == 3


class TestSearchCache:
    """Test suite for search results."""

    @pytest.mark.asyncio
    async def test_normalized_query_lookup(self, store, sample_landmarks):
        """It should find results stored under an equivalent query."""
        await store.put_search_results("Rizal Park", sample_landmarks[:1])
        results = await store.get_search_results("  rizal   park")
        assert [lm.name for lm in results] == ["Rizal Park"]

    @pytest.mark.asyncio
    async def test_empty_results_are_cached(self, store):
        await store.put_search_results("nowhere", [])
        assert await store.get_search_results("nowhere") == []
        assert await store.get_search_results("elsewhere") is None

    @pytest.mark.asyncio
    async def test_search_ttl(self, store, clock, sample_landmarks):
        await store.put_search_results("rizal", sample_landmarks[:1])
        clock.advance(hours=25)
        assert await store.get_search_results("rizal") is None


class TestMaintenance:
    """Test suite for clear, stats and failure handling."""

    @pytest.mark.asyncio
    async def test_clear_one_table(self, store, sample_landmarks):
        await store.put_landmarks(sample_landmarks)
        await store.put_route(make_route())

        deleted = await store.clear(CacheTable.LANDMARKS)
        assert deleted == {"landmarks": 3}

        stats = await store.stats()
        assert stats["landmarks"]["count"] == 0
        assert stats["routes"]["count"] == 1

    @pytest.mark.asyncio
    async def test_clear_all(self, store, sample_landmarks):
        await store.put_landmarks(sample_landmarks)
        await store.put_tile("https://tiles/a.png", b"abc", 1, 0, 0)

        deleted = await store.clear()
        assert set(deleted) == {"tiles", "landmarks", "routes", "search"}
        stats = await store.stats()
        assert all(stats[t.value]["count"] == 0 for t in CacheTable)

    @pytest.mark.asyncio
    async def test_stats_track_hits_and_misses(self, store):
        await store.put_tile("https://tiles/a.png", b"abcd", 1, 0, 0)
        await store.get_tile("https://tiles/a.png")
        await store.get_tile("https://tiles/b.png")

        stats = await store.stats()
        assert stats["tiles"] == {"count": 1, "approx_size_bytes": 4, "hits": 1, "misses": 1}

    @pytest.mark.asyncio
    async def test_timestamps_never_go_backwards(self, store, clock):
        """It should clamp a clock that moves backwards."""
        await store.put_route(make_route())
        clock.advance(hours=-5)
        # Still fresh: the store never sees time earlier than the insert
        assert await store.get_route(ROUTE_START, ROUTE_END) is not None

    @pytest.mark.asyncio
    async def test_storage_failure_is_a_miss(self, tmp_path, settings):
        """It should degrade to misses and dropped writes when the database is unusable."""
        blocker = tmp_path / "not_a_directory"
        blocker.write_text("")
        engine = create_async_engine(f"sqlite+aiosqlite:///{blocker / 'cache.db'}")
        store = BoundedCacheStore(engine, settings)

        assert await store.get_tile("https://tiles/a.png") is None
        await store.put_tile("https://tiles/a.png", b"abc", 1, 0, 0)
        assert await store.get_route(ROUTE_START, ROUTE_END) is None
        assert await store.search_landmarks("park") == []
        assert await store.stats() == {}
        assert store._errors == 5

        await engine.dispose()
