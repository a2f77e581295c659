"""
Caching layers: the persistent bounded store and the in-memory LRU.
"""
from floodroute.cache.lru import BoundedLRU
from floodroute.cache.store import BoundedCacheStore, CacheTable

__all__ = ["BoundedLRU", "BoundedCacheStore", "CacheTable"]
