"""Persistent storage for the cache store and spatial index."""
