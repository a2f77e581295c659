"""
Configuration settings for floodroute using Pydantic Settings.

This module centralizes cache limits, collaborator endpoints and data-source
selection, loading and validating them from environment variables (or a
``.env`` file) with proper type checking and defaults.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import Optional, Dict, Any


class FloodRouteSettings(BaseSettings):
    """
    Settings for the caching, risk and routing subsystem.

    Every value can be overridden through the environment variable named in
    its alias. Durations are expressed in seconds, sizes in bytes.
    """

    # Persistent store
    database_url: str = Field(
        default="sqlite+aiosqlite:///./floodroute_cache.db",
        alias="FLOODROUTE_DATABASE_URL",
        description="SQLAlchemy async URL of the persistent cache store"
    )
    database_echo: bool = Field(
        default=False,
        alias="FLOODROUTE_DATABASE_ECHO",
        description="Echo SQL statements to the log"
    )

    # Tile cache
    tile_cache_max_bytes: int = Field(
        default=500 * 1024 * 1024,  # 500 MB
        alias="TILE_CACHE_MAX_BYTES",
        description="Ceiling for the total size of cached tile blobs"
    )
    tile_cache_max_age: int = Field(
        default=7 * 24 * 3600,  # 7 days
        alias="TILE_CACHE_MAX_AGE",
        description="Age after which cached tiles are pruned, in seconds"
    )
    tile_eviction_fraction: float = Field(
        default=0.3,
        alias="TILE_EVICTION_FRACTION",
        description="Fraction of least-recently-accessed tiles dropped per eviction round"
    )

    # Route and search caches
    route_cache_ttl: int = Field(
        default=24 * 3600,  # 24 hours
        alias="ROUTE_CACHE_TTL",
        description="Cache TTL for computed routes in seconds"
    )
    route_cache_tolerance_meters: float = Field(
        default=50.0,
        alias="ROUTE_CACHE_TOLERANCE_METERS",
        description="Distance within which a cached route endpoint matches a request"
    )
    search_cache_ttl: int = Field(
        default=24 * 3600,  # 24 hours
        alias="SEARCH_CACHE_TTL",
        description="Cache TTL for text search results in seconds"
    )
    landmark_search_limit: int = Field(
        default=20,
        alias="LANDMARK_SEARCH_LIMIT",
        description="Maximum number of landmarks returned by a substring search"
    )

    # Risk engine
    risk_cache_ttl: int = Field(
        default=300,  # 5 minutes
        alias="RISK_CACHE_TTL",
        description="TTL of in-memory risk results in seconds"
    )
    risk_cache_max_entries: int = Field(
        default=1000,
        alias="RISK_CACHE_MAX_ENTRIES",
        description="Risk cache size that triggers pruning"
    )
    risk_batch_chunk_size: int = Field(
        default=10,
        alias="RISK_BATCH_CHUNK_SIZE",
        description="Maximum number of in-flight predictor calls in a batch"
    )
    raster_sample_cache_size: int = Field(
        default=100_000,
        alias="RASTER_SAMPLE_CACHE_SIZE",
        description="Capacity of the raster sample LRU"
    )

    # Hazard predictor (rule based)
    weather_condition: str = Field(
        default="clear",
        alias="WEATHER_CONDITION",
        description="Current weather condition fed to the rule-based predictor"
    )
    rainfall_mm: float = Field(
        default=0.0,
        alias="RAINFALL_MM",
        description="Recent rainfall in millimetres fed to the rule-based predictor"
    )
    weather_code: Optional[int] = Field(
        default=None,
        alias="WEATHER_CODE",
        description="OpenWeatherMap condition code; overrides WEATHER_CONDITION when set"
    )
    rain_multiplier: Optional[float] = Field(
        default=None,
        alias="RAIN_MULTIPLIER",
        description="Multiplier applied to every prediction, clamped to [1, 3]; unset disables it"
    )

    # Network collaborators
    tile_url_template: str = Field(
        default="https://tile.openstreetmap.org/{z}/{x}/{y}.png",
        alias="TILE_URL_TEMPLATE",
        description="URL template for map tiles"
    )
    osrm_base_url: str = Field(
        default="https://router.project-osrm.org",
        alias="OSRM_BASE_URL",
        description="Base URL of the OSRM routing service"
    )
    osrm_profile: str = Field(
        default="driving",
        alias="OSRM_PROFILE",
        description="OSRM routing profile"
    )
    nominatim_endpoint: str = Field(
        default="https://nominatim.openstreetmap.org",
        alias="NOMINATIM_ENDPOINT",
        description="OpenStreetMap Nominatim geocoding endpoint"
    )
    http_user_agent: str = Field(
        default="floodroute/0.1",
        alias="HTTP_USER_AGENT",
        description="User agent for tile, routing and search requests"
    )
    tile_fetch_timeout: float = Field(
        default=10.0,
        alias="TILE_FETCH_TIMEOUT",
        description="Timeout for tile downloads in seconds"
    )
    routing_timeout: float = Field(
        default=15.0,
        alias="ROUTING_TIMEOUT",
        description="Timeout for routing requests in seconds"
    )
    search_timeout: float = Field(
        default=10.0,
        alias="SEARCH_TIMEOUT",
        description="Timeout for place search requests in seconds"
    )
    tile_precache_delay: float = Field(
        default=0.05,
        alias="TILE_PRECACHE_DELAY",
        description="Delay between tile downloads while pre-caching an area"
    )

    # Spatial data
    data_source: str = Field(
        default="synthetic",
        alias="FLOODROUTE_DATA_SOURCE",
        description="Raster data source variant (synthetic, real)"
    )
    raster_paths: Dict[str, str] = Field(
        default_factory=dict,
        alias="RASTER_PATHS",
        description="JSON mapping of layer name to GeoTIFF path for the real data source"
    )
    reference_data_path: Optional[str] = Field(
        default=None,
        alias="REFERENCE_DATA_PATH",
        description="JSON file overriding the synthetic reference tables"
    )

    # API configuration
    floodroute_host: str = Field(
        default="0.0.0.0",
        alias="FLOODROUTE_HOST",
        description="API server host"
    )
    floodroute_port: int = Field(
        default=8002,
        alias="FLOODROUTE_PORT",
        description="API server port"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_prefix": "",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator("data_source")
    @classmethod
    def _validate_data_source(cls, value: str) -> str:
        value = value.lower()
        if value not in ("synthetic", "real"):
            raise ValueError(f"Unknown data source: {value}")
        return value

    def get_cache_ttl(self, table: str) -> Optional[int]:
        """Get the TTL in seconds for a cache table (None means no expiry)."""
        ttl_config = {
            "tiles": self.tile_cache_max_age,
            "routes": self.route_cache_ttl,
            "search": self.search_cache_ttl,
        }
        return ttl_config.get(table)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return self.model_dump()


# Global settings instance
_settings: Optional[FloodRouteSettings] = None


def get_settings() -> FloodRouteSettings:
    """
    Get global settings instance (singleton pattern).

    Returns:
        Validated FloodRouteSettings instance
    """
    global _settings
    if _settings is None:
        _settings = FloodRouteSettings()
    return _settings


def reset_settings() -> None:
    """Reset global settings (useful for testing)."""
    global _settings
    _settings = None
