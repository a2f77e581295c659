"""
Unified data models shared by the cache store, spatial index and services.

Collaborator-specific payloads (OSRM responses, Nominatim results, raster
reads) are normalized into these models at the provider boundary.
"""

from datetime import datetime
from enum import Enum
from typing import List, Dict, Optional, Tuple, Any
from pydantic import BaseModel, Field, computed_field

from ..utils.geo_utils import calculate_distance_meters


class Coordinate(BaseModel):
    """Immutable WGS84 point."""
    latitude: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in degrees")

    model_config = {"frozen": True}

    def distance_to(self, other: "Coordinate") -> float:
        """Haversine distance to another coordinate in meters."""
        return calculate_distance_meters(
            self.latitude, self.longitude, other.latitude, other.longitude
        )

    def rounded(self, decimals: int) -> Tuple[float, float]:
        return round(self.latitude, decimals), round(self.longitude, decimals)

    def as_tuple(self) -> Tuple[float, float]:
        return self.latitude, self.longitude


class RasterLayer(str, Enum):
    """Environmental raster layers sampled for hazard features."""
    ELEVATION = "elevation"
    SLOPE = "slope"
    FLOW_ACCUMULATION = "flow_accumulation"
    POPULATION = "population"


class SpatialDataset(str, Enum):
    """Point datasets searched by nearest-neighbour queries."""
    ROADS = "roads"
    HAZARD_POINTS = "hazard_points"

    @property
    def default_search_radius(self) -> float:
        """Bounding-box half width in degrees used when none is given."""
        return 0.1 if self is SpatialDataset.ROADS else 1.0


class SpatialEntry(BaseModel):
    """A road or hazard point stored in the spatial index."""
    id: str
    coordinate: Coordinate
    properties: Dict[str, Any] = Field(default_factory=dict)


class NearestResult(BaseModel):
    """Nearest spatial entry and its great-circle distance."""
    entry: SpatialEntry
    distance_m: float = Field(..., ge=0)


class RiskLevel(str, Enum):
    """Risk bands over flood probability."""
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"
    EXTREME = "EXTREME"

    @classmethod
    def from_probability(cls, probability: float) -> "RiskLevel":
        if probability < 0.2:
            return cls.LOW
        if probability < 0.4:
            return cls.MODERATE
        if probability < 0.6:
            return cls.HIGH
        if probability < 0.8:
            return cls.VERY_HIGH
        return cls.EXTREME

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ")

    @property
    def recommended_action(self) -> str:
        return {
            RiskLevel.LOW: "Normal activities",
            RiskLevel.MODERATE: "Stay alert",
            RiskLevel.HIGH: "Prepare evacuation",
            RiskLevel.VERY_HIGH: "Evacuate if able",
            RiskLevel.EXTREME: "Evacuate immediately",
        }[self]

    @property
    def color(self) -> str:
        return {
            RiskLevel.LOW: "#00FF00",
            RiskLevel.MODERATE: "#FFFF00",
            RiskLevel.HIGH: "#FFA500",
            RiskLevel.VERY_HIGH: "#FF0000",
            RiskLevel.EXTREME: "#8B0000",
        }[self]

    @property
    def is_high_risk(self) -> bool:
        return self in (RiskLevel.VERY_HIGH, RiskLevel.EXTREME)

    @property
    def requires_warning(self) -> bool:
        return self is not RiskLevel.LOW


class HazardPrediction(BaseModel):
    """Raw output of a hazard predictor before clamping."""
    probability: float
    magnitude: float


class RiskResult(BaseModel):
    """Flood risk assessment for a single coordinate."""
    coordinate: Coordinate
    flood_probability: float = Field(..., ge=0, le=1)
    flood_magnitude: float = Field(..., ge=0)
    risk_level: RiskLevel
    features: List[float] = Field(default_factory=list)
    computed_at: datetime

    @property
    def should_avoid(self) -> bool:
        return self.risk_level.is_high_risk

    @property
    def requires_warning(self) -> bool:
        return self.risk_level.requires_warning


class RiskSegment(BaseModel):
    """Run of consecutive route samples sharing one warning-level risk band."""
    start_index: int = Field(..., ge=0)
    end_index: int = Field(..., ge=0)
    risk_level: RiskLevel
    distance_m: float = Field(..., ge=0)


class RouteRiskAnalysis(BaseModel):
    """Risk assessment of a path resampled at a fixed interval."""
    samples: List[Coordinate]
    point_risks: List[RiskResult]
    overall_risk: float = Field(..., ge=0, le=1, description="0.6 x max + 0.4 x average")
    max_risk: float = Field(..., ge=0, le=1)
    average_risk: float = Field(..., ge=0, le=1)
    total_distance_m: float = Field(..., ge=0)
    estimated_time_s: float = Field(..., ge=0, description="Travel time with flood-reduced speeds")
    travel_cost_hours: float = Field(..., ge=0, description="Sum of flood and rain weighted edge costs")
    is_recommended: bool
    high_risk_segments: List[RiskSegment] = Field(default_factory=list)

    @property
    def high_risk_distance_m(self) -> float:
        return sum(s.distance_m for s in self.high_risk_segments)


class Landmark(BaseModel):
    """A named place kept in the landmark cache."""
    name: str
    display_name: str = ""
    coordinate: Coordinate
    type: str = "unknown"
    data: Optional[Dict[str, Any]] = None


class SearchOutcome(BaseModel):
    """Result of a text search and where it was answered from."""
    query: str
    results: List[Landmark] = Field(default_factory=list)
    is_offline: bool = False
    source: str = Field("network", description="network, search_cache or landmarks")


class CachedRoute(BaseModel):
    """A route geometry persisted in the route cache."""
    start: Coordinate
    end: Coordinate
    polyline: List[Coordinate] = Field(..., min_length=2)
    distance_m: float = Field(..., ge=0)
    duration_s: float = Field(..., ge=0)
    created_at: Optional[datetime] = None


class RouteStep(BaseModel):
    """One maneuver reported by a routing engine."""
    distance_m: float = 0.0
    duration_s: float = 0.0
    maneuver_type: str = ""
    modifier: Optional[str] = None
    street_name: str = ""
    location: Optional[Coordinate] = None
    exit: Optional[int] = None


class RouteGeometry(BaseModel):
    """Route as returned by a routing engine, before risk annotation."""
    coordinates: List[Coordinate] = Field(..., min_length=2)
    distance_m: float = Field(..., ge=0)
    duration_s: float = Field(..., ge=0)
    steps: List[RouteStep] = Field(default_factory=list)


class RouteDirection(BaseModel):
    """Human readable turn instruction."""
    instruction: str
    distance_m: float = 0.0
    duration_s: float = 0.0
    maneuver_type: str = ""
    modifier: Optional[str] = None
    street_name: str = ""
    location: Optional[Coordinate] = None


class RouteResult(BaseModel):
    """A route annotated with its average flood risk."""
    coordinates: List[Coordinate]
    distance_km: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    average_flood_risk: float = Field(0.0, ge=0, le=1)
    directions: List[RouteDirection] = Field(default_factory=list)
    is_alternative: bool = False
    is_offline: bool = False

    @computed_field
    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.from_probability(self.average_flood_risk)

    @property
    def destination_score(self) -> float:
        """Lower is better: distance penalized by risk."""
        return self.distance_km * (1.0 + self.average_flood_risk)

