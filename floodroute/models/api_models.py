from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from floodroute.providers.models import (
    Coordinate,
    Landmark,
    RiskResult,
    RouteResult,
    RouteRiskAnalysis,
)


class RouteRequest(BaseModel):
    start: Coordinate = Field(..., description="Route origin")
    end: Coordinate = Field(..., description="Route destination")
    consider_risk: bool = Field(True, description="Sample flood risk along the route")


class AlternativeRoutesRequest(BaseModel):
    start: Coordinate = Field(..., description="Route origin")
    end: Coordinate = Field(..., description="Route destination")
    max_routes: int = Field(3, ge=1, le=5, description="Maximum number of routes returned")


class BestDestinationRequest(BaseModel):
    current: Coordinate = Field(..., description="Current position")
    candidates: List[Coordinate] = Field(..., min_length=1, description="Candidate evacuation targets")


class AlternativeRoutesResponse(BaseModel):
    routes: List[RouteResult] = Field(default_factory=list)
    recommended: Optional[RouteResult] = Field(None, description="Lowest-risk route")


class BatchRiskRequest(BaseModel):
    coordinates: List[Coordinate] = Field(..., min_length=1)


class BatchRiskResponse(BaseModel):
    results: List[RiskResult]


class RouteStatsRequest(BaseModel):
    path: List[Coordinate] = Field(default_factory=list)


class RouteStatsResponse(BaseModel):
    max: float
    average: float
    total: float
    high_risk_count: float
    high_risk_percentage: float


class SafePointResponse(BaseModel):
    destination: Coordinate
    safe_point: Coordinate
    distance_m: float = Field(..., description="Distance from the destination to the safe point")


class SearchResponse(BaseModel):
    query: str
    results: List[Landmark]
    is_offline: bool
    source: str


class CacheStatsResponse(BaseModel):
    cache: Dict[str, Any]
    risk_cache: Dict[str, Any]
    spatial: Dict[str, Any]
    tile_fetch_failures: int


class RainMultiplierRequest(BaseModel):
    multiplier: Optional[float] = Field(None, gt=0, description="Explicit multiplier, clamped to [1, 3]")
    rain_24h_mm: Optional[float] = Field(None, ge=0, description="Rainfall over the last 24 hours")


class RainMultiplierResponse(BaseModel):
    rain_multiplier: Optional[float] = Field(None, description="Active multiplier; null when disabled")


class RouteAnalysisRequest(BaseModel):
    path: List[Coordinate] = Field(..., min_length=1, description="Route polyline")
    sample_interval_m: float = Field(100.0, ge=10, description="Distance between risk samples")


class RouteAnalysisResponse(BaseModel):
    analysis: RouteRiskAnalysis
    suggestions: List[str] = Field(default_factory=list)


class RouteComparisonRequest(BaseModel):
    paths: List[List[Coordinate]] = Field(..., min_length=2, description="Candidate polylines")
    sample_interval_m: float = Field(100.0, ge=10, description="Distance between risk samples")


class RouteComparisonResponse(BaseModel):
    analyses: List[RouteRiskAnalysis]
    safest_index: int = Field(..., description="Position of the safest path in the request")


class EdgeCostRequest(BaseModel):
    start: Coordinate
    end: Coordinate
    distance_m: Optional[float] = Field(None, ge=0, description="Edge length; great-circle when omitted")
    speed_kmh: float = Field(40.0, gt=0, description="Traffic speed, clamped to [5, 100]")
    rain_multiplier: Optional[float] = Field(None, gt=0, description="Defaults to the active multiplier")


class EdgeCostResponse(BaseModel):
    cost_hours: float
