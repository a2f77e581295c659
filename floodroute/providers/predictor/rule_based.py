"""
Rule-based flood predictor.

Estimates flood probability from elevation and current weather: a base risk
per elevation band, scaled by a weather multiplier and by recent rainfall.
Flood depth is derived from the same elevation bands.
"""

import logging
from typing import Sequence

from floodroute.providers.base import HazardPredictor
from floodroute.providers.models import HazardPrediction
from floodroute.providers.predictor.weather import weather_multiplier

logger = logging.getLogger(__name__)

# (upper elevation bound in metres, base probability)
ELEVATION_BANDS = (
    (5.0, 0.35),
    (10.0, 0.25),
    (20.0, 0.15),
    (50.0, 0.08),
    (100.0, 0.03),
)
HIGH_GROUND_RISK = 0.01


def base_risk(elevation_m: float) -> float:
    for upper, risk in ELEVATION_BANDS:
        if elevation_m < upper:
            return risk
    return HIGH_GROUND_RISK


def depth_factor(elevation_m: float) -> float:
    """Metres of water per unit of probability."""
    if elevation_m < 5:
        return 1.0
    if elevation_m < 10:
        return 0.6
    return 0.3


class RuleBasedHazardPredictor(HazardPredictor):
    """
    Predictor using only the elevation feature and the configured weather.

    Args:
        weather_condition: Condition name (see ``weather.WEATHER_MULTIPLIERS``)
        rainfall_mm: Rainfall over the last 24 hours
    """

    def __init__(self, weather_condition: str = "clear", rainfall_mm: float = 0.0):
        self.weather_condition = weather_condition
        self.rainfall_mm = rainfall_mm

    def update_weather(self, weather_condition: str, rainfall_mm: float = 0.0) -> None:
        logger.info(f"Weather updated: {weather_condition}, {rainfall_mm} mm")
        self.weather_condition = weather_condition
        self.rainfall_mm = rainfall_mm

    async def predict(self, features: Sequence[float]) -> HazardPrediction:
        elevation = features[0]
        rain_factor = 1.0 + self.rainfall_mm / 100.0
        probability = base_risk(elevation) * weather_multiplier(self.weather_condition) * rain_factor
        probability = min(max(probability, 0.0), 1.0)
        return HazardPrediction(
            probability=probability,
            magnitude=probability * depth_factor(elevation),
        )
