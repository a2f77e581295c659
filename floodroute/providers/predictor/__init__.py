"""
Hazard predictors and weather adjustments.
"""
from floodroute.providers.predictor.rule_based import RuleBasedHazardPredictor
from floodroute.providers.predictor.weather import (
    rain_multiplier_from_precipitation,
    weather_condition_from_code,
    weather_multiplier,
)

__all__ = [
    "RuleBasedHazardPredictor",
    "rain_multiplier_from_precipitation",
    "weather_condition_from_code",
    "weather_multiplier",
]
