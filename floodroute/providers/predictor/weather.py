"""
Weather adjustments applied on top of hazard predictions.

Condition names follow OpenWeatherMap's groups: clear, cloudy, light_rain,
moderate_rain, heavy_rain, thunderstorm and typhoon.
"""

WEATHER_MULTIPLIERS = {
    "clear": 0.5,
    "cloudy": 0.8,
    "light_rain": 1.2,
    "moderate_rain": 1.8,
    "heavy_rain": 2.5,
    "thunderstorm": 3.0,
    "typhoon": 5.0,
}

MIN_RAIN_MULTIPLIER = 1.0
MAX_RAIN_MULTIPLIER = 3.0


def weather_multiplier(condition: str) -> float:
    """Risk multiplier for a weather condition (1.0 when unknown)."""
    return WEATHER_MULTIPLIERS.get(condition.lower(), 1.0)


def weather_condition_from_code(code: int) -> str:
    """Map an OpenWeatherMap condition code to a condition name."""
    if 200 <= code < 300:
        return "thunderstorm"
    if 300 <= code < 400:
        return "light_rain"
    if code == 500:
        return "light_rain"
    if code == 501:
        return "moderate_rain"
    if 502 <= code < 600:
        return "heavy_rain"
    if 600 <= code < 700:
        # snow is treated as rain
        return "light_rain"
    if code == 800:
        return "clear"
    return "cloudy"


def clamp_rain_multiplier(multiplier: float) -> float:
    return min(max(multiplier, MIN_RAIN_MULTIPLIER), MAX_RAIN_MULTIPLIER)


def rain_multiplier_from_precipitation(rain_24h_mm: float) -> float:
    """1 + mm/100, clamped to [1, 3]."""
    return clamp_rain_multiplier(1.0 + max(rain_24h_mm, 0.0) / 100.0)
