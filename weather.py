"""
Weather Context - current conditions at a route's source.

Fetches current weather from the OpenWeatherMap Current Weather API
(metric units) and buckets it into a short condition label. The result
is optional context for image risk scoring: every failure is logged and
returns None so route planning never depends on it.

Data source:
  - OpenWeatherMap Current Weather Data (api.openweathermap.org/data/2.5)
"""

import logging
import time
from typing import Optional

import httpx

from models import WeatherData
from route_trace import get_trace

logger = logging.getLogger(__name__)

_API_BASE = "https://api.openweathermap.org/data/2.5/weather"
_API_TIMEOUT = 10  # seconds


# =============================================================================
# CONDITION BUCKETING
# =============================================================================

# First match wins; checked against the lower-cased OpenWeatherMap group.
_CONDITION_BUCKETS = (
    (("clear",), "Clear"),
    (("cloud",), "Cloudy"),
    (("rain", "drizzle"), "Rainy"),
    (("snow",), "Snowy"),
    (("thunderstorm",), "Thunderstorm"),
    (("mist", "fog"), "Foggy"),
    (("haze",), "Hazy"),
    (("dust", "sand"), "Dusty"),
    (("smoke",), "Smoky"),
    (("tornado",), "Tornado"),
)


def weather_condition(main: str, description: str) -> str:
    """Short condition label, e.g. "Rainy". Falls back to the description."""
    group = (main or "").lower()
    for needles, label in _CONDITION_BUCKETS:
        if any(n in group for n in needles):
            return label
    return description[:1].upper() + description[1:]


# =============================================================================
# OPENWEATHERMAP API CLIENT
# =============================================================================

def _parse(raw: dict) -> Optional[WeatherData]:
    """Build WeatherData from a current-weather payload, None if malformed."""
    try:
        main = raw["main"]
        weather = raw["weather"][0]
        return WeatherData(
            temperature=main["temp"],
            feels_like=main.get("feels_like", main["temp"]),
            description=weather.get("description", ""),
            main=weather.get("main", ""),
            icon=weather.get("icon", ""),
            humidity=main.get("humidity", 0),
            wind_speed=(raw.get("wind") or {}).get("speed", 0),
            location=raw.get("name", ""),
            timestamp=int(raw.get("dt", 0)),
            condition=weather_condition(weather.get("main", ""), weather.get("description", "")),
        )
    except (KeyError, IndexError, TypeError):
        logger.warning("Malformed OpenWeatherMap payload", exc_info=True)
        return None


async def get_current_weather(
    http: httpx.AsyncClient,
    api_key: str,
    lat: float,
    lng: float,
) -> Optional[WeatherData]:
    """Current weather at (lat, lng), or None on any failure."""
    if not api_key:
        logger.debug("OPENWEATHER_API_KEY not set, skipping weather lookup")
        return None

    trace = get_trace()
    t0 = time.time()
    params = {"lat": lat, "lon": lng, "units": "metric", "appid": api_key}

    try:
        resp = await http.get(_API_BASE, params=params, timeout=_API_TIMEOUT)
        elapsed_ms = (time.time() - t0) * 1000

        if trace:
            trace.record_api_call(
                service="openweathermap",
                endpoint="weather",
                elapsed_ms=elapsed_ms,
                status_code=resp.status_code,
                provider_status="OK" if resp.is_success else "ERROR",
            )

        if not resp.is_success:
            logger.warning(
                "OpenWeatherMap returned %d for (%.2f, %.2f)",
                resp.status_code, lat, lng,
            )
            return None

        return _parse(resp.json())

    except httpx.TimeoutException:
        logger.warning("OpenWeatherMap timed out for (%.2f, %.2f)", lat, lng)
        if trace:
            trace.record_api_call(
                service="openweathermap",
                endpoint="weather",
                elapsed_ms=(time.time() - t0) * 1000,
                status_code=0,
                provider_status="TIMEOUT",
            )
        return None
    except Exception:
        logger.warning(
            "OpenWeatherMap request failed for (%.2f, %.2f)",
            lat, lng, exc_info=True,
        )
        return None
