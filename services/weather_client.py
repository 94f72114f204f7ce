"""Open-Meteo forecast lookup (free, no API key)."""
from datetime import datetime

import pytz
import requests


OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"


def get_weather_forecast(latitude, longitude, timezone="UTC", session=None, timeout=10):
    """Return today's forecast summary dict, or None when the service fails."""
    if latitude is None or longitude is None:
        return None
    http = session or requests
    try:
        response = http.get(
            OPEN_METEO_URL,
            params={
                "latitude": latitude,
                "longitude": longitude,
                "current": "temperature_2m,relative_humidity_2m,weather_code,wind_speed_10m",
                "daily": "temperature_2m_max,temperature_2m_min,weather_code",
                "hourly": "temperature_2m,weather_code",
                "timezone": timezone,
                "forecast_days": 1,
            },
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError):
        return None

    current = data.get("current") or {}
    daily = data.get("daily") or {}
    hourly = data.get("hourly") or {}
    try:
        local_hour = datetime.now(pytz.timezone(timezone)).hour
    except pytz.UnknownTimeZoneError:
        local_hour = 0

    hourly_forecast = []
    times = hourly.get("time") or []
    for idx in range(local_hour, min(local_hour + 12, len(times))):
        hourly_forecast.append({
            "time": times[idx][-5:],
            "temperature": (hourly.get("temperature_2m") or [None] * len(times))[idx],
            "weatherCode": (hourly.get("weather_code") or [None] * len(times))[idx],
        })

    return {
        "temperature": current.get("temperature_2m"),
        "temperatureMax": (daily.get("temperature_2m_max") or [None])[0],
        "temperatureMin": (daily.get("temperature_2m_min") or [None])[0],
        "humidity": current.get("relative_humidity_2m"),
        "windSpeed": current.get("wind_speed_10m"),
        "weatherCode": current.get("weather_code"),
        "hourlyForecast": hourly_forecast,
    }
