from __future__ import annotations

from typing import Any, Optional

import httpx

WEATHER_API_URL = "https://api.weatherapi.com/v1/forecast.json"
FORECAST_DAYS = 3


class WeatherError(Exception):
	pass


def _summarize(data: dict[str, Any]) -> dict[str, Any]:
	current = data["current"]
	days = data.get("forecast", {}).get("forecastday", [])
	return {
		"current": {
			"temp_f": current.get("temp_f"),
			"feels_like_f": current.get("feelslike_f"),
			"condition": current.get("condition", {}).get("text"),
			"wind_mph": current.get("wind_mph"),
			"wind_dir": current.get("wind_dir"),
			"humidity": current.get("humidity"),
			"precip_in": current.get("precip_in"),
			"last_updated": current.get("last_updated"),
		},
		"forecast": [
			{
				"date": day.get("date"),
				"max_temp_f": day["day"].get("maxtemp_f"),
				"min_temp_f": day["day"].get("mintemp_f"),
				"condition": day["day"].get("condition", {}).get("text"),
				"chance_of_rain": day["day"].get("daily_chance_of_rain"),
				"total_precip_in": day["day"].get("totalprecip_in"),
				"max_wind_mph": day["day"].get("maxwind_mph"),
			}
			for day in days
		],
	}


def get_weather(
	location: str,
	api_key: Optional[str],
	transport: Optional[httpx.BaseTransport] = None,
) -> dict[str, Any]:
	"""Current conditions plus a short daily forecast for a location."""
	if not api_key:
		raise WeatherError("WEATHER_API_KEY is not configured")
	if not location or not location.strip():
		raise WeatherError("A location is required")
	params = {"key": api_key, "q": location.strip(), "days": FORECAST_DAYS, "aqi": "no"}
	with httpx.Client(timeout=10, transport=transport) as client:
		resp = client.get(WEATHER_API_URL, params=params)
	if not resp.is_success:
		raise WeatherError(f"Weather API request failed with status {resp.status_code}")
	return _summarize(resp.json())
