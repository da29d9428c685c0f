"""URL builder module for the Open-Meteo API."""

from urllib.parse import urlencode

OPEN_METEO_ENDPOINT = "https://api.open-meteo.com/v1/forecast"
HOURLY_FIELDS = "temperature_2m,apparent_temperature,precipitation_probability,windspeed_10m"


def build_open_meteo_url(lat: float, lon: float, tz: str, start_date: str, end_date: str) -> str:
    """
    Build an Open-Meteo URL covering the dates of the tonight window.
    Returns data in US units.

    Args:
        lat (float): Latitude of the barn
        lon (float): Longitude of the barn
        tz (str): Timezone string ("auto" or an IANA name)
        start_date (str): First date, YYYY-MM-DD
        end_date (str): Last date, YYYY-MM-DD

    Returns:
        str: The complete Open-Meteo API URL configured for US units
              (temperature in °F, wind speed in mph)
    """
    params = {
        "latitude": str(lat),
        "longitude": str(lon),
        "hourly": HOURLY_FIELDS,
        "temperature_unit": "fahrenheit",
        "windspeed_unit": "mph",
        "timezone": tz,
        "start_date": start_date,
        "end_date": end_date,
    }
    return f"{OPEN_METEO_ENDPOINT}?{urlencode(params)}"
