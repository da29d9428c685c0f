"""Weather forecast module for fetching the tonight window and reducing it to metrics."""

from datetime import datetime, timedelta
from typing import Tuple, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np
import pandas as pd
import requests

from blanket_watch.log_util import app_logger
from blanket_watch.models import Metrics, is_finite_number
from blanket_watch.url_builder import build_open_meteo_url

logger = app_logger(__name__)

WINDOW_START_HOUR = 19
WINDOW_END_HOUR = 9
WET_RISK_PRECIP_PCT = 50
REQUEST_TIMEOUT_S = 20

# Open-Meteo key -> DataFrame column
HOURLY_COLUMNS = {
    "temperature_2m": "Temperature (°F)",
    "apparent_temperature": "Feels Like (°F)",
    "precipitation_probability": "Precipitation (%)",
    "windspeed_10m": "Wind Speed (mph)",
}


class WeatherError(Exception):
    """Raised when the forecast cannot be fetched or understood."""


class WindowEmptyError(WeatherError):
    """Raised when no hourly reading falls inside the tonight window."""


def _now_in(tz: Optional[str]) -> datetime:
    """Wall-clock now in the named zone (naive), or local time for 'auto'/unknown."""
    if tz and tz != "auto":
        try:
            return datetime.now(ZoneInfo(tz)).replace(tzinfo=None)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; using local time", tz)
    return datetime.now()


def tonight_window(now: Optional[datetime] = None, tz: Optional[str] = None) -> Tuple[datetime, datetime, str]:
    """
    Return the overnight window: 19:00 on now's date through 09:00 the next day.

    Args:
        now (datetime): Reference time. Defaults to the current time in tz.
        tz (str): Zone used for the default reference time.

    Returns:
        Tuple of (start, end, label)
    """
    if now is None:
        now = _now_in(tz)
    start = now.replace(hour=WINDOW_START_HOUR, minute=0, second=0, microsecond=0)
    end = (start + timedelta(days=1)).replace(hour=WINDOW_END_HOUR)
    label = f"{start:%Y-%m-%d %H:%M} → {end:%Y-%m-%d %H:%M}"
    return start, end, label


def _column(values: list, n: int) -> pd.Series:
    """Numeric column aligned to n timestamps; anything non-finite becomes NaN."""
    cleaned = [float(v) if is_finite_number(v) else np.nan for v in values[:n]]
    cleaned.extend([np.nan] * (n - len(cleaned)))
    return pd.Series(cleaned, dtype="float64")


def hourly_frame(hourly: Dict) -> pd.DataFrame:
    """
    Build a DataFrame from Open-Meteo's parallel hourly arrays.

    Raises:
        WeatherError: If any of the expected arrays is missing
    """
    if not isinstance(hourly, dict):
        raise WeatherError("Unexpected Open-Meteo response (missing hourly fields).")

    # Older responses spell it wind_speed_10m.
    wind_key = "windspeed_10m" if "windspeed_10m" in hourly else "wind_speed_10m"
    arrays = {
        "time": hourly.get("time"),
        "temperature_2m": hourly.get("temperature_2m"),
        "apparent_temperature": hourly.get("apparent_temperature"),
        "precipitation_probability": hourly.get("precipitation_probability"),
        "windspeed_10m": hourly.get(wind_key),
    }
    if not all(isinstance(v, list) for v in arrays.values()):
        raise WeatherError("Unexpected Open-Meteo response (missing hourly fields).")

    times = arrays.pop("time")
    df = pd.DataFrame({"Time": pd.to_datetime(pd.Series(times, dtype="object"), errors="coerce")})
    for key, col in HOURLY_COLUMNS.items():
        df[col] = _column(arrays[key], len(times))
    return df


def tonight_slice(df: pd.DataFrame, window_start: datetime, window_end: datetime) -> pd.DataFrame:
    """Rows with window_start <= Time < window_end; unparseable times are dropped."""
    times = df["Time"]
    start, end = pd.Timestamp(window_start), pd.Timestamp(window_end)
    if times.dt.tz is not None:
        # API-localized times; read the window as wall clock in that zone
        if start.tz is None:
            start, end = start.tz_localize(times.dt.tz), end.tz_localize(times.dt.tz)
    elif start.tz is not None:
        start, end = start.tz_localize(None), end.tz_localize(None)

    mask = times.notna() & (times >= start) & (times < end)
    return df[mask]


def metrics_from_slice(window_df: pd.DataFrame) -> Metrics:
    """
    Reduce the window to min temperatures and max precipitation/wind.

    Raises:
        WindowEmptyError: If the window has no rows
    """
    if window_df.empty:
        raise WindowEmptyError("No hourly data found for the tonight window.")

    def pick(col: str, how: str) -> Optional[float]:
        value = getattr(window_df[col], how)(skipna=True)
        return None if pd.isna(value) else float(value)

    max_precip = pick("Precipitation (%)", "max")
    return Metrics(
        min_temp_f=pick("Temperature (°F)", "min"),
        min_feels_f=pick("Feels Like (°F)", "min"),
        max_precip_prob=max_precip,
        max_wind_mph=pick("Wind Speed (mph)", "max"),
        wet_risk=max_precip is not None and max_precip >= WET_RISK_PRECIP_PCT,
    )


def compute_tonight_metrics(hourly: Dict, window_start: datetime, window_end: datetime) -> Metrics:
    """
    Reduce an hourly series to tonight's metrics.

    Args:
        hourly (dict): Open-Meteo "hourly" object of parallel arrays
        window_start (datetime): Inclusive window start
        window_end (datetime): Exclusive window end

    Returns:
        Metrics: minTempF, minFeelsF, maxPrecipProb, maxWindMph, wetRisk

    Raises:
        WeatherError: Missing hourly arrays
        WindowEmptyError: No timestamps inside the window
    """
    return metrics_from_slice(tonight_slice(hourly_frame(hourly), window_start, window_end))


def fetch_open_meteo(
    lat: float,
    lon: float,
    tz: str,
    start_date: str,
    end_date: str,
    session: Optional[requests.Session] = None,
) -> Dict:
    """
    GET the forecast and return the decoded JSON body.

    Raises:
        WeatherError: Transport failure, non-2xx status or invalid JSON
    """
    url = build_open_meteo_url(lat, lon, tz, start_date, end_date)
    logger.info("Open-Meteo URL: %s", url)

    http = session or requests
    try:
        r = http.get(url, timeout=REQUEST_TIMEOUT_S, headers={"Cache-Control": "no-store"})
    except requests.RequestException as e:
        raise WeatherError(f"Weather request failed: {e}") from e

    try:
        data = r.json()
    except ValueError:
        data = None

    if not r.ok:
        reason = data.get("reason") if isinstance(data, dict) else None
        msg = reason if isinstance(reason, str) else f"HTTP {r.status_code}"
        raise WeatherError(f"Weather request failed: {msg}")

    if not isinstance(data, dict):
        raise WeatherError("Weather request failed: invalid JSON.")
    return data


def _request_dates(start: datetime, end: datetime, tz: str) -> Tuple[str, str]:
    """
    Date range to request for the window.

    With tz=auto the window is only known in the barn's zone once the
    response names it, so one extra day is requested on each side.
    """
    if tz == "auto":
        start, end = start - timedelta(days=1), end + timedelta(days=1)
    return f"{start:%Y-%m-%d}", f"{end:%Y-%m-%d}"


def _reduce_response(data: Dict, tz: str, now: Optional[datetime]) -> Tuple[Metrics, pd.DataFrame, str]:
    # With tz=auto the API answers in the barn's zone and names it.
    zone = data.get("timezone") if tz == "auto" else tz
    start, end, label = tonight_window(now, zone if isinstance(zone, str) else None)
    window_df = tonight_slice(hourly_frame(data.get("hourly")), start, end)
    return metrics_from_slice(window_df), window_df, label


def fetch_tonight_metrics(
    lat: float,
    lon: float,
    tz: str = "auto",
    now: Optional[datetime] = None,
    session: Optional[requests.Session] = None,
) -> Tuple[Metrics, str, pd.DataFrame, str]:
    """
    Fetch and reduce the forecast for tonight.

    A failure with a concrete timezone is retried once with timezone=auto.

    Returns:
        Tuple containing:
            metrics: Metrics for the window
            timezone: the timezone the successful request used
            window_df: the hourly rows inside the window
            label: human-readable window label
    """
    start, end, _ = tonight_window(now, tz)

    try:
        data = fetch_open_meteo(lat, lon, tz, *_request_dates(start, end, tz), session)
        metrics, window_df, label = _reduce_response(data, tz, now)
        return metrics, tz, window_df, label
    except WeatherError as e:
        if tz == "auto":
            raise
        logger.warning("Forecast with tz=%s failed (%s); retrying with tz=auto", tz, e)

    data = fetch_open_meteo(lat, lon, "auto", *_request_dates(start, end, "auto"), session)
    metrics, window_df, label = _reduce_response(data, "auto", now)
    return metrics, "auto", window_df, label
