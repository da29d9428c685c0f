"""
Tests for tonight-window selection, metric reduction and the Open-Meteo fetch.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from blanket_watch.url_builder import build_open_meteo_url
from blanket_watch.weather import (
    WeatherError,
    WindowEmptyError,
    compute_tonight_metrics,
    fetch_open_meteo,
    fetch_tonight_metrics,
    tonight_window,
)

BASE = datetime(2026, 10, 18, 17, 0)
WINDOW_START = datetime(2026, 10, 18, 19, 0)
WINDOW_END = datetime(2026, 10, 19, 9, 0)
HOURS = 18  # 17:00 .. 10:00 next day; indices 2..15 fall inside the window


def make_hourly(base=BASE, hours=HOURS, temp=None, feels=None, precip=None, wind=None):
    return {
        "time": [(base + timedelta(hours=i)).strftime("%Y-%m-%dT%H:%M") for i in range(hours)],
        "temperature_2m": temp if temp is not None else [50.0] * hours,
        "apparent_temperature": feels if feels is not None else [45.0] * hours,
        "precipitation_probability": precip if precip is not None else [0] * hours,
        "windspeed_10m": wind if wind is not None else [5.0] * hours,
    }


def mock_response(status=200, body=None, bad_json=False):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    if bad_json:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = body
    return r


class TestTonightWindow:
    def test_window_bounds_and_label(self):
        start, end, label = tonight_window(datetime(2026, 10, 18, 3, 30))

        assert start == WINDOW_START
        assert end == WINDOW_END
        assert label == "2026-10-18 19:00 → 2026-10-19 09:00"

    def test_window_crosses_month_end(self):
        start, end, _ = tonight_window(datetime(2026, 10, 31, 22, 15))

        assert start == datetime(2026, 10, 31, 19, 0)
        assert end == datetime(2026, 11, 1, 9, 0)


class TestComputeTonightMetrics:
    def test_min_max_only_inside_window(self):
        temps = [50.0 - i for i in range(HOURS)]           # 19:00 -> 48, 08:00 -> 35, 09:00 -> 34
        feels = [t - 5 for t in temps]
        precip = [0] * HOURS
        precip[0] = 90                                      # 17:00, outside
        precip[10] = 60
        wind = [5.0] * HOURS
        wind[3] = 12.0
        wind[16] = 40.0                                     # 09:00, window end is exclusive

        m = compute_tonight_metrics(
            make_hourly(temp=temps, feels=feels, precip=precip, wind=wind), WINDOW_START, WINDOW_END
        )

        assert m.min_temp_f == 35.0
        assert m.min_feels_f == 30.0
        assert m.max_precip_prob == 60.0
        assert m.max_wind_mph == 12.0
        assert m.wet_risk is True

    @pytest.mark.parametrize("peak,wet", [(50, True), (49, False)])
    def test_wet_risk_threshold(self, peak, wet):
        precip = [10] * HOURS
        precip[5] = peak
        m = compute_tonight_metrics(make_hourly(precip=precip), WINDOW_START, WINDOW_END)

        assert m.max_precip_prob == peak
        assert m.wet_risk is wet

    def test_no_timestamps_in_window(self):
        hourly = make_hourly(base=datetime(2026, 10, 20, 10, 0), hours=6)
        with pytest.raises(WindowEmptyError, match="No hourly data found"):
            compute_tonight_metrics(hourly, WINDOW_START, WINDOW_END)

    def test_empty_series(self):
        hourly = make_hourly(hours=0)
        with pytest.raises(WindowEmptyError):
            compute_tonight_metrics(hourly, WINDOW_START, WINDOW_END)

    def test_non_finite_readings_are_skipped(self):
        temps = [50.0] * HOURS
        temps[4] = None
        temps[5] = "cold"
        temps[6] = float("nan")
        temps[7] = 31.5
        temps[8] = float("-inf")
        m = compute_tonight_metrics(make_hourly(temp=temps), WINDOW_START, WINDOW_END)

        assert m.min_temp_f == 31.5

    def test_all_missing_column_gives_none(self):
        m = compute_tonight_metrics(
            make_hourly(precip=[None] * HOURS, wind=[None] * HOURS), WINDOW_START, WINDOW_END
        )

        assert m.max_precip_prob is None
        assert m.max_wind_mph is None
        assert m.wet_risk is False
        assert m.min_temp_f == 50.0

    def test_unparseable_times_are_skipped(self):
        hourly = make_hourly()
        hourly["time"][5] = "not a time"
        hourly["temperature_2m"][5] = -40.0
        m = compute_tonight_metrics(hourly, WINDOW_START, WINDOW_END)

        assert m.min_temp_f == 50.0

    def test_short_arrays_count_as_missing(self):
        hourly = make_hourly()
        hourly["windspeed_10m"] = [7.0, 7.0, 9.0]          # only index 2 is in the window
        m = compute_tonight_metrics(hourly, WINDOW_START, WINDOW_END)

        assert m.max_wind_mph == 9.0

    def test_wind_speed_alias(self):
        hourly = make_hourly()
        hourly["wind_speed_10m"] = hourly.pop("windspeed_10m")
        assert compute_tonight_metrics(hourly, WINDOW_START, WINDOW_END).max_wind_mph == 5.0

    def test_missing_field(self):
        hourly = make_hourly()
        del hourly["apparent_temperature"]
        with pytest.raises(WeatherError, match="missing hourly fields"):
            compute_tonight_metrics(hourly, WINDOW_START, WINDOW_END)

    def test_missing_hourly_object(self):
        with pytest.raises(WeatherError):
            compute_tonight_metrics(None, WINDOW_START, WINDOW_END)


class TestOpenMeteoUrl:
    def test_query_parameters(self):
        url = build_open_meteo_url(37.784, -79.443, "America/New_York", "2026-10-18", "2026-10-19")
        parts = urlsplit(url)
        qs = parse_qs(parts.query)

        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://api.open-meteo.com/v1/forecast"
        assert qs["latitude"] == ["37.784"]
        assert qs["longitude"] == ["-79.443"]
        assert qs["hourly"] == ["temperature_2m,apparent_temperature,precipitation_probability,windspeed_10m"]
        assert qs["temperature_unit"] == ["fahrenheit"]
        assert qs["windspeed_unit"] == ["mph"]
        assert qs["timezone"] == ["America/New_York"]
        assert qs["start_date"] == ["2026-10-18"]
        assert qs["end_date"] == ["2026-10-19"]


class TestFetchOpenMeteo:
    def test_success_returns_json(self):
        session = MagicMock()
        session.get.return_value = mock_response(body={"hourly": {}})

        assert fetch_open_meteo(1.0, 2.0, "auto", "2026-10-18", "2026-10-19", session) == {"hourly": {}}
        assert session.get.call_args.kwargs["timeout"] == 20

    def test_http_error_uses_reason(self):
        session = MagicMock()
        session.get.return_value = mock_response(400, {"error": True, "reason": "Invalid timezone"})

        with pytest.raises(WeatherError, match="Weather request failed: Invalid timezone"):
            fetch_open_meteo(1.0, 2.0, "Nowhere/Zone", "2026-10-18", "2026-10-19", session)

    def test_http_error_without_reason(self):
        session = MagicMock()
        session.get.return_value = mock_response(502, bad_json=True)

        with pytest.raises(WeatherError, match="HTTP 502"):
            fetch_open_meteo(1.0, 2.0, "auto", "2026-10-18", "2026-10-19", session)

    def test_invalid_json(self):
        session = MagicMock()
        session.get.return_value = mock_response(200, bad_json=True)

        with pytest.raises(WeatherError, match="invalid JSON"):
            fetch_open_meteo(1.0, 2.0, "auto", "2026-10-18", "2026-10-19", session)

    def test_transport_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")

        with pytest.raises(WeatherError, match="offline"):
            fetch_open_meteo(1.0, 2.0, "auto", "2026-10-18", "2026-10-19", session)


class TestFetchTonightMetrics:
    NOW = datetime(2026, 10, 18, 12, 0)

    def test_uses_requested_timezone(self):
        session = MagicMock()
        session.get.return_value = mock_response(body={"hourly": make_hourly()})

        metrics, tz, window_df, label = fetch_tonight_metrics(
            37.7, -79.4, "America/New_York", now=self.NOW, session=session
        )

        assert tz == "America/New_York"
        assert metrics.min_temp_f == 50.0
        assert len(window_df) == 14
        assert label.startswith("2026-10-18 19:00")
        qs = parse_qs(urlsplit(session.get.call_args.args[0]).query)
        assert qs["start_date"] == ["2026-10-18"]
        assert qs["end_date"] == ["2026-10-19"]

    def test_falls_back_to_auto_timezone(self):
        session = MagicMock()
        session.get.side_effect = [
            mock_response(400, {"reason": "Invalid timezone"}),
            mock_response(body={"timezone": "America/New_York", "hourly": make_hourly()}),
        ]

        metrics, tz, _, _ = fetch_tonight_metrics(37.7, -79.4, "Bad/Zone", now=self.NOW, session=session)

        assert tz == "auto"
        assert metrics.max_wind_mph == 5.0
        second_url = session.get.call_args_list[1].args[0]
        assert parse_qs(urlsplit(second_url).query)["timezone"] == ["auto"]

    def test_auto_failure_is_not_retried(self):
        session = MagicMock()
        session.get.return_value = mock_response(500, {"reason": "down"})

        with pytest.raises(WeatherError, match="down"):
            fetch_tonight_metrics(37.7, -79.4, "auto", now=self.NOW, session=session)
        assert session.get.call_count == 1

    def test_empty_window_after_fallback_raises(self):
        session = MagicMock()
        session.get.return_value = mock_response(
            body={"hourly": make_hourly(base=datetime(2026, 10, 25, 0, 0), hours=4)}
        )

        with pytest.raises(WindowEmptyError):
            fetch_tonight_metrics(37.7, -79.4, "America/New_York", now=self.NOW, session=session)
        assert session.get.call_count == 2

    def test_auto_covers_window_when_host_date_differs(self):
        # Host clock in UTC is already past midnight; the barn is at 21:00 the day before.
        clocks = {"auto": datetime(2026, 10, 19, 1, 0), "America/New_York": datetime(2026, 10, 18, 21, 0)}
        temps = [50.0] * HOURS
        temps[3] = 10.0                                     # 2026-10-18 20:00 barn time
        session = MagicMock()
        session.get.return_value = mock_response(
            body={"timezone": "America/New_York", "hourly": make_hourly(temp=temps)}
        )

        with patch("blanket_watch.weather._now_in", side_effect=lambda tz: clocks.get(tz, clocks["auto"])):
            metrics, tz, window_df, label = fetch_tonight_metrics(37.7, -79.4, "auto", session=session)

        assert tz == "auto"
        assert label == "2026-10-18 19:00 → 2026-10-19 09:00"
        assert len(window_df) == 14
        assert metrics.min_temp_f == 10.0
        qs = parse_qs(urlsplit(session.get.call_args.args[0]).query)
        assert qs["start_date"] == ["2026-10-18"]
        assert qs["end_date"] == ["2026-10-21"]
