"""
Tests for Barn.json loading.
"""

import json
import os

import pytest

from blanket_watch.config import (
    DEFAULT_LAT,
    DEFAULT_LON,
    ConfigError,
    load_barn_config,
)


def write_config(tmp_path, payload):
    path = tmp_path / "Barn.json"
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
    return str(path)


class TestLoadBarnConfig:
    def test_missing_optional_file_gives_defaults(self, tmp_path):
        config, err = load_barn_config(str(tmp_path / "Barn.json"))

        assert err == ConfigError.SUCCESS
        assert (config["lat"], config["lon"]) == (DEFAULT_LAT, DEFAULT_LON)
        assert config["timezone"] == "auto"
        assert config["refresh_minutes"] == 30
        assert config["cache"]["prefix"] == "roo-static"

    def test_missing_required_file(self, tmp_path):
        config, err = load_barn_config(str(tmp_path / "Barn.json"), required=True)

        assert config is None
        assert err == ConfigError.FILE_NOT_FOUND

    def test_invalid_json(self, tmp_path):
        config, err = load_barn_config(write_config(tmp_path, "{barn:"))

        assert config is None
        assert err == ConfigError.INVALID_JSON

    @pytest.mark.parametrize("barn", [{"lat": 91}, {"lon": -200}, {"lat": "north"}])
    def test_invalid_location(self, tmp_path, barn):
        _, err = load_barn_config(write_config(tmp_path, {"barn": barn}))
        assert err == ConfigError.INVALID_LOCATION

    @pytest.mark.parametrize("barn", ["Home Barn", [37.7, -79.4], 5])
    def test_barn_must_be_an_object(self, tmp_path, barn):
        config, err = load_barn_config(write_config(tmp_path, {"barn": barn}))

        assert config is None
        assert err == ConfigError.INVALID_LOCATION

    def test_bad_refresh_minutes(self, tmp_path):
        _, err = load_barn_config(write_config(tmp_path, {"refresh_minutes": "soon"}))
        assert err == ConfigError.GENERAL_ERROR

    def test_values_are_read(self, tmp_path):
        path = write_config(tmp_path, {
            "barn": {"name": "Hill Barn", "lat": 44.5, "lon": -72.1},
            "timezone": "America/New_York",
            "data_file": "horse.json",
            "refresh_minutes": 15,
            "cache": {"version": "3"},
        })
        config, err = load_barn_config(path)

        assert err == ConfigError.SUCCESS
        assert config["barn_name"] == "Hill Barn"
        assert (config["lat"], config["lon"]) == (44.5, -72.1)
        assert config["timezone"] == "America/New_York"
        assert config["refresh_minutes"] == 15
        assert config["data_file"] == os.path.join(str(tmp_path), "horse.json")
        assert config["cache"]["version"] == 3
        assert config["cache"]["prefix"] == "roo-static"
