import json
import os
from typing import Tuple, Dict, Optional

from blanket_watch.log_util import app_logger

logger = app_logger(__name__)

# The barn the tool was first written for.
DEFAULT_LAT = 37.784
DEFAULT_LON = -79.443

DEFAULT_CONFIG_NAME = "Barn.json"
DEFAULT_DATA_FILE = "blanket_watch_data.json"
DEFAULT_REFRESH_MINUTES = 30

DEFAULT_CACHE = {
    "dir": ".blanket_watch_cache",
    "prefix": "roo-static",
    "version": 1,
    "origin": "http://localhost:8000",
}


# Error codes and custom exception
class ConfigError(Exception):
    """Custom exception class for configuration errors"""
    SUCCESS = 0
    FILE_NOT_FOUND = 1
    INVALID_JSON = 2
    INVALID_LOCATION = 3
    GENERAL_ERROR = 5

    def __init__(self, message: str, code: int):
        super().__init__(message)
        self.code = code


ERROR_MESSAGES = {
    ConfigError.FILE_NOT_FOUND: "Error: Configuration file not found",
    ConfigError.INVALID_JSON: "Error: Configuration file is not valid JSON",
    ConfigError.INVALID_LOCATION: "Error: Invalid barn latitude/longitude",
    ConfigError.GENERAL_ERROR: "Error: Failed to process configuration",
}


def default_config() -> Dict:
    """Configuration used when no Barn.json is present."""
    return {
        "barn_name": "Barn",
        "lat": DEFAULT_LAT,
        "lon": DEFAULT_LON,
        "timezone": "auto",
        "data_file": DEFAULT_DATA_FILE,
        "refresh_minutes": DEFAULT_REFRESH_MINUTES,
        "cache": dict(DEFAULT_CACHE),
    }


def _parse_location(barn: dict) -> Tuple[float, float]:
    """
    Read and range-check the barn coordinates.

    Args:
        barn (dict): The "barn" block of the config file. Missing
            coordinates fall back to the default barn.

    Returns:
        Tuple[float, float]: (lat, lon)

    Raises:
        ValueError: If a coordinate is not a number or out of range
    """
    lat = float(barn.get("lat", DEFAULT_LAT))
    lon = float(barn.get("lon", DEFAULT_LON))
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"latitude must be within [-90, 90], got: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"longitude must be within [-180, 180], got: {lon}")
    return lat, lon


def load_barn_config(file_path: Optional[str] = None, required: bool = False) -> Tuple[Optional[Dict], int]:
    """
    Load Barn.json and merge it over the defaults.

    Args:
        file_path (str): Path to the configuration file. Defaults to
            Barn.json in the current working directory.
        required (bool): When False a missing file yields the defaults.

    Returns:
        Tuple containing:
        - config: dict with keys barn_name, lat, lon, timezone, data_file,
          refresh_minutes, cache (None on error)
        - error_code: int indicating success (0) or specific error conditions
            - 0: Success
            - 1: File not found
            - 2: Invalid JSON
            - 3: Invalid location
            - 5: General error
    """
    path = file_path or os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)
    config = default_config()

    # --- 1) Read JSON file into a Python dict ---
    if not os.path.exists(path):
        if required:
            logger.error("Config file not found: %s", path)
            return None, ConfigError.FILE_NOT_FOUND
        logger.info("No config at %s; using defaults", path)
        return config, ConfigError.SUCCESS

    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in %s: %s", path, e)
        return None, ConfigError.INVALID_JSON

    if not isinstance(cfg, dict):
        logger.error("Config root in %s must be an object", path)
        return None, ConfigError.INVALID_JSON

    # --- 2) Barn location ---
    barn = cfg.get("barn") or {}
    if not isinstance(barn, dict):
        logger.error("\"barn\" in %s must be an object", path)
        return None, ConfigError.INVALID_LOCATION
    try:
        config["lat"], config["lon"] = _parse_location(barn)
    except (TypeError, ValueError) as e:
        logger.error("Invalid barn location in %s: %s", path, e)
        return None, ConfigError.INVALID_LOCATION
    config["barn_name"] = str(barn.get("name") or config["barn_name"])

    # --- 3) Top-level values ---
    try:
        config["timezone"] = str(cfg.get("timezone") or "auto")
        config["refresh_minutes"] = max(1, int(cfg.get("refresh_minutes", DEFAULT_REFRESH_MINUTES)))
        data_file = cfg.get("data_file") or DEFAULT_DATA_FILE
        # Relative data paths are resolved next to the config file.
        if not os.path.isabs(data_file):
            data_file = os.path.join(os.path.dirname(os.path.abspath(path)), data_file)
        config["data_file"] = data_file

        cache = dict(DEFAULT_CACHE)
        cache.update(cfg.get("cache") or {})
        cache["version"] = int(cache["version"])
        config["cache"] = cache
    except (TypeError, ValueError) as e:
        logger.error("Failed to process config %s: %s", path, e)
        return None, ConfigError.GENERAL_ERROR

    logger.info(
        "Loaded config for %s (%.3f, %.3f) tz=%s",
        config["barn_name"], config["lat"], config["lon"], config["timezone"],
    )
    return config, ConfigError.SUCCESS
