"""
Blanket Watch Package
Recommends an overnight blanket combination for a horse from the forecast and user-defined rules.
"""

from .url_builder import build_open_meteo_url
from .config import load_barn_config
from .weather import compute_tonight_metrics, fetch_tonight_metrics, tonight_window
from .rules import pick_recommendation, rule_matches
from .store import BlanketStore, sanitize_imported_data

__all__ = [
    'build_open_meteo_url',
    'load_barn_config',
    'compute_tonight_metrics',
    'fetch_tonight_metrics',
    'tonight_window',
    'pick_recommendation',
    'rule_matches',
    'BlanketStore',
    'sanitize_imported_data',
]
