from typing import List, Optional

from blanket_watch.models import Metrics, is_finite_number

MISSING = "—"


def format_f(value) -> str:
    return f"{round(value, 1)}°F" if is_finite_number(value) else MISSING


def format_mph(value) -> str:
    return f"{round(value, 1)} mph" if is_finite_number(value) else MISSING


def format_pct(value) -> str:
    return f"{round(value)}%" if is_finite_number(value) else MISSING


def metrics_lines(metrics: Optional[Metrics]) -> List[str]:
    """
    Render the five metrics as aligned "label: value" lines.
    Every value shows as a dash when there are no metrics yet.
    """
    if metrics is None:
        values = [MISSING] * 5
    else:
        values = [
            format_f(metrics.min_temp_f),
            format_f(metrics.min_feels_f),
            format_pct(metrics.max_precip_prob),
            format_mph(metrics.max_wind_mph),
            "Yes" if metrics.wet_risk else "No",
        ]
    labels = ["Min temp", "Min feels like", "Max precip chance", "Max wind", "Wet risk"]
    return [f"{label:<18} {value}" for label, value in zip(labels, values)]
