"""Data models for blankets, combos, rules and the nightly metrics."""

import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DATA_VERSION = 1

NUMERIC_FIELDS = ("minTempF", "minFeelsF", "maxPrecipProb", "maxWindMph")
BOOLEAN_FIELDS = ("wetRisk",)
CONDITION_FIELDS = NUMERIC_FIELDS + BOOLEAN_FIELDS
NUMERIC_OPS = ("<=", "<", ">=", ">")
BOOLEAN_OP = "is"

# JSON key -> Metrics attribute
_METRIC_ATTRS = {
    "minTempF": "min_temp_f",
    "minFeelsF": "min_feels_f",
    "maxPrecipProb": "max_precip_prob",
    "maxWindMph": "max_wind_mph",
    "wetRisk": "wet_risk",
}


def new_id() -> str:
    return str(uuid.uuid4())


def is_finite_number(value: Any) -> bool:
    """True for real ints/floats that are not NaN or infinite (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass
class Blanket:
    id: str
    name: str
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "notes": self.notes}


@dataclass
class Combo:
    """A named set of blankets worn together. blanket_ids may dangle."""

    id: str
    name: str
    blanket_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "blanketIds": list(self.blanket_ids)}


@dataclass
class Condition:
    field: str
    op: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "op": self.op, "value": self.value}

    def to_text(self) -> str:
        if self.field == "wetRisk":
            return f"wetRisk is {str(bool(self.value)).lower()}"
        return f"{self.field} {self.op} {self.value}"

    @classmethod
    def parse(cls, text: str) -> "Condition":
        """
        Parse "field op value", e.g. "minFeelsF <= 40" or "wetRisk is true".

        Raises:
            ValueError: If the text does not name a known field/operator or
                the value is not a finite number
        """
        parts = text.split()
        if len(parts) != 3:
            raise ValueError(f"Condition must look like 'field op value', got: {text!r}")
        fld, op, raw = parts
        if fld == "wetRisk":
            if op != BOOLEAN_OP:
                raise ValueError("wetRisk only supports the 'is' operator")
            if raw.lower() not in ("true", "false"):
                raise ValueError(f"wetRisk value must be true or false, got: {raw!r}")
            return cls(field=fld, op=op, value=raw.lower() == "true")
        if fld not in NUMERIC_FIELDS:
            raise ValueError(f"Unknown field {fld!r}; expected one of {', '.join(CONDITION_FIELDS)}")
        if op not in NUMERIC_OPS:
            raise ValueError(f"Unknown operator {op!r}; expected one of {', '.join(NUMERIC_OPS)}")
        value = float(raw)
        if not math.isfinite(value):
            raise ValueError(f"Condition value must be finite, got: {raw!r}")
        return cls(field=fld, op=op, value=value)


@dataclass
class Rule:
    """Ordered condition set mapping matched weather to a combo."""

    id: str
    name: str = ""
    combo_id: str = ""
    conditions: List[Condition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "comboId": self.combo_id,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass
class Metrics:
    """Overnight weather reduced to the values rules are written against."""

    min_temp_f: Optional[float] = None
    min_feels_f: Optional[float] = None
    max_precip_prob: Optional[float] = None
    max_wind_mph: Optional[float] = None
    wet_risk: bool = False

    def get(self, field_name: str) -> Any:
        """Look up a metric by its JSON/rule field name; None when unknown."""
        attr = _METRIC_ATTRS.get(field_name)
        return getattr(self, attr) if attr else None

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in _METRIC_ATTRS.items()}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Metrics":
        def num(key):
            value = raw.get(key)
            return float(value) if is_finite_number(value) else None

        return cls(
            min_temp_f=num("minTempF"),
            min_feels_f=num("minFeelsF"),
            max_precip_prob=num("maxPrecipProb"),
            max_wind_mph=num("maxWindMph"),
            wet_risk=bool(raw.get("wetRisk")),
        )


@dataclass
class LastForecast:
    fetched_at_iso: str
    timezone: str
    metrics: Metrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetchedAtIso": self.fetched_at_iso,
            "timezone": self.timezone,
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["LastForecast"]:
        if not isinstance(raw, dict) or not isinstance(raw.get("metrics"), dict):
            return None
        return cls(
            fetched_at_iso=raw["fetchedAtIso"] if isinstance(raw.get("fetchedAtIso"), str) else "",
            timezone=raw["timezone"] if isinstance(raw.get("timezone"), str) else "",
            metrics=Metrics.from_dict(raw["metrics"]),
        )


@dataclass
class Dataset:
    """Everything that is persisted: the single JSON blob."""

    blankets: List[Blanket] = field(default_factory=list)
    combos: List[Combo] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)
    default_combo_id: str = ""
    last_forecast: Optional[LastForecast] = None
    version: int = DATA_VERSION

    def blanket(self, blanket_id: str) -> Optional[Blanket]:
        return next((b for b in self.blankets if b.id == blanket_id), None)

    def combo(self, combo_id: str) -> Optional[Combo]:
        return next((c for c in self.combos if c.id == combo_id), None)

    def rule(self, rule_id: str) -> Optional[Rule]:
        return next((r for r in self.rules if r.id == rule_id), None)

    def blanket_name(self, blanket_id: str) -> str:
        b = self.blanket(blanket_id)
        return b.name if b else "(missing blanket)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "blankets": [b.to_dict() for b in self.blankets],
            "combos": [c.to_dict() for c in self.combos],
            "rules": [r.to_dict() for r in self.rules],
            "defaultComboId": self.default_combo_id,
            "lastForecast": self.last_forecast.to_dict() if self.last_forecast else None,
        }
