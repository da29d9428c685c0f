"""JSON-backed storage for blankets, combos, rules and the last forecast."""

import json
import os
from typing import Any, Iterable, List, Optional

from blanket_watch.log_util import app_logger
from blanket_watch.models import (
    Blanket,
    Combo,
    Condition,
    Dataset,
    LastForecast,
    Rule,
    new_id,
)

logger = app_logger(__name__)


class StoreError(Exception):
    """Raised for rejected imports and edits that reference unknown items."""


def _valid_id(value: Any) -> str:
    return value if isinstance(value, str) and value else new_id()


def sanitize_imported_data(raw: Any) -> Dataset:
    """
    Turn arbitrary decoded JSON into a clean Dataset.

    Missing arrays default to empty, non-object entries are dropped, missing
    or non-string ids are regenerated, blank names get a placeholder and a
    non-string defaultComboId is cleared. References are not checked.

    Raises:
        StoreError: If raw is not a JSON object
    """
    if not isinstance(raw, dict):
        raise StoreError("Invalid JSON object.")

    def entries(key: str) -> List[dict]:
        items = raw.get(key)
        return [x for x in items if isinstance(x, dict)] if isinstance(items, list) else []

    blankets = [
        Blanket(
            id=_valid_id(b.get("id")),
            name=str(b.get("name") or "").strip() or "Untitled blanket",
            notes=str(b.get("notes") or ""),
        )
        for b in entries("blankets")
    ]

    combos = [
        Combo(
            id=_valid_id(c.get("id")),
            name=str(c.get("name") or "").strip() or "Untitled combo",
            blanket_ids=[
                bid for bid in c.get("blanketIds", []) if isinstance(bid, str)
            ] if isinstance(c.get("blanketIds"), list) else [],
        )
        for c in entries("combos")
    ]

    rules = []
    for r in entries("rules"):
        conditions = r.get("conditions") if isinstance(r.get("conditions"), list) else []
        rules.append(Rule(
            id=_valid_id(r.get("id")),
            name=str(r.get("name") or ""),
            combo_id=r["comboId"] if isinstance(r.get("comboId"), str) else "",
            conditions=[
                Condition(field=str(c.get("field") or ""), op=str(c.get("op") or ""), value=c.get("value"))
                for c in conditions if isinstance(c, dict)
            ],
        ))

    default_combo_id = raw.get("defaultComboId")
    return Dataset(
        blankets=blankets,
        combos=combos,
        rules=rules,
        default_combo_id=default_combo_id if isinstance(default_combo_id, str) else "",
        last_forecast=LastForecast.from_dict(raw.get("lastForecast")),
    )


def load_data(file_path: str) -> Dataset:
    """Read the data file; a missing or malformed file yields an empty dataset."""
    if not os.path.exists(file_path):
        return Dataset()
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return sanitize_imported_data(raw)
    except (OSError, ValueError, StoreError) as e:
        logger.warning("Ignoring unreadable data file %s: %s", file_path, e)
        return Dataset()


def save_data(file_path: str, data: Dataset):
    """Write the dataset atomically (temp file, then rename)."""
    folder = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(folder, exist_ok=True)
    tmp_path = f"{file_path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data.to_dict(), f)
    os.replace(tmp_path, file_path)


def export_json(data: Dataset) -> str:
    return json.dumps(data.to_dict(), indent=2)


def parse_import_text(text: str) -> Dataset:
    """
    Decode backup text and sanitize it.

    Raises:
        StoreError: Invalid JSON or a non-object root
    """
    try:
        raw = json.loads(text)
    except ValueError as e:
        raise StoreError("Invalid JSON.") from e
    return sanitize_imported_data(raw)


class BlanketStore:
    """
    The dataset plus its file. Every mutation saves immediately.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self.data = load_data(file_path)

    def save(self):
        save_data(self.file_path, self.data)

    # ---- Blankets ----
    def add_blanket(self, name: str, notes: str = "") -> Blanket:
        name = name.strip()
        if not name:
            raise StoreError("Blanket name is required.")
        blanket = Blanket(id=new_id(), name=name, notes=notes)
        self.data.blankets.append(blanket)
        self.save()
        return blanket

    def edit_blanket(self, blanket_id: str, name: Optional[str] = None, notes: Optional[str] = None) -> Blanket:
        blanket = self._require(self.data.blanket(blanket_id), "blanket", blanket_id)
        if name is not None:
            if not name.strip():
                raise StoreError("Blanket name is required.")
            blanket.name = name.strip()
        if notes is not None:
            blanket.notes = notes
        self.save()
        return blanket

    def delete_blanket(self, blanket_id: str) -> Blanket:
        """Remove a blanket and drop it from every combo (combos are kept)."""
        blanket = self._require(self.data.blanket(blanket_id), "blanket", blanket_id)
        self.data.blankets = [b for b in self.data.blankets if b.id != blanket_id]
        for combo in self.data.combos:
            combo.blanket_ids = [bid for bid in combo.blanket_ids if bid != blanket_id]
        self.save()
        return blanket

    # ---- Combos ----
    def add_combo(self, name: str, blanket_ids: Iterable[str] = ()) -> Combo:
        name = name.strip()
        if not name:
            raise StoreError("Combo name is required.")
        combo = Combo(id=new_id(), name=name, blanket_ids=list(blanket_ids))
        self.data.combos.append(combo)
        self.save()
        return combo

    def edit_combo(self, combo_id: str, name: Optional[str] = None, blanket_ids: Optional[Iterable[str]] = None) -> Combo:
        combo = self._require(self.data.combo(combo_id), "combo", combo_id)
        if name is not None:
            if not name.strip():
                raise StoreError("Combo name is required.")
            combo.name = name.strip()
        if blanket_ids is not None:
            combo.blanket_ids = list(blanket_ids)
        self.save()
        return combo

    def delete_combo(self, combo_id: str) -> Combo:
        """Remove a combo; rules and the default that pointed at it are cleared."""
        combo = self._require(self.data.combo(combo_id), "combo", combo_id)
        self.data.combos = [c for c in self.data.combos if c.id != combo_id]
        if self.data.default_combo_id == combo_id:
            self.data.default_combo_id = ""
        for rule in self.data.rules:
            if rule.combo_id == combo_id:
                rule.combo_id = ""
        self.save()
        return combo

    def set_default_combo(self, combo_id: str):
        """Set (or clear, with an empty id) the fallback combo."""
        if combo_id:
            self._require(self.data.combo(combo_id), "combo", combo_id)
        self.data.default_combo_id = combo_id
        self.save()

    # ---- Rules ----
    def add_rule(self, combo_id: str, conditions: Iterable[Condition] = (), name: str = "") -> Rule:
        if not combo_id:
            raise StoreError("A rule needs a combo.")
        self._require(self.data.combo(combo_id), "combo", combo_id)
        rule = Rule(id=new_id(), name=name, combo_id=combo_id, conditions=list(conditions))
        self.data.rules.append(rule)
        self.save()
        return rule

    def edit_rule(
        self,
        rule_id: str,
        combo_id: Optional[str] = None,
        conditions: Optional[Iterable[Condition]] = None,
        name: Optional[str] = None,
    ) -> Rule:
        rule = self._require(self.data.rule(rule_id), "rule", rule_id)
        if combo_id is not None:
            self._require(self.data.combo(combo_id), "combo", combo_id)
            rule.combo_id = combo_id
        if conditions is not None:
            rule.conditions = list(conditions)
        if name is not None:
            rule.name = name
        self.save()
        return rule

    def delete_rule(self, rule_id: str) -> Rule:
        rule = self._require(self.data.rule(rule_id), "rule", rule_id)
        self.data.rules = [r for r in self.data.rules if r.id != rule_id]
        self.save()
        return rule

    def move_rule(self, index: int, delta: int) -> bool:
        """Swap the rule at index with its neighbour; out-of-range moves are ignored."""
        target = index + delta
        if not 0 <= index < len(self.data.rules) or not 0 <= target < len(self.data.rules):
            return False
        rules = list(self.data.rules)
        rules[index], rules[target] = rules[target], rules[index]
        self.data.rules = rules
        self.save()
        return True

    # ---- Forecast snapshot & backup ----
    def set_last_forecast(self, forecast: LastForecast):
        self.data.last_forecast = forecast
        self.save()

    def import_data(self, data: Dataset):
        """Replace everything with an already sanitized dataset."""
        self.data = data
        self.save()

    def export_data(self) -> str:
        return export_json(self.data)

    @staticmethod
    def _require(item, kind: str, item_id: str):
        if item is None:
            raise StoreError(f"No {kind} with id {item_id!r}.")
        return item
