"""Rule evaluation: pick tonight's blanket combo from the ordered rules."""

from dataclasses import dataclass
from typing import List, Optional

from blanket_watch.models import Combo, Condition, Dataset, Metrics, Rule, is_finite_number

_COMPARE = {
    "<=": lambda left, right: left <= right,
    "<": lambda left, right: left < right,
    ">=": lambda left, right: left >= right,
    ">": lambda left, right: left > right,
}


@dataclass
class Recommendation:
    """kind is 'rule', 'default' or 'none'. combo is None for a rule whose combo is gone."""

    kind: str
    combo: Optional[Combo] = None
    rule: Optional[Rule] = None


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def condition_holds(cond: Condition, metrics: Metrics) -> bool:
    """
    Evaluate one condition. Unknown fields or operators, and non-finite
    operands, make the condition false rather than raising.
    """
    if not isinstance(cond, Condition):
        return False

    if cond.field == "wetRisk":
        if cond.op != "is":
            return False
        return bool(metrics.wet_risk) == bool(cond.value)

    compare = _COMPARE.get(cond.op)
    left = metrics.get(cond.field)
    right = _to_float(cond.value)
    if compare is None or not is_finite_number(left) or not is_finite_number(right):
        return False
    return compare(left, right)


def rule_matches(rule: Rule, metrics: Metrics) -> bool:
    """A rule matches when every condition holds; no conditions always matches."""
    if not isinstance(rule, Rule):
        return False
    return all(condition_holds(cond, metrics) for cond in rule.conditions)


def pick_recommendation(data: Dataset, metrics: Metrics) -> Recommendation:
    """
    Return the first matching rule's combo, else the default combo, else nothing.

    Args:
        data (Dataset): Rules, combos and the default combo id
        metrics (Metrics): Tonight's metrics

    Returns:
        Recommendation: kind 'rule' (combo may be None when the rule points
        at a deleted combo), 'default' or 'none'
    """
    combos_by_id = {c.id: c for c in data.combos}
    for rule in data.rules:
        if rule_matches(rule, metrics):
            return Recommendation(kind="rule", combo=combos_by_id.get(rule.combo_id), rule=rule)

    default_combo = combos_by_id.get(data.default_combo_id) if data.default_combo_id else None
    if default_combo is not None:
        return Recommendation(kind="default", combo=default_combo)
    return Recommendation(kind="none")


def describe_recommendation(data: Dataset, metrics: Optional[Metrics]) -> List[str]:
    """Lines describing the recommendation, including the empty and broken states."""
    if metrics is None:
        return ["Fetch weather to see a recommendation."]
    if not data.combos:
        return ["No combos yet. Add one with 'blanket-watch combos add'."]
    if not data.rules and not data.default_combo_id:
        return ["No rules yet. Add rules (or set a default combo)."]

    pick = pick_recommendation(data, metrics)
    if pick.kind == "none":
        return ["No rule matched.", "Set a default combo or add a catch-all rule."]

    combo = pick.combo
    if combo is None:
        return ["A matching rule selected a missing combo.", "Edit or delete the rule."]

    if pick.kind == "default":
        header = "No rule matched. Using default combo:"
    else:
        header = f"Matched: {(pick.rule.name or '').strip() or 'Rule'}"

    lines = [header, combo.name]
    if combo.blanket_ids:
        lines.extend(f"  - {data.blanket_name(bid)}" for bid in combo.blanket_ids)
    else:
        lines.append("No blankets in this combo.")
    return lines
