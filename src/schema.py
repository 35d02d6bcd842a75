"""Stored-configuration schema helpers, constants, and migration utilities."""

from __future__ import annotations

import re
from copy import deepcopy
from typing import Any

from src.defaults import DEFAULTS
from src.model import round_half_up
from src.params import Line


SCHEMA_VERSION = 1
CONFIG_TYPE = "config"
HISTORY_TYPE = "history"

NESTED_SECTIONS = ("presales", "management", "cost_ratio")

# Processing fee per deal as (slope, intercept) on unit price.
PROCESS_COST_RULES = {
    Line.WUCHUANG: (0.08, 30.0),
    Line.GEREN: (0.03, 30.0),
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _looks_camel_case(payload: dict) -> bool:
    return any(isinstance(k, str) and k != k.lower() for k in payload.keys())


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {camel_to_snake(str(k)): _snake_keys(v) for k, v in value.items()}
    return value


def linked_process_cost(line: Line, unit_price: float, current: float) -> float:
    """Processing fee implied by a unit price; the break-even line keeps its configured fee."""
    rule = PROCESS_COST_RULES.get(line)
    if rule is None:
        return float(current)
    slope, intercept = rule
    return round_half_up(float(unit_price) * slope + intercept, 2)


def rebalance_sifa_ratio(assumptions: dict) -> dict:
    """Return a copy with the break-even line's lead ratio set to the remainder of the other two."""
    out = deepcopy(assumptions)
    cats = out["categories"]
    remainder = 1 - float(cats["wuchuang"]["lead_ratio"]) - float(cats["geren"]["lead_ratio"])
    cats["sifa"]["lead_ratio"] = max(0.0, round(remainder * 10000) / 10000)
    return out


def apply_category_edit(assumptions: dict, line: Line, field: str, value: float) -> dict:
    """Apply one category field edit with the linked-field rules the editor enforces."""
    out = deepcopy(assumptions)
    out["categories"][line.value][field] = float(value)
    if field == "lead_ratio" and line in (Line.WUCHUANG, Line.GEREN):
        out = rebalance_sifa_ratio(out)
    if field == "unit_price":
        cat = out["categories"][line.value]
        cat["process_cost"] = linked_process_cost(line, float(value), cat.get("process_cost", 0.0))
    return out


def _coerce_number(value: Any, default: Any, path: str, warnings: list[str]) -> float:
    if isinstance(value, bool):
        warnings.append(f"{path} invalid and reset to default.")
        return float(default)
    try:
        return float(value)
    except (TypeError, ValueError):
        warnings.append(f"{path} invalid and reset to default.")
        return float(default)


def _merge_section(
    target: dict,
    incoming: Any,
    path: str,
    warnings: list[str],
    unknown_keys: list[str],
) -> None:
    if incoming is None:
        return
    if not isinstance(incoming, dict):
        warnings.append(f"{path} ignored because it is not an object.")
        return
    for k, v in incoming.items():
        key_path = f"{path}.{k}"
        if k not in target:
            unknown_keys.append(key_path)
            continue
        default = target[k]
        if k == "sifa_manual_cost":
            if v is None or (isinstance(v, str) and not v.strip()):
                target[k] = None
                continue
            try:
                target[k] = float(v)
            except (TypeError, ValueError):
                target[k] = None
                warnings.append(f"{key_path} invalid; reverted to the break-even recommendation.")
        elif k == "name":
            target[k] = str(v)
        else:
            target[k] = _coerce_number(v, default, key_path, warnings)


def migrate_assumptions(raw_inputs: Any) -> tuple[dict, list[str], list[str]]:
    """Merge incoming assumptions onto defaults and sanitize every numeric field."""
    warnings: list[str] = []
    unknown_keys: list[str] = []
    inputs = deepcopy(DEFAULTS)
    payload = raw_inputs if isinstance(raw_inputs, dict) else {}
    if raw_inputs is not None and not isinstance(raw_inputs, dict):
        warnings.append("Assumptions payload is not an object; defaults used.")

    if _looks_camel_case(payload):
        payload = _snake_keys(payload)
        warnings.append("Migrated legacy camelCase configuration keys.")

    for k, v in payload.items():
        if k in NESTED_SECTIONS:
            _merge_section(inputs[k], v, k, warnings, unknown_keys)
        elif k == "categories":
            if not isinstance(v, dict):
                warnings.append("categories ignored because it is not an object.")
                continue
            for cat_key, cat_value in v.items():
                if cat_key not in inputs["categories"]:
                    unknown_keys.append(f"categories.{cat_key}")
                    continue
                _merge_section(inputs["categories"][cat_key], cat_value, f"categories.{cat_key}", warnings, unknown_keys)
        elif k in inputs:
            inputs[k] = _coerce_number(v, DEFAULTS[k], k, warnings)
        else:
            unknown_keys.append(k)

    return inputs, warnings, sorted(unknown_keys)


def migrate_import_payload(payload: Any) -> tuple[dict, list[str], list[str]]:
    """Parse a stored config bundle (or bare assumptions) into migrated assumptions."""
    if not isinstance(payload, dict):
        return deepcopy(DEFAULTS), ["Import payload is not a JSON object."], []

    if payload.get("type") == CONFIG_TYPE:
        assumptions, warnings, unknown = migrate_assumptions(payload.get("assumptions", {}))
        version = payload.get("schema_version")
        if version != SCHEMA_VERSION:
            warnings.append(f"Imported schema_version={version}; migrated to schema_version={SCHEMA_VERSION}.")
        return assumptions, warnings, unknown

    assumptions, warnings, unknown = migrate_assumptions(payload)
    warnings.append("Imported assumption JSON without bundle metadata.")
    return assumptions, warnings, unknown
