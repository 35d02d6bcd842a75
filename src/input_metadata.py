"""Input guidance metadata and advisory range checks."""

from __future__ import annotations

from typing import Any

from src.params import LINES


LEAD_RATIO_TOLERANCE = 1e-6

INPUT_GUIDANCE: dict[str, dict[str, Any]] = {
    "avg_cost_per_lead": {"min": 50.0, "max": 800.0, "note": "Blended paid-search cost per raw lead."},
    "total_daily_leads": {"min": 10.0, "max": 2000.0, "note": "Raw daily leads entering the funnel."},
    "presales.capacity": {"min": 60.0, "max": 400.0, "note": "Daily consultations one pre-sales agent can handle."},
    "presales.lead_rate": {"min": 0.05, "max": 1.0, "note": "Share of consultations that leave contact details."},
    "presales.salary": {"min": 3000.0, "max": 12000.0, "note": "Monthly salary per pre-sales agent."},
    "insales_salary": {"min": 3000.0, "max": 15000.0, "note": "Monthly salary per in-sales agent, shared by all lines."},
    "promo_labor_cost": {"min": 0.0, "max": 200000.0, "note": "Monthly promotion team payroll, split by lead share."},
    "management.top_managers": {"min": 0.0, "max": 10.0, "note": "Marketing-center managers shared across lines."},
    "management.top_salary": {"min": 0.0, "max": 50000.0, "note": "Monthly salary per shared manager."},
    "management.center_salary": {"min": 0.0, "max": 30000.0, "note": "Monthly salary per line department manager."},
    "cost_ratio.wuchuang": {"min": 0.5, "max": 10.0, "note": "Relative per-lead cost weight of the first line."},
    "cost_ratio.geren": {"min": 0.5, "max": 10.0, "note": "Relative per-lead cost weight of the second line."},
    "conv_rate": {"min": 0.05, "max": 0.6, "note": "Share of leads that close a deal."},
    "unit_price": {"min": 300.0, "max": 10000.0, "note": "Average revenue per closed deal."},
    "capacity": {"min": 3.0, "max": 40.0, "note": "Daily leads one in-sales agent can work."},
    "var_cost_rate": {"min": 0.0, "max": 0.2, "note": "Sales commission as a share of revenue."},
}

CATEGORY_GUIDANCE_KEYS = ("conv_rate", "unit_price", "capacity", "var_cost_rate")


def _fmt(v: float) -> str:
    if abs(v - round(v)) < 1e-9:
        return f"{int(round(v))}"
    return f"{v:.3f}".rstrip("0").rstrip(".")


def help_with_guidance(key: str, base_help: str) -> str:
    g = INPUT_GUIDANCE.get(key)
    if not g:
        return base_help
    return f"{base_help} Reasonable range: {_fmt(g['min'])} to {_fmt(g['max'])}. {g['note']}"


def _lookup(inputs: dict, path: str) -> Any:
    node: Any = inputs
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _range_warning(path: str, value: Any, guidance: dict[str, Any]) -> str | None:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if v < guidance["min"] or v > guidance["max"]:
        return f"{path}={v:.3f} is outside the recommended range [{_fmt(guidance['min'])}, {_fmt(guidance['max'])}]."
    return None


def advisory_warnings(inputs: dict) -> list[str]:
    warnings: list[str] = []
    for key, g in INPUT_GUIDANCE.items():
        if key in CATEGORY_GUIDANCE_KEYS:
            continue
        value = _lookup(inputs, key)
        if value is None:
            continue
        msg = _range_warning(key, value, g)
        if msg:
            warnings.append(msg)

    categories = inputs.get("categories", {})
    for line in LINES:
        cat = categories.get(line.value, {})
        for key in CATEGORY_GUIDANCE_KEYS:
            if key in cat:
                msg = _range_warning(f"categories.{line.value}.{key}", cat[key], INPUT_GUIDANCE[key])
                if msg:
                    warnings.append(msg)

    try:
        ratio_sum = sum(float(categories.get(line.value, {}).get("lead_ratio", 0.0)) for line in LINES)
    except (TypeError, ValueError):
        ratio_sum = None
    if ratio_sum is not None and abs(ratio_sum - 1.0) > LEAD_RATIO_TOLERANCE:
        warnings.append(f"Lead ratios sum to {ratio_sum:.4f}; the three lines should sum to 1.")

    lead_rate = _lookup(inputs, "presales.lead_rate")
    if lead_rate is not None and not (0 < float(lead_rate) <= 1):
        warnings.append("presales.lead_rate must be in (0, 1] for pre-sales staffing to be meaningful.")

    geren_weight = _lookup(inputs, "cost_ratio.geren")
    if geren_weight is not None and float(geren_weight) <= 0:
        warnings.append("cost_ratio.geren must be positive; the first line receives no derived promo cost.")
    return warnings
