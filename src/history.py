"""Append-only snapshot history of evaluated configurations."""

from __future__ import annotations

import math
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from src.model import ProfitResult
from src.params import Line


SCALAR_FIELDS = (
    "avg_cost_per_lead",
    "total_daily_leads",
    "monthly_promo",
    "total_revenue",
    "total_gross_profit",
    "total_roi",
    "wuchuang_cost",
    "geren_cost",
    "sifa_cost",
)


def new_entry_id() -> str:
    return f"H-{uuid4().hex[:10].upper()}"


def _as_finite_float(value: Any) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return 0.0
    return out if math.isfinite(out) else 0.0


def normalize_history_entry(entry: dict) -> tuple[dict, bool]:
    """Repair a stored entry so it can be listed and exported.

    A missing or blank id gets a fresh one, a non-string timestamp is stringified,
    and scalar summary fields that are present but not finite numbers become 0.0.
    Returns the repaired copy and whether anything changed.
    """
    out = deepcopy(entry)
    if not isinstance(out.get("id"), str) or not out["id"].strip():
        out["id"] = new_entry_id()
    if "timestamp" in out and not isinstance(out["timestamp"], str):
        out["timestamp"] = "" if out["timestamp"] is None else str(out["timestamp"])
    for key in SCALAR_FIELDS:
        if key not in out:
            continue
        value = out[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            out[key] = _as_finite_float(value)
    return out, out != entry


def build_history_entry(assumptions: dict, result: ProfitResult, now: datetime | None = None) -> dict:
    """Snapshot the inputs and result together with the scalar fields shown in the history table."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    total = result.total
    return {
        "id": new_entry_id(),
        "timestamp": stamp,
        "avg_cost_per_lead": float(assumptions.get("avg_cost_per_lead", 0.0)),
        "total_daily_leads": float(assumptions.get("total_daily_leads", 0.0)),
        "monthly_promo": total.promo_cost,
        "total_revenue": total.revenue,
        "total_gross_profit": total.gross_profit,
        "total_roi": total.roi,
        "wuchuang_cost": result.line(Line.WUCHUANG).derived_cost,
        "geren_cost": result.line(Line.GEREN).derived_cost,
        "sifa_cost": result.line(Line.SIFA).derived_cost,
        "inputs_snapshot": deepcopy(assumptions),
        "result_snapshot": result.to_dict(),
    }


def append_entry(history: list[dict], entry: dict) -> list[dict]:
    return [*history, entry]


def delete_entry(history: list[dict], entry_id: str) -> list[dict]:
    return [entry for entry in history if entry.get("id") != entry_id]
