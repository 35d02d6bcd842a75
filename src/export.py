"""Flatten history snapshots into a fixed-column CSV report."""

from __future__ import annotations

from typing import Any

import pandas as pd

from src.params import LINES, Line


CSV_BOM = "\ufeff"

LINE_EXPORT_LABELS = {
    Line.WUCHUANG: "Wuchuang",
    Line.GEREN: "Geren",
    Line.SIFA: "Sifa",
}

SUMMARY_COLUMNS = [
    "Snapshot Time",
    "Avg Cost per Lead",
    "Total Daily Leads",
    "Total Revenue",
    "Total Promo Cost",
    "Total Labor Cost",
    "Total Variable Cost",
    "Total Gross Profit",
    "Total ROI",
]

LINE_COLUMN_SUFFIXES = ["Daily Leads", "Conv Rate", "Derived Cost", "Revenue", "Gross Profit"]

HISTORY_EXPORT_COLUMNS = SUMMARY_COLUMNS + [
    f"{LINE_EXPORT_LABELS[line]} {suffix}" for line in LINES for suffix in LINE_COLUMN_SUFFIXES
]


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, float)):
        return f"{float(value):.2f}"
    if value is None or value == "":
        return "0"
    return str(value)


def _get(record: dict, *path: str) -> Any:
    node: Any = record
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _line_daily_leads(inputs: dict, line: Line) -> float | None:
    total = _get(inputs, "total_daily_leads")
    ratio = _get(inputs, "categories", line.value, "lead_ratio")
    try:
        return float(total) * float(ratio)
    except (TypeError, ValueError):
        return None


def history_row(entry: dict) -> dict[str, str]:
    res = entry.get("result_snapshot") or {}
    inp = entry.get("inputs_snapshot") or {}
    row = {
        "Snapshot Time": _fmt(entry.get("timestamp")),
        "Avg Cost per Lead": _fmt(entry.get("avg_cost_per_lead")),
        "Total Daily Leads": _fmt(entry.get("total_daily_leads")),
        "Total Revenue": _fmt(_get(res, "total", "revenue")),
        "Total Promo Cost": _fmt(_get(res, "total", "promo_cost")),
        "Total Labor Cost": _fmt(_get(res, "total", "labor_cost")),
        "Total Variable Cost": _fmt(_get(res, "total", "other_costs")),
        "Total Gross Profit": _fmt(_get(res, "total", "gross_profit")),
        "Total ROI": _fmt(_get(res, "total", "roi")),
    }
    for line in LINES:
        label = LINE_EXPORT_LABELS[line]
        row[f"{label} Daily Leads"] = _fmt(_line_daily_leads(inp, line))
        row[f"{label} Conv Rate"] = _fmt(_get(inp, "categories", line.value, "conv_rate"))
        row[f"{label} Derived Cost"] = _fmt(entry.get(f"{line.value}_cost"))
        row[f"{label} Revenue"] = _fmt(_get(res, line.value, "revenue"))
        row[f"{label} Gross Profit"] = _fmt(_get(res, line.value, "gross_profit"))
    return row


def history_frame(history: list[dict]) -> pd.DataFrame:
    return pd.DataFrame([history_row(entry) for entry in history], columns=HISTORY_EXPORT_COLUMNS)


def history_csv(history: list[dict]) -> str:
    """CSV text (UTF-8 BOM prefixed) with one row per history entry."""
    return CSV_BOM + history_frame(history).to_csv(index=False, lineterminator="\n")


def export_file_name(now_ms: int) -> str:
    return f"profit_model_history_{int(now_ms)}.csv"
