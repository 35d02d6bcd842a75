"""Accounting identity checks over a profit snapshot."""

from __future__ import annotations

from typing import Any

import numpy as np

from src.model import ProfitResult
from src.params import LINES, Line


def _finding(check: str, max_abs_delta: float, scope: str, lhs_name: str, rhs_name: str) -> dict[str, Any]:
    return {
        "Check": check,
        "Max Abs Delta": float(max_abs_delta),
        "Scope": scope,
        "LHS": lhs_name,
        "RHS": rhs_name,
    }


def _check_identity(
    findings: list[dict[str, Any]],
    check_name: str,
    scope: str,
    lhs_name: str,
    rhs_name: str,
    lhs: float,
    rhs: float,
    tol: float,
) -> None:
    delta = abs(float(lhs) - float(rhs))
    # Scale tolerance with magnitude so large monthly totals are not flagged for rounding noise.
    allowed = float(tol) * max(1.0, abs(float(lhs)), abs(float(rhs)))
    if not np.isfinite(delta) or delta > allowed:
        findings.append(_finding(check_name, delta, scope, lhs_name, rhs_name))


def _non_finite_fields(result: ProfitResult) -> list[str]:
    bad: list[str] = []
    records = {line.value: result.line(line).to_dict() for line in LINES}
    records["total"] = result.total.to_dict()
    for scope, record in records.items():
        for key, value in record.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool) and not np.isfinite(value):
                bad.append(f"{scope}.{key}")
    return bad


def run_integrity_checks(result: ProfitResult, tol: float = 1e-9) -> list[dict[str, Any]]:
    """Return integrity findings (empty list means all checks passed)."""
    if not isinstance(result, ProfitResult):
        return [_finding("Result not available", np.nan, "", "", "")]

    findings: list[dict[str, Any]] = []
    bad_fields = _non_finite_fields(result)
    if bad_fields:
        findings.append(_finding("Finite outputs", np.nan, ", ".join(bad_fields), "all figures", "finite"))
        return findings

    lines = [result.line(line) for line in LINES]
    total = result.total

    _check_identity(findings, "Revenue identity", "total", "Total revenue", "Sum of line revenue",
                    total.revenue, sum(r.revenue for r in lines), tol)
    _check_identity(findings, "Labor identity", "total", "Total labor cost", "Sum of line labor cost",
                    total.labor_cost, sum(r.labor_cost for r in lines), tol)
    _check_identity(findings, "Variable cost identity", "total", "Total variable cost", "Sum of line variable cost",
                    total.other_costs, sum(r.other_costs for r in lines), tol)
    _check_identity(findings, "Gross profit identity", "total", "Total gross profit", "Revenue - total cost",
                    total.gross_profit, total.revenue - total.total_cost, tol)

    for r in lines:
        _check_identity(findings, "Line total cost identity", r.line.value, "Total cost", "Promo + labor + variable",
                        r.total_cost, r.promo_cost + r.labor_cost + r.other_costs, tol)
        _check_identity(findings, "Line gross profit identity", r.line.value, "Gross profit", "Revenue - total cost",
                        r.gross_profit, r.revenue - r.total_cost, tol)

    # A gap means the break-even line overspent the pool or the split had no leads to absorb it.
    _check_identity(findings, "Promo allocation identity", "total", "Total promo budget", "Sum of line promo cost",
                    total.promo_cost, sum(r.promo_cost for r in lines), tol)

    ratio_lines = result.line(Line.WUCHUANG), result.line(Line.GEREN)
    if total.remaining_promo_budget > 0 and any(r.derived_cost > 0 for r in ratio_lines):
        _check_identity(findings, "Remaining budget identity", "wuchuang+geren", "Remaining promo budget",
                        "Derived cost x monthly leads", total.remaining_promo_budget,
                        sum(r.derived_cost * r.monthly_leads for r in ratio_lines), tol)
    return findings
