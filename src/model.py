"""Core monthly profit model engine for the three-line lead funnel."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Dict

import pandas as pd

from src.params import (
    LINES,
    BusinessParameters,
    Line,
    ManualSifaCost,
    parameters_from_dict,
)


DAYS_PER_MONTH = 30
HEADCOUNT_BUFFER = 1.4
TOTAL_LABEL = "合计汇总"

_ROUNDING_CONTEXT = Context(prec=400)


@dataclass(frozen=True)
class LineResult:
    line: Line
    name: str
    daily_leads: float
    monthly_leads: float
    deals: float
    revenue: float
    promo_cost: float
    labor_cost: float
    other_costs: float
    total_cost: float
    gross_profit: float
    roi: float
    derived_cost: float
    exact_insales_headcount: float
    insales_headcount: int

    def to_dict(self) -> dict:
        out = asdict(self)
        out["line"] = self.line.value
        return out


@dataclass(frozen=True)
class TotalResult:
    name: str
    revenue: float
    promo_cost: float
    labor_cost: float
    other_costs: float
    total_cost: float
    gross_profit: float
    roi: float
    exact_presales_headcount: float
    presales_headcount: int
    insales_headcount: int
    recommended_sifa_cost: float
    remaining_promo_budget: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ProfitResult:
    lines: Dict[Line, LineResult]
    total: TotalResult

    def line(self, line: Line) -> LineResult:
        return self.lines[line]

    def to_dict(self) -> dict:
        out = {line.value: self.lines[line].to_dict() for line in LINES}
        out["total"] = self.total.to_dict()
        return out


@dataclass(frozen=True)
class _LineFigures:
    """Promo-independent per-line figures computed before cost allocation."""

    daily_leads: float
    monthly_leads: float
    deals: float
    revenue: float
    variable_cost: float
    labor_cost: float
    exact_insales_headcount: float
    insales_headcount: int


def round_half_up(value: float, places: int) -> float:
    """Round the exact binary value of ``value`` half-up to ``places`` decimals.

    Non-finite values pass through unchanged.
    """
    if not math.isfinite(value):
        return value
    quantum = Decimal(1).scaleb(-places)
    # Wide enough for any finite double at a few decimal places.
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP, context=_ROUNDING_CONTEXT))


def staffed_headcount(load: float, capacity: float) -> tuple[float, int]:
    """Return (exact, rounded-up) headcount for a daily load with the staffing buffer applied."""
    if capacity <= 0:
        return 0.0, 0
    exact = load / capacity * HEADCOUNT_BUFFER
    return exact, int(math.ceil(exact))


def _share(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0


def split_remaining_budget(
    remaining_budget: float,
    monthly_leads_a: float,
    monthly_leads_b: float,
    weight_a: float,
    weight_b: float,
) -> tuple[float, float]:
    """Split the remaining promo budget into per-lead costs (line A, line B) honoring weight_a:weight_b."""
    ratio_multiplier = weight_a / weight_b if weight_b > 0 else 0.0
    denominator = monthly_leads_b + ratio_multiplier * monthly_leads_a
    if denominator > 0 and remaining_budget > 0:
        cost_b = remaining_budget / denominator
        return cost_b * ratio_multiplier, cost_b
    return 0.0, 0.0


def recommended_break_even_cost(revenue: float, variable_cost: float, labor_cost: float, monthly_leads: float) -> float:
    """Per-lead acquisition spend at which a line breaks even, floored at zero."""
    if monthly_leads <= 0:
        return 0.0
    return max(0.0, revenue - variable_cost - labor_cost) / monthly_leads


def evaluate(params: BusinessParameters) -> ProfitResult:
    """Evaluate one monthly profit snapshot. Pure and total over numeric input."""
    total_daily_leads = params.total_daily_leads
    presales = params.presales
    management = params.management

    total_monthly_promo_cost = params.avg_cost_per_lead * total_daily_leads * DAYS_PER_MONTH
    if total_daily_leads > 0 and presales.lead_rate > 0:
        daily_consults = total_daily_leads / presales.lead_rate
    else:
        daily_consults = 0.0
    exact_presales, presales_headcount = staffed_headcount(daily_consults, presales.capacity)
    total_presales_labor = presales_headcount * presales.salary
    top_management_cost = management.top_managers * management.top_salary

    figures: dict[Line, _LineFigures] = {}
    for line in LINES:
        cat = params.category(line)
        daily_leads = total_daily_leads * cat.lead_ratio
        monthly_leads = daily_leads * DAYS_PER_MONTH
        deals = monthly_leads * cat.conv_rate
        revenue = deals * cat.unit_price

        lab_cost = cat.lab_cost.cost(deals, revenue)
        commission = revenue * cat.var_cost_rate
        processing = deals * cat.process_cost
        variable_cost = lab_cost + commission + processing

        exact_insales, insales_headcount = staffed_headcount(daily_leads, cat.capacity)
        share = _share(daily_leads, total_daily_leads)
        labor_cost = (
            insales_headcount * params.insales_salary
            + total_presales_labor * share
            + params.promo_labor_cost * share
            + cat.center_managers * management.center_salary
            + top_management_cost * share
        )
        figures[line] = _LineFigures(
            daily_leads=daily_leads,
            monthly_leads=monthly_leads,
            deals=deals,
            revenue=revenue,
            variable_cost=variable_cost,
            labor_cost=labor_cost,
            exact_insales_headcount=exact_insales,
            insales_headcount=insales_headcount,
        )

    sifa = figures[Line.SIFA]
    recommended_sifa_cost = recommended_break_even_cost(
        sifa.revenue, sifa.variable_cost, sifa.labor_cost, sifa.monthly_leads
    )
    policy = params.cost_ratio.sifa_cost
    if isinstance(policy, ManualSifaCost):
        sifa_cost = float(policy.value)
    else:
        sifa_cost = round_half_up(recommended_sifa_cost, 1)

    remaining_budget = total_monthly_promo_cost - sifa_cost * sifa.monthly_leads
    wuchuang_cost, geren_cost = split_remaining_budget(
        remaining_budget,
        figures[Line.WUCHUANG].monthly_leads,
        figures[Line.GEREN].monthly_leads,
        params.cost_ratio.wuchuang,
        params.cost_ratio.geren,
    )
    derived_costs = {Line.WUCHUANG: wuchuang_cost, Line.GEREN: geren_cost, Line.SIFA: sifa_cost}

    lines: dict[Line, LineResult] = {}
    for line in LINES:
        f = figures[line]
        promo_cost = derived_costs[line] * f.monthly_leads
        total_cost = promo_cost + f.labor_cost + f.variable_cost
        lines[line] = LineResult(
            line=line,
            name=params.category(line).name,
            daily_leads=f.daily_leads,
            monthly_leads=f.monthly_leads,
            deals=f.deals,
            revenue=f.revenue,
            promo_cost=promo_cost,
            labor_cost=f.labor_cost,
            other_costs=f.variable_cost,
            total_cost=total_cost,
            gross_profit=f.revenue - total_cost,
            roi=f.revenue / promo_cost if promo_cost > 0 else 0.0,
            derived_cost=derived_costs[line],
            exact_insales_headcount=f.exact_insales_headcount,
            insales_headcount=f.insales_headcount,
        )

    total_revenue = sum(r.revenue for r in lines.values())
    total_labor = sum(r.labor_cost for r in lines.values())
    total_other = sum(r.other_costs for r in lines.values())
    total_cost = total_monthly_promo_cost + total_labor + total_other
    total = TotalResult(
        name=TOTAL_LABEL,
        revenue=total_revenue,
        promo_cost=total_monthly_promo_cost,
        labor_cost=total_labor,
        other_costs=total_other,
        total_cost=total_cost,
        gross_profit=total_revenue - total_cost,
        roi=total_revenue / total_monthly_promo_cost if total_monthly_promo_cost > 0 else 0.0,
        exact_presales_headcount=exact_presales,
        presales_headcount=presales_headcount,
        insales_headcount=sum(r.insales_headcount for r in lines.values()),
        recommended_sifa_cost=recommended_sifa_cost,
        remaining_promo_budget=remaining_budget,
    )
    return ProfitResult(lines=lines, total=total)


def run_model(raw_inputs: Dict) -> ProfitResult:
    return evaluate(parameters_from_dict(raw_inputs))


def result_frame(result: ProfitResult) -> pd.DataFrame:
    """Tabular per-line + total view of a result for display and charts."""
    rows = []
    for line in LINES:
        r = result.line(line)
        rows.append(
            {
                "Line": r.name,
                "Revenue": r.revenue,
                "Promo Cost": r.promo_cost,
                "Labor Cost": r.labor_cost,
                "Variable Cost": r.other_costs,
                "Total Cost": r.total_cost,
                "Gross Profit": r.gross_profit,
                "ROI": r.roi,
                "Derived Cost per Lead": r.derived_cost,
                "In-sales Headcount": r.insales_headcount,
            }
        )
    t = result.total
    rows.append(
        {
            "Line": t.name,
            "Revenue": t.revenue,
            "Promo Cost": t.promo_cost,
            "Labor Cost": t.labor_cost,
            "Variable Cost": t.other_costs,
            "Total Cost": t.total_cost,
            "Gross Profit": t.gross_profit,
            "ROI": t.roi,
            "Derived Cost per Lead": float("nan"),
            "In-sales Headcount": t.insales_headcount,
        }
    )
    return pd.DataFrame(rows)
