"""Immutable business-parameter value types and dict conversion."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Line(Enum):
    """The three business lines sharing the paid-traffic funnel."""

    WUCHUANG = "wuchuang"
    GEREN = "geren"
    SIFA = "sifa"

    @property
    def is_break_even_line(self) -> bool:
        return self is Line.SIFA


LINES = (Line.WUCHUANG, Line.GEREN, Line.SIFA)


@dataclass(frozen=True)
class PerDealLabCost:
    """Fixed lab cost charged on every closed deal."""

    amount: float

    def cost(self, deals: float, revenue: float) -> float:
        return deals * self.amount


@dataclass(frozen=True)
class RevenueShareLabCost:
    """Lab cost charged as a fraction of line revenue."""

    rate: float

    def cost(self, deals: float, revenue: float) -> float:
        return revenue * self.rate


LabCost = Union[PerDealLabCost, RevenueShareLabCost]


@dataclass(frozen=True)
class ManualSifaCost:
    value: float


@dataclass(frozen=True)
class AutoSifaCost:
    pass


SifaCostPolicy = Union[ManualSifaCost, AutoSifaCost]


@dataclass(frozen=True)
class PresalesParams:
    capacity: float
    lead_rate: float
    salary: float


@dataclass(frozen=True)
class ManagementParams:
    top_managers: float
    top_salary: float
    center_salary: float


@dataclass(frozen=True)
class CostRatio:
    """Relative per-lead cost weights for the two ratio-split lines."""

    wuchuang: float
    geren: float
    sifa_cost: SifaCostPolicy


@dataclass(frozen=True)
class CategoryParams:
    name: str
    lead_ratio: float
    conv_rate: float
    unit_price: float
    capacity: float
    center_managers: float
    var_cost_rate: float
    process_cost: float
    lab_cost: LabCost


@dataclass(frozen=True)
class BusinessParameters:
    avg_cost_per_lead: float
    total_daily_leads: float
    presales: PresalesParams
    insales_salary: float
    promo_labor_cost: float
    management: ManagementParams
    cost_ratio: CostRatio
    categories: dict[Line, CategoryParams]

    def category(self, line: Line) -> CategoryParams:
        return self.categories[line]


def _num(section: dict, key: str, default: float = 0.0) -> float:
    value = section.get(key, default)
    if value is None:
        return float(default)
    return float(value)


def sifa_policy_from_value(value) -> SifaCostPolicy:
    if value is None or (isinstance(value, str) and not value.strip()):
        return AutoSifaCost()
    return ManualSifaCost(float(value))


def _category_from_dict(line: Line, data: dict) -> CategoryParams:
    if line.is_break_even_line:
        lab_cost: LabCost = RevenueShareLabCost(_num(data, "sifa_cost_rate"))
    else:
        lab_cost = PerDealLabCost(_num(data, "deal_cost"))
    return CategoryParams(
        name=str(data.get("name", line.value)),
        lead_ratio=_num(data, "lead_ratio"),
        conv_rate=_num(data, "conv_rate"),
        unit_price=_num(data, "unit_price"),
        capacity=_num(data, "capacity"),
        center_managers=_num(data, "center_managers"),
        var_cost_rate=_num(data, "var_cost_rate"),
        process_cost=_num(data, "process_cost"),
        lab_cost=lab_cost,
    )


def parameters_from_dict(assumptions: dict) -> BusinessParameters:
    """Build value-typed parameters from a stored (snake_case) assumption dict."""
    presales = assumptions.get("presales", {})
    management = assumptions.get("management", {})
    cost_ratio = assumptions.get("cost_ratio", {})
    categories = assumptions.get("categories", {})
    return BusinessParameters(
        avg_cost_per_lead=_num(assumptions, "avg_cost_per_lead"),
        total_daily_leads=_num(assumptions, "total_daily_leads"),
        presales=PresalesParams(
            capacity=_num(presales, "capacity"),
            lead_rate=_num(presales, "lead_rate"),
            salary=_num(presales, "salary"),
        ),
        insales_salary=_num(assumptions, "insales_salary"),
        promo_labor_cost=_num(assumptions, "promo_labor_cost"),
        management=ManagementParams(
            top_managers=_num(management, "top_managers"),
            top_salary=_num(management, "top_salary"),
            center_salary=_num(management, "center_salary"),
        ),
        cost_ratio=CostRatio(
            wuchuang=_num(cost_ratio, "wuchuang"),
            geren=_num(cost_ratio, "geren"),
            sifa_cost=sifa_policy_from_value(cost_ratio.get("sifa_manual_cost")),
        ),
        categories={line: _category_from_dict(line, categories.get(line.value, {})) for line in LINES},
    )


def _category_to_dict(cat: CategoryParams) -> dict:
    out = {
        "name": cat.name,
        "lead_ratio": cat.lead_ratio,
        "conv_rate": cat.conv_rate,
        "unit_price": cat.unit_price,
        "capacity": cat.capacity,
        "center_managers": cat.center_managers,
        "var_cost_rate": cat.var_cost_rate,
        "process_cost": cat.process_cost,
    }
    if isinstance(cat.lab_cost, RevenueShareLabCost):
        out["sifa_cost_rate"] = cat.lab_cost.rate
    else:
        out["deal_cost"] = cat.lab_cost.amount
    return out


def parameters_to_dict(params: BusinessParameters) -> dict:
    sifa_cost = params.cost_ratio.sifa_cost
    return {
        "avg_cost_per_lead": params.avg_cost_per_lead,
        "total_daily_leads": params.total_daily_leads,
        "presales": {
            "capacity": params.presales.capacity,
            "lead_rate": params.presales.lead_rate,
            "salary": params.presales.salary,
        },
        "insales_salary": params.insales_salary,
        "promo_labor_cost": params.promo_labor_cost,
        "management": {
            "top_managers": params.management.top_managers,
            "top_salary": params.management.top_salary,
            "center_salary": params.management.center_salary,
        },
        "cost_ratio": {
            "wuchuang": params.cost_ratio.wuchuang,
            "geren": params.cost_ratio.geren,
            "sifa_manual_cost": sifa_cost.value if isinstance(sifa_cost, ManualSifaCost) else None,
        },
        "categories": {line.value: _category_to_dict(params.categories[line]) for line in LINES},
    }
