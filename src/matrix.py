"""Break-even matrix scan over (cost per lead x daily lead volume)."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from src.defaults import DEFAULT_MATRIX_CONFIG
from src.model import evaluate
from src.params import LINES, BusinessParameters, CategoryParams, Line, PerDealLabCost
from src.schema import linked_process_cost


MATRIX_STEP = 10
RANGE_PADDING = 50
MIN_RANGE_FLOOR = 10

# Per-deal lab cost used when the floor-price switch is on.
FLOOR_LAB_COSTS = {Line.WUCHUANG: 300.0, Line.GEREN: 230.0}


@dataclass(frozen=True)
class MatrixConfig:
    cost_min: int
    cost_max: int
    leads_min: int
    leads_max: int
    wuchuang_conv_rate: float
    geren_conv_rate: float
    sifa_conv_rate: float
    wuchuang_unit_price: float
    geren_unit_price: float
    sifa_unit_price: float
    use_floor_lab_cost: bool = False
    group_cost_share: float = 0.0

    def conv_rate(self, line: Line) -> float:
        return float(getattr(self, f"{line.value}_conv_rate"))

    def unit_price(self, line: Line) -> float:
        return float(getattr(self, f"{line.value}_unit_price"))

    def cost_columns(self) -> list[int]:
        return list(range(self.cost_min, self.cost_max + 1, MATRIX_STEP))

    def lead_rows(self) -> list[int]:
        return list(range(self.leads_min, self.leads_max + 1, MATRIX_STEP))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MatrixCell:
    cost: int
    leads: int
    profit: float
    roi: float


@dataclass(frozen=True)
class MatrixRow:
    leads: int
    cells: list[MatrixCell] = field(default_factory=list)
    break_even: MatrixCell | None = None


@dataclass(frozen=True)
class MatrixResult:
    columns: list[int]
    rows: list[MatrixRow]
    break_even_cells: list[MatrixCell]

    def profit_frame(self) -> pd.DataFrame:
        """Profit pivot with lead volume rows and cost-per-lead columns."""
        data = np.array([[c.profit for c in row.cells] for row in self.rows], dtype=float)
        data = data.reshape(len(self.rows), len(self.columns))
        return pd.DataFrame(data, index=[row.leads for row in self.rows], columns=self.columns)

    def roi_frame(self) -> pd.DataFrame:
        data = np.array([[c.roi for c in row.cells] for row in self.rows], dtype=float)
        data = data.reshape(len(self.rows), len(self.columns))
        return pd.DataFrame(data, index=[row.leads for row in self.rows], columns=self.columns)

    def break_even_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [asdict(c) for c in self.break_even_cells],
            columns=["cost", "leads", "profit", "roi"],
        )


def _as_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return 0.0
    return out if math.isfinite(out) else 0.0


def matrix_config_from_dict(raw: dict | None) -> MatrixConfig:
    """Build a config from loosely-typed UI values; unparsable numbers become 0."""
    data = dict(DEFAULT_MATRIX_CONFIG)
    data.update(raw or {})
    return MatrixConfig(
        cost_min=_as_int(data["cost_min"]),
        cost_max=_as_int(data["cost_max"]),
        leads_min=_as_int(data["leads_min"]),
        leads_max=_as_int(data["leads_max"]),
        wuchuang_conv_rate=_as_float(data["wuchuang_conv_rate"]),
        geren_conv_rate=_as_float(data["geren_conv_rate"]),
        sifa_conv_rate=_as_float(data["sifa_conv_rate"]),
        wuchuang_unit_price=_as_float(data["wuchuang_unit_price"]),
        geren_unit_price=_as_float(data["geren_unit_price"]),
        sifa_unit_price=_as_float(data["sifa_unit_price"]),
        use_floor_lab_cost=bool(data["use_floor_lab_cost"]),
        group_cost_share=_as_float(data["group_cost_share"]),
    )


def default_matrix_config(base: BusinessParameters, previous: MatrixConfig | None = None) -> MatrixConfig:
    """Center a +/-50 window on the working config, keeping the previous switches."""
    cost_anchor = math.floor(base.avg_cost_per_lead / MATRIX_STEP) * MATRIX_STEP
    leads_anchor = math.floor(base.total_daily_leads / MATRIX_STEP) * MATRIX_STEP
    cats = base.categories
    return MatrixConfig(
        cost_min=int(max(MIN_RANGE_FLOOR, cost_anchor - RANGE_PADDING)),
        cost_max=int(cost_anchor + RANGE_PADDING),
        leads_min=int(max(MIN_RANGE_FLOOR, leads_anchor - RANGE_PADDING)),
        leads_max=int(leads_anchor + RANGE_PADDING),
        wuchuang_conv_rate=cats[Line.WUCHUANG].conv_rate,
        geren_conv_rate=cats[Line.GEREN].conv_rate,
        sifa_conv_rate=cats[Line.SIFA].conv_rate,
        wuchuang_unit_price=cats[Line.WUCHUANG].unit_price,
        geren_unit_price=cats[Line.GEREN].unit_price,
        sifa_unit_price=cats[Line.SIFA].unit_price,
        use_floor_lab_cost=previous.use_floor_lab_cost if previous else False,
        group_cost_share=previous.group_cost_share if previous else 0.0,
    )


def _override_category(line: Line, cat: CategoryParams, config: MatrixConfig) -> CategoryParams:
    unit_price = config.unit_price(line)
    lab_cost = cat.lab_cost
    if config.use_floor_lab_cost and line in FLOOR_LAB_COSTS:
        lab_cost = PerDealLabCost(FLOOR_LAB_COSTS[line])
    return replace(
        cat,
        conv_rate=config.conv_rate(line),
        unit_price=unit_price,
        process_cost=linked_process_cost(line, unit_price, cat.process_cost),
        lab_cost=lab_cost,
    )


def scenario_categories(base: BusinessParameters, config: MatrixConfig) -> dict[Line, CategoryParams]:
    return {line: _override_category(line, base.categories[line], config) for line in LINES}


def cell_parameters(
    base: BusinessParameters,
    config: MatrixConfig,
    cost: float,
    leads: float,
    categories: dict[Line, CategoryParams] | None = None,
) -> BusinessParameters:
    """Parameters for one grid cell: base inputs with the scanner's overrides applied."""
    return replace(
        base,
        avg_cost_per_lead=float(cost),
        total_daily_leads=float(leads),
        categories=categories if categories is not None else scenario_categories(base, config),
    )


def scan(base: BusinessParameters, config: MatrixConfig) -> MatrixResult:
    """Evaluate every grid cell and pick the closest-to-zero profit cell per lead row."""
    columns = config.cost_columns()
    categories = scenario_categories(base, config)
    rows: list[MatrixRow] = []
    break_even_cells: list[MatrixCell] = []

    for leads in config.lead_rows():
        cells: list[MatrixCell] = []
        closest: MatrixCell | None = None
        min_abs_profit = math.inf
        for cost in columns:
            res = evaluate(cell_parameters(base, config, cost, leads, categories))
            profit = res.total.gross_profit - config.group_cost_share
            if not math.isfinite(profit):
                raise ValueError(f"Non-finite profit at cost={cost}, leads={leads}.")
            cell = MatrixCell(cost=cost, leads=leads, profit=profit, roi=res.total.roi)
            cells.append(cell)
            # Strict comparison keeps the lower-cost cell on ties.
            if abs(profit) < min_abs_profit:
                min_abs_profit = abs(profit)
                closest = cell
        if closest is not None:
            break_even_cells.append(closest)
        rows.append(MatrixRow(leads=leads, cells=cells, break_even=closest))

    return MatrixResult(columns=columns, rows=rows, break_even_cells=break_even_cells)


def profit_heatmap(result: MatrixResult) -> go.Figure:
    """Profit heatmap with per-cell ROI on hover and the break-even cells marked."""
    profit = result.profit_frame()
    fig = go.Figure(
        go.Heatmap(
            z=profit.values,
            x=[str(c) for c in profit.columns],
            y=[str(r) for r in profit.index],
            customdata=result.roi_frame().values,
            colorscale="RdYlGn",
            zmid=0,
            colorbar=dict(title="Net Profit"),
            hovertemplate="Cost %{x} / Leads %{y}<br>Profit %{z:,.0f}<br>ROI %{customdata:.2f}<extra></extra>",
        )
    )
    fig.add_trace(
        go.Scatter(
            x=[str(c.cost) for c in result.break_even_cells],
            y=[str(c.leads) for c in result.break_even_cells],
            mode="markers",
            marker=dict(symbol="x", size=12, color="black"),
            name="Break-even",
        )
    )
    fig.update_layout(
        title="Net Profit by Cost per Lead and Daily Leads",
        xaxis_title="Cost per Lead",
        yaxis_title="Total Daily Leads",
    )
    return fig
