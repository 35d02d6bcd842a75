from __future__ import annotations

import math
from copy import deepcopy

import pytest

from src.model import (
    DAYS_PER_MONTH,
    TOTAL_LABEL,
    evaluate,
    recommended_break_even_cost,
    result_frame,
    round_half_up,
    run_model,
    split_remaining_budget,
    staffed_headcount,
)
from src.params import LINES, Line, parameters_from_dict


def test_default_configuration_matches_hand_computed_figures(base_inputs):
    result = run_model(base_inputs)
    w = result.line(Line.WUCHUANG)
    g = result.line(Line.GEREN)
    s = result.line(Line.SIFA)
    t = result.total

    assert w.monthly_leads == pytest.approx(1200.0)
    assert g.monthly_leads == pytest.approx(3600.0)
    assert s.monthly_leads == pytest.approx(1200.0)
    assert t.promo_cost == pytest.approx(1_680_000.0)

    assert w.revenue == pytest.approx(900_000.0)
    assert g.revenue == pytest.approx(1_404_000.0)
    assert s.revenue == pytest.approx(780_000.0)
    assert t.revenue == pytest.approx(3_084_000.0)

    assert t.presales_headcount == 8
    assert s.insales_headcount == 7
    assert s.other_costs == pytest.approx(507_000.0)
    assert s.labor_cost == pytest.approx(67_200.0)

    assert t.recommended_sifa_cost == pytest.approx(171.5)
    assert s.derived_cost == pytest.approx(171.5)
    assert t.remaining_promo_budget == pytest.approx(1_474_200.0)
    assert g.derived_cost == pytest.approx(273.0)
    assert w.derived_cost == pytest.approx(409.5)
    assert s.gross_profit == pytest.approx(0.0, abs=1e-6)


def test_insales_headcount_is_buffered_ceiling(base_inputs):
    result = run_model(base_inputs)
    params = parameters_from_dict(base_inputs)
    for line in LINES:
        r = result.line(line)
        exact = r.daily_leads / params.category(line).capacity * 1.4
        assert r.exact_insales_headcount == pytest.approx(exact)
        assert r.insales_headcount == math.ceil(r.exact_insales_headcount)
        assert r.insales_headcount >= r.exact_insales_headcount
    assert result.total.insales_headcount == sum(result.line(line).insales_headcount for line in LINES)


def test_totals_are_sums_of_lines(base_inputs):
    result = run_model(base_inputs)
    t = result.total
    assert t.revenue == pytest.approx(sum(result.line(l).revenue for l in LINES))
    assert t.labor_cost == pytest.approx(sum(result.line(l).labor_cost for l in LINES))
    assert t.other_costs == pytest.approx(sum(result.line(l).other_costs for l in LINES))
    assert t.total_cost == pytest.approx(t.promo_cost + t.labor_cost + t.other_costs)
    assert t.gross_profit == pytest.approx(t.revenue - t.total_cost)
    for line in LINES:
        r = result.line(line)
        assert r.total_cost == pytest.approx(r.promo_cost + r.labor_cost + r.other_costs)
        assert r.promo_cost == pytest.approx(r.derived_cost * r.monthly_leads)


def test_promo_budget_is_fully_allocated_when_remaining_positive(base_inputs):
    result = run_model(base_inputs)
    assert sum(result.line(l).promo_cost for l in LINES) == pytest.approx(result.total.promo_cost)


def test_ratio_split_honours_cost_weights(base_inputs):
    result = run_model(base_inputs)
    w = result.line(Line.WUCHUANG).derived_cost
    g = result.line(Line.GEREN).derived_cost
    assert w / g == pytest.approx(3.0 / 2.0)


def test_evaluate_is_deterministic(base_inputs):
    params = parameters_from_dict(base_inputs)
    assert evaluate(params) == evaluate(params)


def test_manual_sifa_cost_overrides_recommendation(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["cost_ratio"]["sifa_manual_cost"] = 150.0
    result = run_model(inputs)
    s = result.line(Line.SIFA)
    assert s.derived_cost == pytest.approx(150.0)
    assert result.total.recommended_sifa_cost == pytest.approx(171.5)
    assert result.total.remaining_promo_budget == pytest.approx(1_680_000.0 - 150.0 * 1200.0)
    assert s.gross_profit > 0


def test_manual_sifa_cost_above_pool_leaves_no_budget_for_other_lines(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["cost_ratio"]["sifa_manual_cost"] = 2000.0
    result = run_model(inputs)
    assert result.total.remaining_promo_budget < 0
    assert result.line(Line.WUCHUANG).derived_cost == 0.0
    assert result.line(Line.GEREN).derived_cost == 0.0
    assert result.line(Line.WUCHUANG).roi == 0.0


def test_unprofitable_break_even_line_gets_zero_recommendation(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["categories"]["sifa"]["unit_price"] = 100.0
    result = run_model(inputs)
    assert result.total.recommended_sifa_cost == 0.0
    assert result.line(Line.SIFA).promo_cost == 0.0


def test_zero_leads_yield_zero_figures(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["total_daily_leads"] = 0.0
    result = run_model(inputs)
    t = result.total
    assert t.revenue == 0.0
    assert t.promo_cost == 0.0
    assert t.roi == 0.0
    assert t.presales_headcount == 0
    assert t.recommended_sifa_cost == 0.0
    for line in LINES:
        r = result.line(line)
        assert r.insales_headcount == 0
        assert r.derived_cost == 0.0
        assert math.isfinite(r.gross_profit)
    # Department managers are still paid.
    assert t.labor_cost == pytest.approx(5 * 11_000.0)


def test_zero_capacity_and_lead_rate_are_guarded(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["presales"]["lead_rate"] = 0.0
    inputs["categories"]["geren"]["capacity"] = 0.0
    result = run_model(inputs)
    assert result.total.presales_headcount == 0
    assert result.line(Line.GEREN).insales_headcount == 0
    assert result.line(Line.GEREN).exact_insales_headcount == 0.0


def test_zero_second_weight_gives_first_line_no_promo(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["cost_ratio"]["geren"] = 0.0
    result = run_model(inputs)
    assert result.line(Line.WUCHUANG).derived_cost == 0.0
    assert result.line(Line.GEREN).derived_cost == pytest.approx(1_474_200.0 / 3600.0)


def test_lead_ratios_are_not_normalized(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["categories"]["wuchuang"]["lead_ratio"] = 0.5
    result = run_model(inputs)
    assert result.line(Line.WUCHUANG).daily_leads == pytest.approx(100.0)
    assert result.line(Line.SIFA).daily_leads == pytest.approx(40.0)


def test_staffed_headcount_and_split_helpers():
    assert staffed_headcount(100.0, 0.0) == (0.0, 0)
    assert staffed_headcount(100.0, -5.0) == (0.0, 0)
    exact, rounded = staffed_headcount(50.0, 10.0)
    assert exact == pytest.approx(7.0)
    assert rounded == math.ceil(exact)

    assert split_remaining_budget(-10.0, 100.0, 100.0, 3.0, 2.0) == (0.0, 0.0)
    assert split_remaining_budget(1000.0, 0.0, 0.0, 3.0, 2.0) == (0.0, 0.0)
    cost_a, cost_b = split_remaining_budget(5400.0, 10.0, 30.0, 3.0, 2.0)
    assert cost_b == pytest.approx(5400.0 / 45.0)
    assert cost_a == pytest.approx(cost_b * 1.5)

    assert recommended_break_even_cost(100.0, 50.0, 10.0, 0.0) == 0.0
    assert recommended_break_even_cost(100.0, 80.0, 40.0, 10.0) == 0.0
    assert recommended_break_even_cost(100.0, 50.0, 10.0, 10.0) == pytest.approx(4.0)


def test_round_half_up_matches_fixed_point_formatting():
    # 171.45 is stored just below the midpoint.
    assert round_half_up(171.45, 1) == 171.4
    assert round_half_up(0.25, 1) == 0.3
    assert round_half_up(2.5, 0) == 3.0
    assert round_half_up(230.0, 2) == 230.0
    assert round_half_up(1.005, 2) == 1.0


def test_result_frame_has_line_and_total_rows(base_inputs):
    frame = result_frame(run_model(base_inputs))
    assert list(frame["Line"]) == ["无创", "个人", "司法", TOTAL_LABEL]
    assert math.isnan(frame["Derived Cost per Lead"].iloc[-1])
    assert frame["Revenue"].iloc[-1] == pytest.approx(frame["Revenue"].iloc[:-1].sum())


def test_month_length_constant():
    assert DAYS_PER_MONTH == 30


def test_huge_unit_price_still_evaluates(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["categories"]["sifa"]["unit_price"] = 1e30
    result = run_model(inputs)
    s = result.line(Line.SIFA)
    assert math.isfinite(s.derived_cost)
    assert s.derived_cost == pytest.approx(result.total.recommended_sifa_cost, rel=1e-12)
    assert result.total.recommended_sifa_cost > 1e25


def test_round_half_up_handles_extreme_values():
    assert round_half_up(1e30, 1) == 1e30
    assert round_half_up(1.7e308, 2) == 1.7e308
    assert round_half_up(float("inf"), 1) == float("inf")
    assert math.isnan(round_half_up(float("nan"), 1))
