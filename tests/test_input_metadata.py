from __future__ import annotations

from copy import deepcopy

from src.input_metadata import advisory_warnings, help_with_guidance


def test_help_with_guidance_includes_range_and_note():
    help_text = help_with_guidance("avg_cost_per_lead", "Blended cost per lead.")
    assert help_text.startswith("Blended cost per lead.")
    assert "Reasonable range: 50 to 800." in help_text

    rate_help = help_with_guidance("presales.lead_rate", "Lead rate.")
    assert "0.05 to 1." in rate_help


def test_help_without_guidance_returns_base_text():
    assert help_with_guidance("deal_cost", "Lab cost per deal.") == "Lab cost per deal."


def test_default_inputs_raise_no_warnings(base_inputs):
    assert advisory_warnings(base_inputs) == []


def test_out_of_range_values_are_flagged(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["avg_cost_per_lead"] = 1200.0
    inputs["categories"]["geren"]["conv_rate"] = 0.9
    warnings = advisory_warnings(inputs)
    assert any(w.startswith("avg_cost_per_lead=1200.000") for w in warnings)
    assert any(w.startswith("categories.geren.conv_rate=0.900") for w in warnings)


def test_lead_ratio_sum_warning(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["categories"]["wuchuang"]["lead_ratio"] = 0.5
    warnings = advisory_warnings(inputs)
    assert "Lead ratios sum to 1.3000; the three lines should sum to 1." in warnings


def test_structural_warnings(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["presales"]["lead_rate"] = 0.0
    inputs["cost_ratio"]["geren"] = 0.0
    warnings = advisory_warnings(inputs)
    assert any("presales.lead_rate must be in (0, 1]" in w for w in warnings)
    assert any("cost_ratio.geren must be positive" in w for w in warnings)
