from __future__ import annotations

import json

import pytest
from streamlit.testing.v1 import AppTest


def _widget_by_label(widgets, label: str):
    matches = [w for w in widgets if getattr(w, "label", "") == label]
    assert matches, f"Widget not found for label: {label}"
    return matches[0]


def _assert_no_app_exceptions(at: AppTest) -> None:
    assert len(at.exception) == 0


@pytest.fixture
def logged_in_app(local_store, monkeypatch) -> AppTest:
    monkeypatch.delenv("LEADPNL_ACCESS_CODE", raising=False)
    at = AppTest.from_file("../app.py")
    at.run(timeout=180)
    at.text_input(key="access_code").set_value("666666")
    at.button(key="login_button").click()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["authenticated"] is True
    return at


def test_app_initial_run_shows_access_gate(local_store):
    at = AppTest.from_file("../app.py")
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["authenticated"] is False
    assert len(at.text_input) == 1
    assert len(at.tabs) == 0


def test_wrong_access_code_is_rejected_and_logged(local_store, monkeypatch):
    monkeypatch.delenv("LEADPNL_ACCESS_CODE", raising=False)
    at = AppTest.from_file("../app.py")
    at.run(timeout=180)
    at.text_input(key="access_code").set_value("000000")
    at.button(key="login_button").click()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["authenticated"] is False
    assert at.session_state["login_error"]
    log_lines = (local_store / "runtime_events.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(log_lines[-1])["event"] == "access_denied"


def test_dashboard_renders_after_login(logged_in_app):
    at = logged_in_app
    assert len(at.tabs) == 5
    assert len(at.metric) >= 6
    assert at.session_state["assumptions"]["avg_cost_per_lead"] == 280.0


def test_input_edit_persists_and_rebalances(logged_in_app, local_store):
    at = logged_in_app
    at.number_input(key="in__categories__wuchuang__lead_ratio").set_value(0.3)
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["assumptions"]["categories"]["sifa"]["lead_ratio"] == pytest.approx(0.1)
    assert at.number_input(key="in__categories__sifa__lead_ratio").value == pytest.approx(0.1)

    stored = json.loads((local_store / "config.json").read_text(encoding="utf-8"))
    assert stored["assumptions"]["categories"]["wuchuang"]["lead_ratio"] == 0.3


def test_snapshot_history_and_matrix_flow(logged_in_app, local_store):
    at = logged_in_app
    _widget_by_label(at.button, "Save Snapshot").click()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert len(at.session_state["history"]) == 1
    stored = json.loads((local_store / "history.json").read_text(encoding="utf-8"))
    assert len(stored["entries"]) == 1

    _widget_by_label(at.button, "Run Matrix Scan").click()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    matrix = at.session_state["matrix_result"]
    assert matrix is not None
    assert len(matrix.rows) == 11
    assert len(matrix.columns) == 11

    _widget_by_label(at.button, "Delete Snapshot").click()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["history"] == []


def test_narrative_without_key_shows_setup_guidance(logged_in_app, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    at = logged_in_app
    _widget_by_label(at.button, "Generate Narrative Summary").click()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["narrative_result"].status == "unconfigured"


def test_manual_third_line_cost_starts_from_recommendation(logged_in_app, local_store):
    at = logged_in_app
    assert at.number_input(key="in__sifa_manual_cost").value == pytest.approx(171.5)

    at.checkbox(key="in__sifa_manual_enabled").check()
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["assumptions"]["cost_ratio"]["sifa_manual_cost"] == pytest.approx(171.5)
    stored = json.loads((local_store / "config.json").read_text(encoding="utf-8"))
    assert stored["assumptions"]["cost_ratio"]["sifa_manual_cost"] == pytest.approx(171.5)

    at.number_input(key="in__sifa_manual_cost").set_value(150.0)
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["assumptions"]["cost_ratio"]["sifa_manual_cost"] == pytest.approx(150.0)


def test_matrix_override_edit_refreshes_shown_matrix(logged_in_app):
    at = logged_in_app
    at.number_input(key="mx__group_cost_share").set_value(1000.0)
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    assert at.session_state["matrix_result"] is None

    _widget_by_label(at.button, "Run Matrix Scan").click()
    at.run(timeout=180)
    before = at.session_state["matrix_result"]

    at.number_input(key="mx__group_cost_share").set_value(3000.0)
    at.run(timeout=180)
    _assert_no_app_exceptions(at)
    after = at.session_state["matrix_result"]
    assert after is not before
    first_before = before.rows[0].cells[0].profit
    first_after = after.rows[0].cells[0].profit
    assert first_before - first_after == pytest.approx(2000.0)
