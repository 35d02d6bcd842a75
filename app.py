import json
from copy import deepcopy
from datetime import datetime, timezone

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from src.access import check_access_code
from src.export import export_file_name, history_csv, history_frame
from src.history import append_entry, build_history_entry, delete_entry
from src.input_metadata import advisory_warnings, help_with_guidance
from src.integrity_checks import run_integrity_checks
from src.matrix import MatrixResult, default_matrix_config, matrix_config_from_dict, profit_heatmap, scan
from src.model import ProfitResult, result_frame, round_half_up, run_model
from src.narrative import generate_narrative
from src.params import LINES, Line, parameters_from_dict
from src.persistence import (
    load_config,
    load_default_config,
    load_history,
    save_config,
    save_default_config,
    save_history,
    storage_root_path,
)
from src.runtime_logging import (
    append_runtime_event,
    install_global_exception_logging,
    read_runtime_events,
    runtime_log_path,
)
from src.schema import apply_category_edit, migrate_assumptions


install_global_exception_logging()


GLOBAL_FIELDS = [
    # (path, label, step, format)
    ("avg_cost_per_lead", "Blended Cost per Lead", 10.0, "%.2f"),
    ("total_daily_leads", "Total Daily Leads", 10.0, "%.0f"),
    ("presales.lead_rate", "Pre-sales Lead Rate", 0.01, "%.3f"),
    ("presales.capacity", "Pre-sales Daily Capacity per Agent", 10.0, "%.0f"),
    ("presales.salary", "Pre-sales Salary", 100.0, "%.0f"),
    ("insales_salary", "In-sales Salary", 100.0, "%.0f"),
    ("promo_labor_cost", "Promotion Labor Pool", 1000.0, "%.0f"),
]

ALLOCATION_FIELDS = [
    ("cost_ratio.wuchuang", "First Line Cost Weight", 0.1, "%.2f"),
    ("cost_ratio.geren", "Second Line Cost Weight", 0.1, "%.2f"),
]

MANAGEMENT_FIELDS = [
    ("management.top_managers", "Shared Managers", 1.0, "%.0f"),
    ("management.top_salary", "Shared Manager Salary", 500.0, "%.0f"),
    ("management.center_salary", "Department Manager Salary", 500.0, "%.0f"),
]

CATEGORY_FIELDS = [
    # (field, label, step, format)
    ("lead_ratio", "Lead Share", 0.01, "%.4f"),
    ("conv_rate", "Conversion Rate", 0.01, "%.3f"),
    ("unit_price", "Unit Price", 50.0, "%.2f"),
    ("center_managers", "Department Managers", 1.0, "%.0f"),
    ("capacity", "In-sales Daily Capacity per Agent", 1.0, "%.1f"),
    ("var_cost_rate", "Commission Rate", 0.01, "%.3f"),
    ("process_cost", "Processing Fee per Deal", 1.0, "%.2f"),
]

LAB_COST_FIELDS = {
    Line.WUCHUANG: ("deal_cost", "Lab Cost per Deal", 10.0, "%.2f"),
    Line.GEREN: ("deal_cost", "Lab Cost per Deal", 10.0, "%.2f"),
    Line.SIFA: ("sifa_cost_rate", "Lab Cost (Share of Revenue)", 0.01, "%.3f"),
}

MATRIX_FIELDS = [
    ("cost_min", "Cost per Lead (min)", 10, None),
    ("cost_max", "Cost per Lead (max)", 10, None),
    ("leads_min", "Daily Leads (min)", 10, None),
    ("leads_max", "Daily Leads (max)", 10, None),
    ("wuchuang_conv_rate", "First Line Conversion", 0.01, "%.3f"),
    ("geren_conv_rate", "Second Line Conversion", 0.01, "%.3f"),
    ("sifa_conv_rate", "Third Line Conversion", 0.01, "%.3f"),
    ("wuchuang_unit_price", "First Line Unit Price", 50.0, "%.2f"),
    ("geren_unit_price", "Second Line Unit Price", 50.0, "%.2f"),
    ("sifa_unit_price", "Third Line Unit Price", 50.0, "%.2f"),
    ("group_cost_share", "Group Cost Share", 1000.0, "%.0f"),
]
MATRIX_RANGE_FIELDS = {"cost_min", "cost_max", "leads_min", "leads_max"}

UI_DEFAULTS = {
    "authenticated": False,
    "login_error": "",
    "flash": None,
    "matrix_result": None,
    "narrative_result": None,
    "history_delete_choice": "",
    "confirm_clear_history": False,
    "runtime_log_limit": 100,
    "_input_warning_log_signature": "",
    "_integrity_log_signature": "",
}


def _widget_key(path: str) -> str:
    return "in__" + path.replace(".", "__")


def _category_widget_key(line: Line, field: str) -> str:
    return f"in__categories__{line.value}__{field}"


def _get_path(data: dict, path: str):
    node = data
    for part in path.split("."):
        node = node[part]
    return node


def _set_path(data: dict, path: str, value) -> None:
    parts = path.split(".")
    node = data
    for part in parts[:-1]:
        node = node[part]
    node[parts[-1]] = value


def _serialize_assumptions(assumptions: dict) -> str:
    return json.dumps(assumptions, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _stable_json(value) -> str:
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


@st.cache_data(show_spinner=False)
def _run_model_cached(assumptions_json: str) -> ProfitResult:
    return run_model(json.loads(assumptions_json))


@st.cache_data(show_spinner=False)
def _scan_cached(assumptions_json: str, config_json: str) -> MatrixResult:
    params = parameters_from_dict(json.loads(assumptions_json))
    return scan(params, matrix_config_from_dict(json.loads(config_json)))


def _flash(message: str, kind: str = "success") -> None:
    st.session_state["flash"] = {"message": message, "kind": kind}


def _persist(action, payload, label: str) -> bool:
    try:
        action(payload)
    except OSError as exc:
        append_runtime_event(
            level="ERROR",
            event="persistence_write_failed",
            message=f"Could not save {label}.",
            context={"store": storage_root_path()},
            exc=exc,
        )
        _flash(f"Could not save {label}: {exc}", "error")
        return False
    return True


def _recommended_sifa_cost(assumptions: dict) -> float:
    result = _run_model_cached(_serialize_assumptions(assumptions))
    return round_half_up(result.total.recommended_sifa_cost, 1)


def _sync_widgets_from_assumptions(assumptions: dict) -> None:
    for path, *_ in GLOBAL_FIELDS + ALLOCATION_FIELDS + MANAGEMENT_FIELDS:
        st.session_state[_widget_key(path)] = float(_get_path(assumptions, path))
    manual = assumptions["cost_ratio"].get("sifa_manual_cost")
    st.session_state["in__sifa_manual_enabled"] = manual is not None
    st.session_state["in__sifa_manual_cost"] = (
        float(manual) if manual is not None else _recommended_sifa_cost(assumptions)
    )
    for line in LINES:
        cat = assumptions["categories"][line.value]
        for field, *_ in CATEGORY_FIELDS + [LAB_COST_FIELDS[line]]:
            st.session_state[_category_widget_key(line, field)] = float(cat.get(field, 0.0))


def _sync_matrix_widgets(config: dict) -> None:
    for field, _, step, _ in MATRIX_FIELDS:
        st.session_state[f"mx__{field}"] = int(config[field]) if isinstance(step, int) else float(config[field])
    st.session_state["mx__use_floor_lab_cost"] = bool(config["use_floor_lab_cost"])


def _commit_assumptions(assumptions: dict) -> None:
    st.session_state["assumptions"] = assumptions
    _persist(save_config, assumptions, "configuration")


def _on_global_change(path: str) -> None:
    assumptions = deepcopy(st.session_state["assumptions"])
    _set_path(assumptions, path, float(st.session_state[_widget_key(path)]))
    _commit_assumptions(assumptions)


def _on_sifa_manual_change() -> None:
    assumptions = deepcopy(st.session_state["assumptions"])
    if st.session_state["in__sifa_manual_enabled"]:
        if assumptions["cost_ratio"].get("sifa_manual_cost") is None:
            # Switching to manual starts from the current recommendation.
            st.session_state["in__sifa_manual_cost"] = _recommended_sifa_cost(assumptions)
        assumptions["cost_ratio"]["sifa_manual_cost"] = float(st.session_state["in__sifa_manual_cost"])
    else:
        assumptions["cost_ratio"]["sifa_manual_cost"] = None
        st.session_state["in__sifa_manual_cost"] = _recommended_sifa_cost(assumptions)
    _commit_assumptions(assumptions)


def _on_category_change(line_value: str, field: str) -> None:
    line = Line(line_value)
    value = float(st.session_state[_category_widget_key(line, field)])
    assumptions = apply_category_edit(st.session_state["assumptions"], line, field, value)
    _commit_assumptions(assumptions)
    # Linked fields may have moved; refresh their widgets.
    st.session_state[_category_widget_key(Line.SIFA, "lead_ratio")] = float(assumptions["categories"]["sifa"]["lead_ratio"])
    st.session_state[_category_widget_key(line, "process_cost")] = float(assumptions["categories"][line.value]["process_cost"])


def _on_use_recommended_sifa_cost() -> None:
    st.session_state["in__sifa_manual_enabled"] = False
    _on_sifa_manual_change()


def _on_save_default() -> None:
    if _persist(save_default_config, st.session_state["assumptions"], "default template"):
        _flash("Current parameters saved as your default template.")


def _on_restore_defaults() -> None:
    assumptions, warnings = load_default_config()
    _commit_assumptions(assumptions)
    _sync_widgets_from_assumptions(assumptions)
    _flash("Parameters restored to the default template." if not warnings else "; ".join(warnings),
           "success" if not warnings else "warning")


def _on_save_snapshot() -> None:
    assumptions = st.session_state["assumptions"]
    result = _run_model_cached(_serialize_assumptions(assumptions))
    history = append_entry(st.session_state["history"], build_history_entry(assumptions, result))
    st.session_state["history"] = history
    if _persist(save_history, history, "history"):
        _flash("Snapshot saved to history.")


def _on_delete_snapshot() -> None:
    entry_id = st.session_state.get("history_delete_choice", "")
    if not entry_id:
        return
    history = delete_entry(st.session_state["history"], entry_id)
    st.session_state["history"] = history
    if _persist(save_history, history, "history"):
        _flash("Snapshot deleted.")


def _on_clear_history() -> None:
    if not st.session_state.get("confirm_clear_history"):
        _flash("Tick the confirmation box before clearing history.", "warning")
        return
    st.session_state["history"] = []
    st.session_state["confirm_clear_history"] = False
    if _persist(save_history, [], "history"):
        _flash("All history cleared.")


def _matrix_config_from_widgets() -> dict:
    config = {field: st.session_state[f"mx__{field}"] for field, *_ in MATRIX_FIELDS}
    config["use_floor_lab_cost"] = bool(st.session_state["mx__use_floor_lab_cost"])
    return config


def _on_reset_matrix_range() -> None:
    params = parameters_from_dict(st.session_state["assumptions"])
    previous = matrix_config_from_dict(_matrix_config_from_widgets())
    _sync_matrix_widgets(default_matrix_config(params, previous).to_dict())
    st.session_state["matrix_result"] = None


def _on_run_matrix() -> None:
    config = matrix_config_from_dict(_matrix_config_from_widgets())
    st.session_state["matrix_result"] = _scan_cached(
        _serialize_assumptions(st.session_state["assumptions"]),
        _stable_json(config.to_dict()),
    )


def _on_matrix_override_change() -> None:
    # Overrides refresh a matrix already on screen; range edits wait for an explicit scan.
    if st.session_state.get("matrix_result") is not None:
        _on_run_matrix()


def _attempt_login() -> None:
    if check_access_code(st.session_state.get("access_code", "")):
        st.session_state["authenticated"] = True
        st.session_state["login_error"] = ""
    else:
        st.session_state["login_error"] = "Incorrect access code, please try again."
        st.session_state["access_code"] = ""
        append_runtime_event(level="WARNING", event="access_denied", message="Rejected access code.")


def _money(x: float) -> str:
    return f"¥{x:,.0f}"


def _format_result_table(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in ["Revenue", "Promo Cost", "Labor Cost", "Variable Cost", "Total Cost", "Gross Profit"]:
        out[col] = out[col].map(_money)
    out["ROI"] = out["ROI"].map(lambda v: f"{v:.2f}")
    out["Derived Cost per Lead"] = out["Derived Cost per Lead"].map(lambda v: "" if pd.isna(v) else f"¥{v:,.1f}")
    return out


def _number_input(container, label: str, key: str, step, fmt, on_change, args=(), help_key: str | None = None):
    container.number_input(
        label,
        key=key,
        step=step,
        format=fmt,
        on_change=on_change,
        args=args,
        help=help_with_guidance(help_key, label) if help_key else None,
    )


st.set_page_config(page_title="Lead Channel Profit Model", layout="wide")

for k, v in UI_DEFAULTS.items():
    st.session_state.setdefault(k, deepcopy(v))
st.session_state.setdefault("access_code", "")

if not st.session_state["authenticated"]:
    st.title("Lead Channel Profit Model")
    st.caption("Enter the access code to continue.")
    st.text_input("Access Code", type="password", key="access_code")
    st.button("Enter", key="login_button", on_click=_attempt_login, type="primary")
    if st.session_state["login_error"]:
        st.error(st.session_state["login_error"])
    st.stop()

if "assumptions" not in st.session_state:
    loaded, load_warnings = load_config()
    st.session_state["assumptions"] = loaded
    st.session_state["load_warnings"] = load_warnings
    st.session_state["history"] = load_history()
    _sync_widgets_from_assumptions(loaded)
    initial_config = default_matrix_config(parameters_from_dict(loaded))
    _sync_matrix_widgets(initial_config.to_dict())

st.title("Lead Channel Profit Model")
st.caption("Monthly profit projection for three business lines sharing one paid-traffic budget.")

flash = st.session_state.get("flash")
if flash:
    icon = {"success": "✅", "warning": "⚠️", "error": "❌"}.get(flash["kind"], "ℹ️")
    st.toast(flash["message"], icon=icon)
    st.session_state["flash"] = None

with st.sidebar:
    st.header("Parameters")
    c1, c2 = st.columns(2)
    c1.button("Save as My Default", on_click=_on_save_default, help="Store the current parameters as your default template.")
    c2.button("Restore Defaults", on_click=_on_restore_defaults, help="Reload your default template (or the built-in defaults).")

    with st.expander("Traffic and Staffing", expanded=True):
        for path, label, step, fmt in GLOBAL_FIELDS:
            _number_input(st, label, _widget_key(path), step, fmt, _on_global_change, (path,), path)

    with st.expander("Promo Cost Allocation", expanded=True):
        for path, label, step, fmt in ALLOCATION_FIELDS:
            _number_input(st, label, _widget_key(path), step, fmt, _on_global_change, (path,), path)
        st.checkbox(
            "Manual third-line cost per lead",
            key="in__sifa_manual_enabled",
            on_change=_on_sifa_manual_change,
            help="Off: the break-even recommendation (rounded to one decimal) is used.",
        )
        st.number_input(
            "Third-line Cost per Lead",
            key="in__sifa_manual_cost",
            step=1.0,
            format="%.1f",
            on_change=_on_sifa_manual_change,
            disabled=not st.session_state["in__sifa_manual_enabled"],
        )
        st.button("Use Recommended Cost", on_click=_on_use_recommended_sifa_cost)

    with st.expander("Management", expanded=False):
        for path, label, step, fmt in MANAGEMENT_FIELDS:
            _number_input(st, label, _widget_key(path), step, fmt, _on_global_change, (path,), path)

    for line in LINES:
        name = st.session_state["assumptions"]["categories"][line.value].get("name", line.value)
        with st.expander(f"Line: {name}", expanded=False):
            for field, label, step, fmt in CATEGORY_FIELDS + [LAB_COST_FIELDS[line]]:
                _number_input(
                    st,
                    label,
                    _category_widget_key(line, field),
                    step,
                    fmt,
                    _on_category_change,
                    (line.value, field),
                    field,
                )
            if line is Line.SIFA:
                st.caption("Lead share follows 1 - (first + second line shares) when those are edited.")

assumptions, schema_warnings, unknown_keys = migrate_assumptions(st.session_state["assumptions"])
input_warnings: list[str] = []
input_warnings.extend(st.session_state.get("load_warnings", []))
input_warnings.extend(schema_warnings)
if unknown_keys:
    input_warnings.append(f"Ignored unknown keys: {', '.join(unknown_keys)}")
input_warnings.extend(advisory_warnings(assumptions))
input_warnings = list(dict.fromkeys(w for w in input_warnings if str(w).strip()))

assumptions_json = _serialize_assumptions(assumptions)
result = _run_model_cached(assumptions_json)

input_warning_signature = _stable_json(input_warnings)
if input_warnings and st.session_state.get("_input_warning_log_signature") != input_warning_signature:
    append_runtime_event(
        level="WARNING",
        event="input_warnings",
        message=f"{len(input_warnings)} input warning(s) generated during evaluation.",
        context={"warnings": input_warnings},
    )
    st.session_state["_input_warning_log_signature"] = input_warning_signature
elif not input_warnings:
    st.session_state["_input_warning_log_signature"] = ""

if input_warnings:
    with st.expander(f"[!] Input Warnings ({len(input_warnings)})", expanded=False):
        st.caption("The model still evaluates; degenerate inputs resolve to zero-valued figures.")
        for warning in input_warnings:
            st.write(f"- {warning}")

integrity_findings = run_integrity_checks(result)
integrity_signature = _stable_json(integrity_findings)
if integrity_findings and st.session_state.get("_integrity_log_signature") != integrity_signature:
    append_runtime_event(
        level="ERROR",
        event="integrity_checks_failed",
        message=f"{len(integrity_findings)} integrity check(s) failed.",
        context={"findings": integrity_findings},
    )
    st.session_state["_integrity_log_signature"] = integrity_signature
elif not integrity_findings:
    st.session_state["_integrity_log_signature"] = ""

if integrity_findings:
    with st.expander(f"[!] Allocation Integrity Findings ({len(integrity_findings)})", expanded=False):
        st.caption("A promo allocation gap usually means the third-line cost exceeds the shared budget.")
        st.dataframe(pd.DataFrame(integrity_findings), width="stretch", hide_index=True)
else:
    st.caption("Allocation integrity checks: passed.")

total = result.total
k1, k2, k3, k4, k5, k6 = st.columns(6)
k1.metric("Monthly Revenue", _money(total.revenue))
k2.metric("Monthly Total Cost", _money(total.total_cost))
k3.metric("Gross Profit", _money(total.gross_profit))
k4.metric("Blended ROI", f"{total.roi:.2f}")
k5.metric("Pre-sales Headcount", f"{total.presales_headcount}", f"exact {total.exact_presales_headcount:.2f}", delta_color="off")
k6.metric("In-sales Headcount", f"{total.insales_headcount}")
st.caption(
    f"Third-line break-even cost per lead: ¥{total.recommended_sifa_cost:,.2f} · "
    f"Remaining promo budget for the ratio split: {_money(total.remaining_promo_budget)}"
)

breakdown_tab, history_tab, matrix_tab, narrative_tab, diagnostics_tab = st.tabs(
    ["Line Breakdown", "History", "Break-even Matrix", "Narrative Summary", "Diagnostics"]
)

with breakdown_tab:
    table = result_frame(result)
    st.dataframe(_format_result_table(table), width="stretch", hide_index=True)
    lines_only = table.iloc[:-1]
    cost_mix = lines_only[["Line", "Promo Cost", "Labor Cost", "Variable Cost"]].melt(
        "Line", var_name="Cost Type", value_name="Amount"
    )
    st.plotly_chart(
        px.bar(cost_mix, x="Line", y="Amount", color="Cost Type", title="Monthly Cost Mix by Line"),
        width="stretch",
    )
    fig = go.Figure()
    fig.add_trace(go.Bar(x=lines_only["Line"], y=lines_only["Revenue"], name="Revenue"))
    fig.add_trace(go.Bar(x=lines_only["Line"], y=lines_only["Gross Profit"], name="Gross Profit"))
    fig.update_layout(title="Revenue and Gross Profit by Line", barmode="group")
    st.plotly_chart(fig, width="stretch")
    staffing = pd.DataFrame(
        [
            {
                "Line": result.line(line).name,
                "Daily Leads": result.line(line).daily_leads,
                "Exact In-sales Headcount": result.line(line).exact_insales_headcount,
                "In-sales Headcount": result.line(line).insales_headcount,
            }
            for line in LINES
        ]
    )
    st.caption("Headcount = ceil(daily load / capacity x 1.4)")
    st.dataframe(staffing, width="stretch", hide_index=True)

with history_tab:
    st.button("Save Snapshot", on_click=_on_save_snapshot, type="primary")
    history = st.session_state["history"]
    if not history:
        st.info("No snapshots saved yet.")
    else:
        st.dataframe(history_frame(history), width="stretch", hide_index=True)
        st.download_button(
            "Download History CSV",
            history_csv(history),
            file_name=export_file_name(int(datetime.now(timezone.utc).timestamp() * 1000)),
            mime="text/csv",
        )
        labels = {entry["id"]: f"{entry.get('timestamp', '')} · cost {entry.get('avg_cost_per_lead', 0):.0f} · leads {entry.get('total_daily_leads', 0):.0f}" for entry in history}
        ids = list(labels.keys())
        if st.session_state.get("history_delete_choice") not in ids:
            st.session_state["history_delete_choice"] = ids[-1]
        d1, d2 = st.columns([3, 1])
        d1.selectbox("Snapshot", options=ids, format_func=lambda i: labels[i], key="history_delete_choice")
        d2.button("Delete Snapshot", on_click=_on_delete_snapshot)
        c1, c2 = st.columns([3, 1])
        c1.checkbox("I understand clearing history cannot be undone.", key="confirm_clear_history")
        c2.button("Clear History", on_click=_on_clear_history)

with matrix_tab:
    st.caption("Scans cost per lead x daily leads in steps of 10; the marked cell in each row is closest to zero profit.")
    cols = st.columns(4)
    for idx, (field, label, step, fmt) in enumerate(MATRIX_FIELDS):
        kwargs = {"key": f"mx__{field}", "step": step}
        if fmt:
            kwargs["format"] = fmt
        if field not in MATRIX_RANGE_FIELDS:
            kwargs["on_change"] = _on_matrix_override_change
        cols[idx % 4].number_input(label, **kwargs)
    st.toggle(
        "Floor lab cost (first line 300, second line 230 per deal)",
        key="mx__use_floor_lab_cost",
        on_change=_on_matrix_override_change,
    )
    b1, b2 = st.columns(2)
    b1.button("Reset Range to Current Inputs", on_click=_on_reset_matrix_range)
    b2.button("Run Matrix Scan", on_click=_on_run_matrix, type="primary")

    matrix = st.session_state.get("matrix_result")
    if matrix is not None:
        if not matrix.rows or not matrix.columns:
            st.warning("The selected range is empty; check that each max is at least its min.")
        else:
            st.plotly_chart(profit_heatmap(matrix), width="stretch")
            st.subheader("Break-even Cells")
            st.dataframe(matrix.break_even_frame(), width="stretch", hide_index=True)
            with st.expander("Full Profit Grid", expanded=False):
                st.dataframe(matrix.profit_frame(), width="stretch")
                st.caption("ROI (revenue / promo cost)")
                st.dataframe(matrix.roi_frame().round(2), width="stretch")

with narrative_tab:
    st.caption("Sends the current snapshot to an external text-generation service for a CFO-style review.")
    if st.button("Generate Narrative Summary", type="primary"):
        with st.spinner("Requesting narrative..."):
            st.session_state["narrative_result"] = generate_narrative(result)
    narrative = st.session_state.get("narrative_result")
    if narrative is not None:
        if narrative.status == "ok":
            st.markdown(narrative.text)
        elif narrative.status == "unconfigured":
            st.info(narrative.text)
        else:
            st.error(narrative.text)

with diagnostics_tab:
    st.caption(f"Runtime log: {runtime_log_path()}")
    st.caption(f"Local store: {storage_root_path()}")
    st.number_input("Events to show", min_value=10, max_value=1000, step=10, key="runtime_log_limit")
    events = read_runtime_events(limit=int(st.session_state["runtime_log_limit"]))
    if events:
        st.dataframe(
            pd.DataFrame(events).reindex(columns=["timestamp_utc", "level", "event", "message"]),
            width="stretch",
            hide_index=True,
        )
    else:
        st.caption("No runtime events recorded.")
