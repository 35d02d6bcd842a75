"""Structured runtime event log for diagnosing the profit model app."""

from __future__ import annotations

import json
import os
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from streamlit.runtime.scriptrunner import get_script_run_ctx


EVENT_LOG_NAME = "runtime_events.jsonl"
_FALLBACK_ROOT = Path(".local_store")
_STORAGE_ENV_VAR = "LEADPNL_STORAGE_ROOT"

LOG_DIR = _FALLBACK_ROOT
RUNTIME_EVENTS_LOG_FILE = _FALLBACK_ROOT / EVENT_LOG_NAME

_hook_installed = False


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode_extra(value: Any):
    if isinstance(value, (set, frozenset, tuple)):
        return sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
    # Enums (e.g. business lines) are logged by value.
    if hasattr(value, "value"):
        return value.value
    return str(value)


def configure_log_root(path_value: str | Path | None) -> Path:
    """Re-point the event log; blank values restore the working-directory store."""
    global LOG_DIR, RUNTIME_EVENTS_LOG_FILE
    raw = str(path_value or "").strip()
    LOG_DIR = Path(os.path.expandvars(os.path.expanduser(raw))) if raw else _FALLBACK_ROOT
    RUNTIME_EVENTS_LOG_FILE = LOG_DIR / EVENT_LOG_NAME
    return LOG_DIR


def runtime_log_path() -> str:
    return str(RUNTIME_EVENTS_LOG_FILE.resolve())


def build_event(
    level: str,
    event: str,
    message: str,
    context: dict[str, Any] | None = None,
    exc: BaseException | None = None,
) -> dict[str, Any]:
    """One JSONL record; exception details are attached only when ``exc`` is given."""
    record = {
        "timestamp_utc": _utc_stamp(),
        "level": str(level).upper(),
        "event": str(event),
        "message": str(message),
        "context": dict(context or {}),
    }
    if exc is not None:
        record.update(
            exception_type=type(exc).__name__,
            exception_message=str(exc),
            traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
    return record


def append_runtime_event(
    level: str,
    event: str,
    message: str,
    context: dict[str, Any] | None = None,
    exc: BaseException | None = None,
) -> None:
    """Append one event to the JSONL log. Never raises."""
    try:
        payload = json.dumps(build_event(level, event, message, context, exc), default=_encode_extra, ensure_ascii=False)
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        with RUNTIME_EVENTS_LOG_FILE.open("a", encoding="utf-8") as handle:
            handle.write(payload + "\n")
    except Exception:
        # Diagnostics should never crash the app.
        pass


def _parse_line(line: str) -> dict[str, Any]:
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        record = None
    if not isinstance(record, dict):
        return build_event("ERROR", "log_parse_error", "Malformed log line encountered.", {"line": line})
    return record


def read_runtime_events(limit: int = 200, level: str | None = None) -> list[dict[str, Any]]:
    """Return the most recent events, oldest first, optionally filtered by level."""
    if limit <= 0:
        return []
    try:
        text = RUNTIME_EVENTS_LOG_FILE.read_text(encoding="utf-8")
    except OSError:
        return []
    records = [_parse_line(line) for line in text.splitlines() if line.strip()]
    if level:
        records = [r for r in records if r.get("level") == str(level).upper()]
    return records[-int(limit):]


def install_global_exception_logging() -> None:
    """Record uncaught exceptions raised during a Streamlit script run."""
    global _hook_installed
    if _hook_installed:
        return
    chained = sys.excepthook

    def _log_and_chain(exc_type, exc, exc_tb):
        # Outside a script run (plain imports, pytest) only the chained hook fires.
        if get_script_run_ctx() is not None:
            append_runtime_event("ERROR", "uncaught_exception", str(exc), exc=exc)
        chained(exc_type, exc, exc_tb)

    sys.excepthook = _log_and_chain
    _hook_installed = True


configure_log_root(os.getenv(_STORAGE_ENV_VAR))
