"""Local persistence for the working configuration, custom default, and history log."""

from __future__ import annotations

import json
import os
from copy import deepcopy
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.defaults import DEFAULTS
from src.history import normalize_history_entry
from src.runtime_logging import append_runtime_event
from src.schema import CONFIG_TYPE, HISTORY_TYPE, SCHEMA_VERSION, migrate_import_payload

STORE_DIR = Path(".local_store")
CONFIG_FILE = STORE_DIR / "config.json"
DEFAULT_CONFIG_FILE = STORE_DIR / "default_config.json"
HISTORY_FILE = STORE_DIR / "history.json"

_DEFAULT_STORE_DIR = Path(".local_store")
_STORAGE_ENV_VAR = "LEADPNL_STORAGE_ROOT"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _expand_storage_root(path_value: str | Path | None) -> Path:
    if path_value is None:
        return _DEFAULT_STORE_DIR
    text = str(path_value).strip()
    if not text:
        return _DEFAULT_STORE_DIR
    return Path(os.path.expandvars(os.path.expanduser(text)))


def configure_storage_root(path_value: str | Path | None) -> Path:
    """Point the config/history store at a new directory."""
    global STORE_DIR, CONFIG_FILE, DEFAULT_CONFIG_FILE, HISTORY_FILE
    STORE_DIR = _expand_storage_root(path_value)
    CONFIG_FILE = STORE_DIR / "config.json"
    DEFAULT_CONFIG_FILE = STORE_DIR / "default_config.json"
    HISTORY_FILE = STORE_DIR / "history.json"
    return STORE_DIR


def storage_root_path() -> str:
    return str(STORE_DIR.resolve())


def _read_json(path: Path) -> Any:
    """Return parsed JSON, or None when the file is absent. Raises on malformed content."""
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path: Path, data: Any) -> None:
    STORE_DIR.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(f"{path.suffix}.tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


def build_config_bundle(assumptions: dict) -> dict:
    return {
        "type": CONFIG_TYPE,
        "schema_version": SCHEMA_VERSION,
        "saved_at": _now_iso(),
        "assumptions": deepcopy(assumptions),
    }


def _load_config_file(path: Path, label: str) -> tuple[dict | None, list[str]]:
    try:
        payload = _read_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        append_runtime_event(
            level="WARNING",
            event="config_load_fallback",
            message=f"Stored {label} could not be read; falling back.",
            context={"path": str(path)},
            exc=exc,
        )
        return None, [f"Stored {label} was unreadable and has been ignored."]
    if payload is None:
        return None, []
    if not isinstance(payload, dict):
        append_runtime_event(
            level="WARNING",
            event="config_load_fallback",
            message=f"Stored {label} is not a JSON object; falling back.",
            context={"path": str(path)},
        )
        return None, [f"Stored {label} was not an object and has been ignored."]
    assumptions, warnings, unknown = migrate_import_payload(payload)
    if unknown:
        warnings.append(f"Ignored unknown keys in {label}: {', '.join(unknown)}")
    return assumptions, warnings


def load_default_config() -> tuple[dict, list[str]]:
    """Custom default template if one was saved, else the built-in defaults."""
    assumptions, warnings = _load_config_file(DEFAULT_CONFIG_FILE, "default template")
    if assumptions is None:
        return deepcopy(DEFAULTS), warnings
    return assumptions, warnings


def load_config() -> tuple[dict, list[str]]:
    """Working config, falling back to the custom default and then the built-ins."""
    assumptions, warnings = _load_config_file(CONFIG_FILE, "configuration")
    if assumptions is not None:
        return assumptions, warnings
    fallback, fallback_warnings = load_default_config()
    return fallback, warnings + fallback_warnings


def save_config(assumptions: dict) -> None:
    _write_json(CONFIG_FILE, build_config_bundle(assumptions))


def save_default_config(assumptions: dict) -> None:
    _write_json(DEFAULT_CONFIG_FILE, build_config_bundle(assumptions))


def load_history() -> list[dict]:
    """Stored history entries in insertion order; unreadable stores yield an empty list.

    Non-dict entries are dropped and partial ones are repaired in memory.
    """
    try:
        payload = _read_json(HISTORY_FILE)
    except (OSError, json.JSONDecodeError) as exc:
        append_runtime_event(
            level="WARNING",
            event="history_load_fallback",
            message="Stored history could not be read; starting empty.",
            context={"path": str(HISTORY_FILE)},
            exc=exc,
        )
        return []
    if payload is None:
        return []
    if isinstance(payload, dict) and payload.get("type") == HISTORY_TYPE:
        payload = payload.get("entries", [])
    if not isinstance(payload, list):
        append_runtime_event(
            level="WARNING",
            event="history_load_fallback",
            message="Stored history is not a list; starting empty.",
            context={"path": str(HISTORY_FILE)},
        )
        return []
    entries = []
    repaired = 0
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        entry, changed = normalize_history_entry(raw)
        entries.append(entry)
        repaired += int(changed)
    if repaired:
        append_runtime_event(
            level="WARNING",
            event="history_entries_repaired",
            message="Some stored history entries were incomplete and have been repaired.",
            context={"path": str(HISTORY_FILE), "repaired": repaired},
        )
    return entries


def save_history(entries: list[dict]) -> None:
    _write_json(
        HISTORY_FILE,
        {
            "type": HISTORY_TYPE,
            "schema_version": SCHEMA_VERSION,
            "saved_at": _now_iso(),
            "entries": deepcopy(entries),
        },
    )


configure_storage_root(_expand_storage_root(os.getenv(_STORAGE_ENV_VAR, "")))
