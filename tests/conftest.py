from __future__ import annotations

from copy import deepcopy
from pathlib import Path

import pytest

import src.persistence as persistence
import src.runtime_logging as runtime_logging
from src.defaults import DEFAULTS
from src.schema import migrate_assumptions


@pytest.fixture
def base_inputs() -> dict:
    inputs, _, _ = migrate_assumptions(deepcopy(DEFAULTS))
    return inputs


@pytest.fixture
def local_store(tmp_path, monkeypatch) -> Path:
    """Point the config/history store and the runtime log at a temp directory."""
    root = Path(tmp_path)
    monkeypatch.setattr(persistence, "STORE_DIR", root)
    monkeypatch.setattr(persistence, "CONFIG_FILE", root / "config.json")
    monkeypatch.setattr(persistence, "DEFAULT_CONFIG_FILE", root / "default_config.json")
    monkeypatch.setattr(persistence, "HISTORY_FILE", root / "history.json")
    monkeypatch.setattr(runtime_logging, "LOG_DIR", root)
    monkeypatch.setattr(runtime_logging, "RUNTIME_EVENTS_LOG_FILE", root / "runtime_events.jsonl")
    return root
