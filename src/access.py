"""Static shared-secret gate for the app UI."""

from __future__ import annotations

import hmac
import os


DEFAULT_ACCESS_CODE = "666666"
_ACCESS_CODE_ENV_VAR = "LEADPNL_ACCESS_CODE"


def configured_access_code() -> str:
    return os.getenv(_ACCESS_CODE_ENV_VAR, "").strip() or DEFAULT_ACCESS_CODE


def check_access_code(entered: str | None, expected: str | None = None) -> bool:
    secret = configured_access_code() if expected is None else expected
    return hmac.compare_digest(str(entered or "").encode("utf-8"), str(secret).encode("utf-8"))
