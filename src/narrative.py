"""Narrative summary of a profit snapshot via an external text-generation service."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Callable

import requests

from src.model import ProfitResult
from src.params import Line
from src.runtime_logging import append_runtime_event


GEMINI_URL_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash-preview-09-2025"

MAX_ATTEMPTS = 5
INITIAL_DELAY_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 60

UNCONFIGURED_MESSAGE = (
    "No text-generation API key is configured.\n\n"
    "Set the GEMINI_API_KEY environment variable before starting the app, "
    "then request the narrative summary again."
)
FAILED_MESSAGE = "Sorry, the narrative engine did not respond in time. Close this panel and try again."


@dataclass
class NarrativeResult:
    status: str
    text: str
    attempts: int
    message: str


def configured_api_key() -> str:
    return os.getenv("GEMINI_API_KEY", "").strip()


def configured_model() -> str:
    return os.getenv("LEADPNL_GEMINI_MODEL", "").strip() or DEFAULT_GEMINI_MODEL


def build_prompt(result: ProfitResult) -> str:
    """Fixed CFO-style diagnostic prompt embedding the aggregate and per-line figures."""
    t = result.total
    w = result.line(Line.WUCHUANG)
    g = result.line(Line.GEREN)
    s = result.line(Line.SIFA)
    return f"""
Acting as a senior corporate finance and operations analyst (CFO perspective), review the following
monthly projection snapshot for a paid-search lead-generation business and write a diagnostic report.

[Overall financial performance]
- Monthly revenue: {t.revenue:.0f}
- Monthly total cost: {t.total_cost:.0f} (promotion {t.promo_cost:.0f}, allocated labor {t.labor_cost:.0f}, variable cost {t.other_costs:.0f})
- Gross profit: {t.gross_profit:.0f}
- Blended ROI (revenue / promotion): {t.roi:.2f}

[Business line breakdown]
1. {w.name}: revenue {w.revenue:.0f}, gross profit {w.gross_profit:.0f}, ROI {w.roi:.2f}, derived cost per lead about {w.derived_cost:.0f}.
2. {g.name}: revenue {g.revenue:.0f}, gross profit {g.gross_profit:.0f}, ROI {g.roi:.2f}, derived cost per lead about {g.derived_cost:.0f}.
3. {s.name}: revenue {s.revenue:.0f}, gross profit {s.gross_profit:.0f}, configured cost per lead {s.derived_cost:.0f} (zero-profit threshold recommended at about {t.recommended_sifa_cost:.0f}).

Structure the report as follows (bold headings and emoji are welcome):
1. **Operating health overview**: a blunt assessment of how sound the current profit model is.
2. **Profit leak diagnosis**: whether the cost structure (promotion, labor, lab fees) is unbalanced and which line is the weak link.
3. **Core optimization moves**: three concrete actions on funnel conversion or staff efficiency (for example raising a conversion rate or shifting traffic mix).
Output the content directly without pleasantries.
"""


def _extract_text(data) -> str:
    text = data["candidates"][0]["content"]["parts"][0]["text"]
    if not isinstance(text, str) or not text.strip():
        raise ValueError("No text returned from the generation service.")
    return text


def request_narrative(prompt: str, api_key: str, model: str, timeout: float = REQUEST_TIMEOUT_SECONDS) -> str:
    """Single generation call; raises on transport, HTTP, or payload errors."""
    response = requests.post(
        GEMINI_URL_TEMPLATE.format(model=model),
        headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
        json={"contents": [{"parts": [{"text": prompt}]}]},
        timeout=timeout,
    )
    response.raise_for_status()
    return _extract_text(response.json())


def generate_narrative(
    result: ProfitResult,
    api_key: str | None = None,
    *,
    model: str | None = None,
    max_attempts: int = MAX_ATTEMPTS,
    initial_delay: float = INITIAL_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> NarrativeResult:
    """Request a narrative with exponential backoff. Never raises; failures come back as a status."""
    key = configured_api_key() if api_key is None else api_key.strip()
    if not key:
        append_runtime_event(
            level="INFO",
            event="narrative_unconfigured",
            message="Narrative summary requested without an API key.",
        )
        return NarrativeResult("unconfigured", UNCONFIGURED_MESSAGE, 0, "API key missing.")

    prompt = build_prompt(result)
    model_name = model or configured_model()
    delay = float(initial_delay)
    last_error = ""
    for attempt in range(1, max(1, int(max_attempts)) + 1):
        try:
            text = request_narrative(prompt, key, model_name)
            return NarrativeResult("ok", text, attempt, "Generated.")
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            append_runtime_event(
                level="WARNING",
                event="narrative_attempt_failed",
                message=f"Narrative attempt {attempt} failed.",
                context={"attempt": attempt, "model": model_name, "error": last_error},
            )
        if attempt < max_attempts:
            sleep(delay)
            delay *= 2

    append_runtime_event(
        level="ERROR",
        event="narrative_failed",
        message="Narrative summary failed after all retries.",
        context={"attempts": max_attempts, "model": model_name, "error": last_error},
    )
    return NarrativeResult("failed", FAILED_MESSAGE, int(max_attempts), last_error)
