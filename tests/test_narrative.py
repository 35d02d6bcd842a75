from __future__ import annotations

import pytest
import requests

import src.narrative as narrative
import src.runtime_logging as runtime_logging
from src.model import run_model


class _FakeResponse:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def _ok_payload(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def result(base_inputs):
    return run_model(base_inputs)


@pytest.fixture
def sleeps():
    return []


def test_missing_api_key_is_reported_without_calling_service(result, local_store, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    def _fail(*args, **kwargs):
        raise AssertionError("service must not be called")

    monkeypatch.setattr(narrative.requests, "post", _fail)
    out = narrative.generate_narrative(result)
    assert out.status == "unconfigured"
    assert out.attempts == 0
    assert "GEMINI_API_KEY" in out.text
    assert runtime_logging.read_runtime_events(limit=5)[-1]["event"] == "narrative_unconfigured"


def test_successful_call_sends_prompt_and_key(result, local_store, monkeypatch, sleeps):
    calls = []

    def _post(url, headers=None, json=None, timeout=None):
        calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        return _FakeResponse(_ok_payload("**Health**: solid"))

    monkeypatch.setattr(narrative.requests, "post", _post)
    out = narrative.generate_narrative(result, api_key="k-123", model="test-model", sleep=sleeps.append)

    assert out.status == "ok"
    assert out.text == "**Health**: solid"
    assert out.attempts == 1
    assert sleeps == []
    assert calls[0]["url"] == "https://generativelanguage.googleapis.com/v1beta/models/test-model:generateContent"
    assert calls[0]["headers"]["x-goog-api-key"] == "k-123"
    assert "k-123" not in calls[0]["url"]
    prompt = calls[0]["json"]["contents"][0]["parts"][0]["text"]
    assert "3084000" in prompt
    assert "司法" in prompt


def test_retries_with_doubling_backoff_then_succeeds(result, local_store, monkeypatch, sleeps):
    responses = iter(
        [
            requests.ConnectionError("down"),
            _FakeResponse({}, status_code=503),
            _FakeResponse(_ok_payload("done")),
        ]
    )

    def _post(*args, **kwargs):
        item = next(responses)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(narrative.requests, "post", _post)
    out = narrative.generate_narrative(result, api_key="k", sleep=sleeps.append)
    assert out.status == "ok"
    assert out.attempts == 3
    assert sleeps == [1.0, 2.0]
    failed = [e for e in runtime_logging.read_runtime_events(limit=10) if e["event"] == "narrative_attempt_failed"]
    assert len(failed) == 2


def test_exhausted_retries_return_failure_message(result, local_store, monkeypatch, sleeps):
    def _post(*args, **kwargs):
        return _FakeResponse({"candidates": []})

    monkeypatch.setattr(narrative.requests, "post", _post)
    out = narrative.generate_narrative(result, api_key="k", sleep=sleeps.append)
    assert out.status == "failed"
    assert out.text == narrative.FAILED_MESSAGE
    assert out.attempts == narrative.MAX_ATTEMPTS
    assert sleeps == [1.0, 2.0, 4.0, 8.0]
    assert "IndexError" in out.message
    assert runtime_logging.read_runtime_events(limit=10, level="ERROR")[-1]["event"] == "narrative_failed"


def test_blank_text_counts_as_failure(result, local_store, monkeypatch, sleeps):
    monkeypatch.setattr(narrative.requests, "post", lambda *a, **k: _FakeResponse(_ok_payload("   ")))
    out = narrative.generate_narrative(result, api_key="k", max_attempts=2, sleep=sleeps.append)
    assert out.status == "failed"
    assert sleeps == [1.0]


def test_model_and_key_come_from_environment(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "  env-key ")
    monkeypatch.delenv("LEADPNL_GEMINI_MODEL", raising=False)
    assert narrative.configured_api_key() == "env-key"
    assert narrative.configured_model() == narrative.DEFAULT_GEMINI_MODEL
    monkeypatch.setenv("LEADPNL_GEMINI_MODEL", "other-model")
    assert narrative.configured_model() == "other-model"


def test_prompt_mentions_every_line(result):
    prompt = narrative.build_prompt(result)
    for name in ("无创", "个人", "司法"):
        assert name in prompt
    assert "Profit leak diagnosis" in prompt
