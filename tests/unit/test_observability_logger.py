# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger


def _capture(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)
    return captured


def test_log_event_emits_valid_jsonl(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    captured = _capture(monkeypatch)

    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    assert json.loads(captured[0]) == payload


def test_log_event_never_raises_on_unserializable_payload(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured = _capture(monkeypatch)

    logger.log_event({"ts_ms": 1, "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 1


def test_log_builds_leveled_event(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(monkeypatch)
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["INFO"])

    logger.log("info", "GENERATION", "Rollback completed", rollback_failures=0)

    decoded = json.loads(captured[0])
    assert decoded["level"] == "INFO"
    assert decoded["category"] == "GENERATION"
    assert decoded["message"] == "Rollback completed"
    assert decoded["rollback_failures"] == 0
    assert isinstance(decoded["ts_ms"], int)


def test_log_drops_events_below_min_level(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(monkeypatch)
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["INFO"])

    logger.log("DEBUG", "VOICE", "Partial transcription")
    logger.log("WARN", "ROLLBACK", "Cannot rollback entity; skipping")

    assert len(captured) == 1
    assert json.loads(captured[0])["level"] == "WARN"


def test_set_level_accepts_warning_alias(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["INFO"])

    logger.set_level("warning")
    assert logger._min_level == logger.LEVELS["WARN"]  # pylint: disable=protected-access

    logger.set_level("nonsense")
    assert logger._min_level == logger.LEVELS["INFO"]  # pylint: disable=protected-access
