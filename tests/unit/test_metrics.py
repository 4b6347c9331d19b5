# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from observability import logger
from observability.metrics import timed


def test_timed_emits_one_metric_with_extra_details(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    with timed("rollback", generation_id="gen_1", details={"reason": "user_cancel"}) as extra:
        extra["restored"] = 2

    assert len(captured) == 1
    event = json.loads(captured[0])
    assert event["event_type"] == "METRIC_TIMER"
    assert event["metric"] == "rollback"
    assert event["generation_id"] == "gen_1"
    assert event["details"] == {"reason": "user_cancel", "restored": 2}
    assert event["value_ms"] >= 0


def test_timed_emits_even_when_block_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    with pytest.raises(ValueError):
        with timed("model_call"):
            raise ValueError("boom")

    assert len(captured) == 1
    assert json.loads(captured[0])["metric"] == "model_call"
