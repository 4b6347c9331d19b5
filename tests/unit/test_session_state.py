# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from orchestrator.enums.wake_state import WakeState
from orchestrator.session_state import BoundedIdSet, UtteranceSession


def test_bounded_id_set_evicts_oldest():
    ids = BoundedIdSet(max_size=3)
    for i in range(5):
        ids.add(f"u{i}")

    assert len(ids) == 3
    assert "u0" not in ids and "u1" not in ids
    assert all(f"u{i}" in ids for i in (2, 3, 4))


def test_re_adding_does_not_refresh_position():
    ids = BoundedIdSet(max_size=2)
    ids.add("a")
    ids.add("b")
    ids.add("a")
    ids.add("c")

    assert "a" not in ids
    assert "b" in ids and "c" in ids


def test_bounded_id_set_rejects_zero_size():
    with pytest.raises(ValueError):
        BoundedIdSet(max_size=0)


def test_session_starts_asleep_and_clears_partial():
    session = UtteranceSession(channel="kitchen")
    assert session.wake_state is WakeState.ASLEEP
    assert not session.awake

    session.pending_partial_text = "lights"
    session.pending_partial_id = "u1"
    session.partial_deadline = 12.5
    session.clear_partial()

    assert session.pending_partial_text is None
    assert session.pending_partial_id is None
    assert session.partial_deadline is None
