# pylint: disable=missing-module-docstring,missing-function-docstring

import re

import pytest

from orchestrator.errors import GenerationRetiredError
from orchestrator.generation import EntitySnapshot, Generation, entity_domain


def snap(entity_id: str, state: str) -> EntitySnapshot:
    return EntitySnapshot(entity_id=entity_id, state=state, attributes={}, captured_at=0)


def test_generation_ids_are_unique_and_prefixed():
    a = Generation(utterance_id="u1", text="lights on")
    b = Generation(utterance_id="u1", text="lights on")

    assert a.id != b.id
    assert re.fullmatch(r"gen_\d+_[0-9a-f]{9}", a.id)


def test_first_snapshot_per_entity_wins():
    generation = Generation(utterance_id="u1", text="lights on")

    assert generation.add_snapshot(snap("light.a", "off"))
    assert not generation.add_snapshot(snap("light.a", "on"))

    assert [s.state for s in generation.snapshots] == ["off"]


def test_ledger_keeps_capture_order():
    generation = Generation(utterance_id="u1", text="lights on")
    generation.add_snapshot(snap("light.b", "off"))
    generation.add_snapshot(snap("light.a", "off"))

    assert [s.entity_id for s in generation.snapshots] == ["light.b", "light.a"]


def test_retired_generation_refuses_writes():
    generation = Generation(utterance_id="u1", text="lights on")
    generation.retire()

    with pytest.raises(GenerationRetiredError):
        generation.add_snapshot(snap("light.a", "off"))
    with pytest.raises(GenerationRetiredError):
        generation.add_operation("set_light_state")


def test_entity_domain():
    assert entity_domain("media_player.lounge") == "media_player"
    assert snap("climate.hall", "heat").domain == "climate"
