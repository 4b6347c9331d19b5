# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from fakes import FakeBackend, NullCatalog, ScriptedInvoker, light
from orchestrator.enums.wake_state import WakeState
from orchestrator.events import TranscriptionEvent
from orchestrator.registry import GenerationRegistry
from orchestrator.utterance_machine import UtteranceStateMachine
from services.home_control import HomeControlTools

CHANNEL = "kitchen"


def partial(utterance_id: str, text: str) -> TranscriptionEvent:
    return TranscriptionEvent.partial(CHANNEL, utterance_id, text)


def boundary(utterance_id: str, text: str) -> TranscriptionEvent:
    return TranscriptionEvent.boundary(CHANNEL, utterance_id, text)


def build(backend=None, invoker=None, **kwargs):
    backend = backend or FakeBackend()
    registry = GenerationRegistry(backend)
    machine = UtteranceStateMachine(
        registry=registry,
        invoker=invoker or ScriptedInvoker(),
        catalog=HomeControlTools(registry=registry, backend=backend),
        **{"partial_timeout_ms": 20, "wake_timeout_ms": 5_000, **kwargs},
    )
    return machine, registry


async def lights_on(text, catalog):
    if "bedroom" in text:
        await catalog.execute("set_light_state", {"lights": ["light.bedroom"], "state": "on"})
    elif "lights" in text:
        await catalog.execute(
            "set_light_state", {"lights": ["light.l1", "light.l2"], "state": "on"}
        )


def house():
    return FakeBackend({
        "light.l1": light("off"),
        "light.l2": light("off"),
        "light.bedroom": light("off"),
    })


# ----------------------------------------------------------------------
# Wake gate
# ----------------------------------------------------------------------

def test_wake_word_and_command_in_one_boundary():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, registry = build(invoker=invoker)

        task = await machine.handle_event(boundary("u1", "Polly, lights off"))
        reply = await task
        return machine, registry, invoker, reply

    machine, registry, invoker, reply = asyncio.run(scenario())

    assert invoker.calls == ["lights off"]
    assert reply == "done: lights off"
    assert registry.active() is None
    assert machine.wake_state(CHANNEL) is WakeState.ASLEEP


def test_command_without_wake_word_is_ignored_while_asleep():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)
        task = await machine.handle_event(boundary("u1", "lights off"))
        return task, invoker

    task, invoker = asyncio.run(scenario())

    assert task is None
    assert invoker.calls == []


def test_wake_word_alone_then_command():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        first = await machine.handle_event(boundary("u1", "polly"))
        state_after_wake = machine.wake_state(CHANNEL)
        second = await machine.handle_event(boundary("u2", "lights off"))
        await second
        return first, state_after_wake, invoker

    first, state_after_wake, invoker = asyncio.run(scenario())

    assert first is None
    assert state_after_wake is WakeState.AWAKE
    assert invoker.calls == ["lights off"]


def test_wake_timeout_puts_channel_back_to_sleep():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker, wake_timeout_ms=30)

        await machine.handle_event(boundary("u1", "polly"))
        await asyncio.sleep(0.15)
        state = machine.wake_state(CHANNEL)
        task = await machine.handle_event(boundary("u2", "lights off"))
        return state, task, invoker

    state, task, invoker = asyncio.run(scenario())

    assert state is WakeState.ASLEEP
    assert task is None
    assert invoker.calls == []


def test_one_wake_one_command():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        await (await machine.handle_event(boundary("u1", "polly lights off")))
        task = await machine.handle_event(boundary("u2", "fan on"))
        return task, invoker

    task, invoker = asyncio.run(scenario())

    assert task is None
    assert invoker.calls == ["lights off"]


def test_empty_wake_word_is_rejected():
    with pytest.raises(ValueError):
        UtteranceStateMachine(
            registry=GenerationRegistry(FakeBackend()),
            invoker=ScriptedInvoker(),
            catalog=NullCatalog(),
            wake_word="  ",
        )


# ----------------------------------------------------------------------
# De-duplication
# ----------------------------------------------------------------------

def test_repeated_boundary_for_same_utterance_is_ignored():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        await (await machine.handle_event(boundary("u1", "polly lights off")))
        await asyncio.sleep(0.05)
        again = await machine.handle_event(boundary("u1", "polly lights off"))
        return again, invoker

    again, invoker = asyncio.run(scenario())

    assert again is None
    assert invoker.calls == ["lights off"]


def test_seen_ids_are_bounded():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker, seen_ids_max=2)

        for uid in ("u1", "u2", "u3"):
            await (await machine.handle_event(boundary(uid, f"polly command {uid}")))
        replay = await machine.handle_event(boundary("u1", "polly command u1"))
        await replay
        return invoker

    invoker = asyncio.run(scenario())

    assert invoker.calls == ["command u1", "command u2", "command u3", "command u1"]


# ----------------------------------------------------------------------
# Partial promotion and continuation
# ----------------------------------------------------------------------

def test_partial_is_promoted_after_timeout():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        assert await machine.handle_event(partial("u1", "polly turn the")) is None
        assert await machine.handle_event(partial("u1", "polly turn the lights off")) is None
        await asyncio.sleep(0.1)
        await machine.wait_idle()
        return invoker

    invoker = asyncio.run(scenario())

    assert invoker.calls == ["turn the lights off"]


def test_partials_are_not_promoted_when_disabled():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker, use_partial_results=False)

        await machine.handle_event(partial("u1", "polly turn the lights off"))
        await asyncio.sleep(0.1)
        task = await machine.handle_event(boundary("u1", "polly turn the lights off"))
        await task
        return invoker

    invoker = asyncio.run(scenario())

    assert invoker.calls == ["turn the lights off"]


def test_partials_without_wake_word_are_ignored_while_asleep():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        await machine.handle_event(partial("u1", "turn the lights off"))
        await asyncio.sleep(0.1)
        return machine, invoker

    machine, invoker = asyncio.run(scenario())

    assert invoker.calls == []
    assert machine.session(CHANNEL).pending_partial_text is None


def test_continuation_rolls_back_speculative_command():
    """A longer final transcript undoes what the promoted partial did."""
    async def scenario():
        backend = house()
        gate = asyncio.Event()
        invoker = ScriptedInvoker(lights_on, gate=gate)
        machine, registry = build(backend, invoker)

        await machine.handle_event(partial("u1", "polly turn the lights on"))
        await asyncio.sleep(0.1)
        speculative = machine.in_flight
        states_during = (backend.state_of("light.l1"), backend.state_of("light.l2"))

        invoker.gate = None
        task = await machine.handle_event(
            boundary("u1", "polly turn the lights on in the bedroom")
        )
        reply = await task
        return backend, registry, invoker, speculative, states_during, reply

    backend, registry, invoker, speculative, states_during, reply = asyncio.run(scenario())

    assert states_during == ("on", "on")
    assert speculative.result() is None
    assert invoker.calls == ["turn the lights on", "turn the lights on in the bedroom"]
    assert reply == "done: turn the lights on in the bedroom"
    assert backend.state_of("light.l1") == "off"
    assert backend.state_of("light.l2") == "off"
    assert backend.state_of("light.bedroom") == "on"
    assert registry.last_rollback.restored == 2
    assert registry.active() is None


def test_matching_boundary_confirms_speculative_command():
    async def scenario():
        backend = house()
        gate = asyncio.Event()
        invoker = ScriptedInvoker(lights_on, gate=gate)
        machine, registry = build(backend, invoker)

        await machine.handle_event(partial("u1", "polly turn the lights on"))
        await asyncio.sleep(0.1)
        task = await machine.handle_event(boundary("u1", "polly turn the lights on."))
        gate.set()
        await machine.wait_idle()
        return backend, registry, invoker, task

    backend, registry, invoker, task = asyncio.run(scenario())

    assert task is None
    assert invoker.calls == ["turn the lights on"]
    assert backend.state_of("light.l1") == "on"
    assert registry.last_rollback is None


def test_correction_after_speculative_command_finished_runs_without_rollback():
    async def scenario():
        backend = house()
        invoker = ScriptedInvoker(lights_on)
        machine, registry = build(backend, invoker)

        await machine.handle_event(partial("u1", "polly turn the lights on"))
        await asyncio.sleep(0.1)
        await machine.wait_idle()

        task = await machine.handle_event(
            boundary("u1", "polly turn the lights on in the bedroom")
        )
        await task
        return backend, registry, invoker

    backend, registry, invoker = asyncio.run(scenario())

    assert invoker.calls == ["turn the lights on", "turn the lights on in the bedroom"]
    assert registry.last_rollback is None
    assert backend.state_of("light.l1") == "on"
    assert backend.state_of("light.bedroom") == "on"


# ----------------------------------------------------------------------
# Supersede, cancel, failures
# ----------------------------------------------------------------------

def test_new_command_supersedes_in_flight_one_without_rollback():
    async def scenario():
        backend = house()
        gate = asyncio.Event()
        invoker = ScriptedInvoker(lights_on, gate=gate)
        machine, registry = build(backend, invoker)

        first = await machine.handle_event(boundary("u1", "polly turn the lights on"))
        await asyncio.sleep(0.05)
        invoker.gate = None
        second = await machine.handle_event(boundary("u2", "polly what's the time"))
        return backend, registry, await first, await second

    backend, registry, first, second = asyncio.run(scenario())

    assert first is None
    assert second == "done: what's the time"
    assert backend.state_of("light.l1") == "on"
    assert registry.last_rollback is None
    assert registry.active() is None


def test_explicit_cancel_rolls_back_and_swallows_cancellation():
    async def scenario():
        backend = house()
        invoker = ScriptedInvoker(lights_on, gate=asyncio.Event())
        machine, registry = build(backend, invoker)

        task = await machine.handle_event(boundary("u1", "polly turn the lights on"))
        await asyncio.sleep(0.05)
        ok = await machine.cancel()
        reply = await task
        return backend, registry, ok, reply

    backend, registry, ok, reply = asyncio.run(scenario())

    assert ok is True
    assert reply is None
    assert backend.state_of("light.l1") == "off"
    assert registry.active() is None


def test_cancel_with_nothing_in_flight_returns_false():
    async def scenario():
        machine, _ = build()
        return await machine.cancel()

    assert asyncio.run(scenario()) is False


def test_model_failure_propagates_to_awaiter_and_detaches_generation():
    async def scenario():
        invoker = ScriptedInvoker(error=RuntimeError("model exploded"))
        machine, registry = build(invoker=invoker)

        task = await machine.handle_event(boundary("u1", "polly lights off"))
        with pytest.raises(RuntimeError, match="model exploded"):
            await task
        return machine, registry

    machine, registry = asyncio.run(scenario())

    assert registry.active() is None
    assert machine.in_flight is None


def test_submit_command_bypasses_wake_gate_and_dedups():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        first = await machine.submit_command("  lights off ", utterance_id="ios_1")
        again = await machine.submit_command("lights off", utterance_id="ios_1")
        return first, again, invoker

    first, again, invoker = asyncio.run(scenario())

    assert first == "done: lights off"
    assert again is None
    assert invoker.calls == ["lights off"]


def test_channels_have_independent_wake_state():
    async def scenario():
        invoker = ScriptedInvoker()
        machine, _ = build(invoker=invoker)

        await machine.handle_event(TranscriptionEvent.boundary("a", "u1", "polly"))
        task = await machine.handle_event(TranscriptionEvent.boundary("b", "u2", "lights off"))
        return machine, task

    machine, task = asyncio.run(scenario())

    assert machine.wake_state("a") is WakeState.AWAKE
    assert machine.wake_state("b") is WakeState.ASLEEP
    assert task is None


def test_same_utterance_id_on_another_channel_is_not_a_continuation():
    async def scenario():
        backend = house()
        invoker = ScriptedInvoker(lights_on, gate=asyncio.Event())
        machine, registry = build(backend, invoker)

        await machine.handle_event(TranscriptionEvent.partial("a", "1", "polly turn the lights on"))
        await asyncio.sleep(0.1)
        speculative = machine.in_flight

        invoker.gate = None
        task = await machine.handle_event(
            TranscriptionEvent.boundary("b", "1", "polly what time is it")
        )
        reply = await task
        return backend, registry, await speculative, reply

    backend, registry, speculative_reply, reply = asyncio.run(scenario())

    assert speculative_reply is None
    assert reply == "done: what time is it"
    assert registry.last_rollback is None
    assert backend.state_of("light.l1") == "on"
    assert backend.state_of("light.l2") == "on"


def test_shutdown_cancels_timers_and_in_flight_command():
    async def scenario():
        invoker = ScriptedInvoker(gate=asyncio.Event())
        machine, registry = build(invoker=invoker)

        task = await machine.handle_event(boundary("u1", "polly lights off"))
        await machine.handle_event(TranscriptionEvent.boundary("b", "u2", "polly"))
        await machine.shutdown()
        return registry, task

    registry, task = asyncio.run(scenario())

    assert task.done()
    assert task.result() is None
    assert registry.active() is None
