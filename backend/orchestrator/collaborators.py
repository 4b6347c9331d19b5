"""
Collaborator contracts consumed by the orchestrator.

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state

Concrete implementations live in adapters/ (Home Assistant REST,
OpenAI tool loop) and services/ (tool catalog). Tests provide fakes.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable


# ---------------------------------------------------------------------
# Automation backend
# ---------------------------------------------------------------------

@runtime_checkable
class EntityStateStore(Protocol):
    """
    Request/response access to the automation backend.

    get_state() returns a mapping with at least "state" and
    "attributes". Both calls raise on transport or API failure.
    """

    async def get_state(self, entity_id: str) -> Mapping[str, Any]: ...

    async def call_service(
        self,
        domain: str,
        service: str,
        data: Mapping[str, Any],
    ) -> Any: ...


@runtime_checkable
class HomeBackend(EntityStateStore, Protocol):
    """
    State store that can also enumerate entities and name their area.

    get_area() returns None for an entity assigned to no area.
    """

    async def list_states(self, domain: str | None = None) -> list[Mapping[str, Any]]: ...

    async def get_area(self, entity_id: str) -> str | None: ...


# ---------------------------------------------------------------------
# Model invocation
# ---------------------------------------------------------------------

@runtime_checkable
class ToolCatalog(Protocol):
    """Tools the model may call; execute() never raises except on cancellation."""

    def schemas(self) -> list[dict[str, Any]]: ...

    async def execute(self, name: str, args: Mapping[str, Any]) -> dict[str, Any]: ...


@runtime_checkable
class ModelInvoker(Protocol):
    """
    Long-running model call.

    Cancellation is delivered by cancelling the asyncio task awaiting
    invoke(); implementations must let asyncio.CancelledError propagate.
    """

    async def invoke(self, text: str, catalog: ToolCatalog) -> str: ...


# ---------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------

class CancelHandle(Protocol):
    """Anything with a best-effort cancel(); asyncio.Task qualifies."""

    def cancel(self, msg: Any = None) -> bool: ...
