"""
Rollback executor.

Responsibilities:
- Map each EntitySnapshot to the backend service calls that restore it
- Issue those calls, one entity independently of every other
- Report a restored / failed / skipped tally

Non-responsibilities:
- NO consistency guarantee: entities without a restoration rule, or
  whose snapshot was never captured, keep whatever state speculative
  execution left them in
- NO ordering barrier against mutations still in flight at the backend
- NO state of its own
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from constants import (
    INACTIVE_STATES,
    LIGHT_COLOR_TEMP_MODES,
    LIGHT_RGB_MODES,
    UNRESTORABLE_STATES,
)
from observability.logger import log
from orchestrator.collaborators import EntityStateStore
from orchestrator.generation import EntitySnapshot


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class ServiceCall:
    """One backend invocation: domain.service(data)."""
    domain: str
    service: str
    data: dict[str, Any]


class RestoreOutcome(str, Enum):
    RESTORED = "restored"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RollbackTally:
    """Result of one rollback pass."""
    restored: int = 0
    failed: int = 0
    skipped: int = 0
    failed_entities: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.failed == 0


RestorationRule = Callable[[EntitySnapshot], list[ServiceCall]]


# =============================================================================
# Per-domain restoration rules
# =============================================================================

def _is_inactive(snapshot: EntitySnapshot) -> bool:
    return snapshot.state.lower() in INACTIVE_STATES


def _pick(attributes: Any, *keys: str) -> dict[str, Any]:
    """Copy the present, non-None attributes among keys."""
    return {k: attributes[k] for k in keys if attributes.get(k) is not None}


def _light_color(attrs: Any) -> dict[str, Any]:
    """
    Color attribute for the recorded color_mode.

    The backend reports a derived rgb_color even in color_temp mode, so the
    mode decides. Sending both attributes is rejected; without a recorded
    mode rgb wins.
    """
    mode = attrs.get("color_mode")
    rgb = attrs.get("rgb_color")
    kelvin = attrs.get("color_temp_kelvin")

    if mode is None:
        use_kelvin = rgb is None
    elif mode in LIGHT_COLOR_TEMP_MODES:
        use_kelvin = True
    elif mode in LIGHT_RGB_MODES:
        use_kelvin = False
    else:
        # brightness-only or on/off light
        return {}

    if use_kelvin:
        return {"color_temp_kelvin": kelvin} if kelvin is not None else {}
    return {"rgb_color": list(rgb)} if rgb is not None else {}


def _restore_light(snapshot: EntitySnapshot) -> list[ServiceCall]:
    entity_id = snapshot.entity_id
    if _is_inactive(snapshot):
        return [ServiceCall("light", "turn_off", {"entity_id": entity_id})]

    attrs = snapshot.attributes
    data: dict[str, Any] = {"entity_id": entity_id, **_pick(attrs, "brightness")}
    data.update(_light_color(attrs))
    return [ServiceCall("light", "turn_on", data)]


def _toggle_rule(domain: str, *restorable: str) -> RestorationRule:
    def rule(snapshot: EntitySnapshot) -> list[ServiceCall]:
        entity_id = snapshot.entity_id
        if _is_inactive(snapshot):
            return [ServiceCall(domain, "turn_off", {"entity_id": entity_id})]
        return [ServiceCall(
            domain,
            "turn_on",
            {"entity_id": entity_id, **_pick(snapshot.attributes, *restorable)},
        )]
    return rule


def _restore_media_player(snapshot: EntitySnapshot) -> list[ServiceCall]:
    entity_id = snapshot.entity_id
    if _is_inactive(snapshot):
        return [ServiceCall("media_player", "turn_off", {"entity_id": entity_id})]

    calls = [ServiceCall("media_player", "turn_on", {"entity_id": entity_id})]
    volume = snapshot.attributes.get("volume_level")
    if volume is not None:
        calls.append(ServiceCall(
            "media_player",
            "volume_set",
            {"entity_id": entity_id, "volume_level": volume},
        ))
    return calls


def _restore_climate(snapshot: EntitySnapshot) -> list[ServiceCall]:
    # A climate entity's state is its hvac mode
    entity_id = snapshot.entity_id
    attrs = snapshot.attributes
    hvac_mode = attrs.get("hvac_mode") or snapshot.state

    calls = [ServiceCall(
        "climate",
        "set_hvac_mode",
        {"entity_id": entity_id, "hvac_mode": hvac_mode},
    )]
    if hvac_mode != "off" and attrs.get("temperature") is not None:
        calls.append(ServiceCall(
            "climate",
            "set_temperature",
            {"entity_id": entity_id, "temperature": attrs["temperature"]},
        ))
    return calls


DEFAULT_RULES: dict[str, RestorationRule] = {
    "light": _restore_light,
    "switch": _toggle_rule("switch"),
    "input_boolean": _toggle_rule("input_boolean"),
    "fan": _toggle_rule("fan", "percentage"),
    "media_player": _restore_media_player,
    "climate": _restore_climate,
}


# =============================================================================
# Executor
# =============================================================================

class RollbackExecutor:
    """
    Restores entities from a snapshot ledger.

    Fan-out, best-effort: every entity is restored concurrently and
    independently; one entity's failure never blocks another.
    """

    def __init__(
        self,
        backend: EntityStateStore,
        rules: dict[str, RestorationRule] | None = None,
    ) -> None:
        self._backend = backend
        self._rules = dict(DEFAULT_RULES if rules is None else rules)

    def plan(self, snapshot: EntitySnapshot) -> list[ServiceCall] | None:
        """
        Service calls that restore one snapshot.

        Returns None when the entity cannot be restored (unknown domain
        or a recorded state with nothing to restore).
        """
        if snapshot.state.lower() in UNRESTORABLE_STATES:
            return None
        rule = self._rules.get(snapshot.domain)
        if rule is None:
            return None
        return rule(snapshot)

    async def restore(self, snapshots: Iterable[EntitySnapshot]) -> RollbackTally:
        """Restore every snapshot and return the tally."""
        ordered = list(snapshots)
        outcomes = await asyncio.gather(
            *(self._restore_one(s) for s in ordered)
        )

        failed = tuple(
            s.entity_id
            for s, outcome in zip(ordered, outcomes)
            if outcome is RestoreOutcome.FAILED
        )
        return RollbackTally(
            restored=sum(1 for o in outcomes if o is RestoreOutcome.RESTORED),
            failed=len(failed),
            skipped=sum(1 for o in outcomes if o is RestoreOutcome.SKIPPED),
            failed_entities=failed,
        )

    async def _restore_one(self, snapshot: EntitySnapshot) -> RestoreOutcome:
        calls = self.plan(snapshot)
        if calls is None:
            log(
                "WARN", "ROLLBACK", "Cannot rollback entity; skipping",
                entity_id=snapshot.entity_id,
                domain=snapshot.domain,
                recorded_state=snapshot.state,
            )
            return RestoreOutcome.SKIPPED

        try:
            for call in calls:
                await self._backend.call_service(call.domain, call.service, call.data)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "ERROR", "ROLLBACK", "Failed to rollback entity state",
                entity_id=snapshot.entity_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return RestoreOutcome.FAILED

        log(
            "DEBUG", "ROLLBACK", "Restored entity state",
            entity_id=snapshot.entity_id,
            restored_state=snapshot.state,
            services=[f"{c.domain}.{c.service}" for c in calls],
        )
        return RestoreOutcome.RESTORED
