"""
Home control tool catalog.

Responsibilities:
- Describe the tools the model may call (OpenAI function-tool schemas)
- Execute a tool call against the automation backend
- Resolve area targets and drop entities the backend does not know
- Snapshot every targeted entity BEFORE mutating it

Rules:
- Mutating tools: record_operation() -> filter unknown ids ->
  capture_snapshot() -> call_service()
- Tool failures are returned to the model as {"error", "type"} dicts
- asyncio.CancelledError is never caught here
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Mapping

from constants import (
    CLIMATE_STATES,
    COLOR_RGB,
    COLOR_TEMPERATURE_KELVIN,
    MEDIA_PLAYER_ACTIONS,
    TEMPERATURE_MAX_C,
    TEMPERATURE_MIN_C,
)
from observability.logger import log
from orchestrator.collaborators import HomeBackend
from orchestrator.registry import GenerationRegistry


ToolHandler = Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]


def _entity_id(name: str, domain: str) -> str:
    name = str(name).strip()
    if not name:
        raise ValueError("entity name must not be empty")
    return name if "." in name else f"{domain}.{name}"


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise ValueError("expected an entity id or a list of entity ids")


def _area(args: Mapping[str, Any]) -> str:
    area = str(args.get("area") or "").strip()
    if not area:
        raise ValueError("area must not be empty")
    return area


def _function(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_AREA = {"type": "string", "description": "Area/room name, e.g. bedroom"}

_LIGHT_SETTINGS: dict[str, Any] = {
    "state": {"type": "string", "enum": ["on", "off"]},
    "brightness": {"type": "integer", "minimum": 0, "maximum": 255},
    "color": {
        "type": "string",
        "description": f"Color name: {', '.join(COLOR_RGB)}",
    },
    "color_temperature": {
        "type": "string",
        "description": (
            f"Named white ({', '.join(COLOR_TEMPERATURE_KELVIN)}) or Kelvin value"
        ),
    },
}

_TEMPERATURE = {
    "type": "number",
    "minimum": TEMPERATURE_MIN_C,
    "maximum": TEMPERATURE_MAX_C,
}

TOOL_SCHEMAS: list[dict[str, Any]] = [
    _function(
        "set_light_state",
        "Turn one or more lights on or off, optionally with brightness, color or color temperature.",
        {
            "lights": {
                "anyOf": [
                    {"type": "string"},
                    {"type": "array", "items": {"type": "string"}},
                ],
                "description": "entity_id(s) of the light(s), e.g. light.kitchen",
            },
            **_LIGHT_SETTINGS,
        },
        ["lights", "state"],
    ),
    _function(
        "set_light_state_by_area",
        "Control every light in an area/room.",
        {"area": _AREA, **_LIGHT_SETTINGS},
        ["area", "state"],
    ),
    _function(
        "turn_off_all_lights",
        "Turn off every light in the house.",
        {},
        [],
    ),
    _function(
        "set_climate_state",
        "Turn a climate entity (thermostat, HVAC) on or off, or set its HVAC mode.",
        {
            "entity": {"type": "string"},
            "state": {"type": "string", "enum": list(CLIMATE_STATES)},
        },
        ["entity", "state"],
    ),
    _function(
        "set_area_climate_state",
        "Turn every climate entity in an area on or off, or set their HVAC mode.",
        {
            "area": _AREA,
            "state": {"type": "string", "enum": list(CLIMATE_STATES)},
        },
        ["area", "state"],
    ),
    _function(
        "set_temperature",
        "Set the target temperature of a climate entity, in Celsius.",
        {"entity": {"type": "string"}, "temperature": _TEMPERATURE},
        ["entity", "temperature"],
    ),
    _function(
        "set_area_temperature",
        "Set the target temperature of every climate entity in an area, in Celsius.",
        {"area": _AREA, "temperature": _TEMPERATURE},
        ["area", "temperature"],
    ),
    _function(
        "set_media_player_state",
        "Control a media player: power, playback or volume.",
        {
            "entity": {"type": "string"},
            "action": {"type": "string", "enum": list(MEDIA_PLAYER_ACTIONS)},
            "volume_level": {"type": "number", "minimum": 0, "maximum": 1},
        },
        ["entity"],
    ),
    _function(
        "get_entity_state",
        "Read the current state and attributes of one entity.",
        {"entity_id": {"type": "string"}},
        ["entity_id"],
    ),
    _function(
        "get_lights_by_area",
        "List the lights in an area/room.",
        {"area": _AREA},
        ["area"],
    ),
    _function(
        "list_entities",
        "List entities, optionally filtered by domain and/or a name fragment.",
        {
            "domain": {"type": "string", "description": "e.g. light, climate, media_player"},
            "name": {"type": "string"},
        },
        [],
    ),
    _function(
        "no_action_required",
        "Take no action, e.g. when the request is incomplete or nothing here can do it.",
        {},
        [],
    ),
]


class HomeControlTools:
    """ToolCatalog over a Home Assistant-like backend."""

    def __init__(self, *, registry: GenerationRegistry, backend: HomeBackend) -> None:
        self._registry = registry
        self._backend = backend
        self._handlers: dict[str, ToolHandler] = {
            "set_light_state": self.set_light_state,
            "set_light_state_by_area": self.set_light_state_by_area,
            "turn_off_all_lights": self.turn_off_all_lights,
            "set_climate_state": self.set_climate_state,
            "set_area_climate_state": self.set_area_climate_state,
            "set_temperature": self.set_temperature,
            "set_area_temperature": self.set_area_temperature,
            "set_media_player_state": self.set_media_player_state,
            "get_entity_state": self.get_entity_state,
            "get_lights_by_area": self.get_lights_by_area,
            "list_entities": self.list_entities,
            "no_action_required": self.no_action_required,
        }

    def schemas(self) -> list[dict[str, Any]]:
        return TOOL_SCHEMAS

    async def execute(self, name: str, args: Mapping[str, Any] | str) -> dict[str, Any]:
        """Run one tool call; failures come back as an error dict."""
        handler = self._handlers.get(name)
        if handler is None:
            log("WARN", "TOOL", "Unknown tool requested", tool=name)
            return {"error": f"unknown tool: {name}", "type": "UnknownTool"}

        try:
            if isinstance(args, str):
                args = json.loads(args or "{}")
            log("INFO", "TOOL", "Executing tool", tool=name, args=dict(args))
            return await handler(args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "ERROR", "TOOL", "Tool execution failed",
                tool=name,
                error=f"{type(exc).__name__}: {exc}",
            )
            return {"error": str(exc), "type": type(exc).__name__}

    # ------------------------------------------------------------------
    # Lights
    # ------------------------------------------------------------------

    async def set_light_state(self, args: Mapping[str, Any]) -> dict[str, Any]:
        state, data = _light_settings(args)
        entity_ids = [_entity_id(light, "light") for light in _as_list(args.get("lights"))]
        if not entity_ids:
            raise ValueError("no lights given")

        self._registry.record_operation("set_light_state")
        existing, missing = await self._existing("light", entity_ids)
        return await self._control_lights(existing, state, data, skipped=missing)

    async def set_light_state_by_area(self, args: Mapping[str, Any]) -> dict[str, Any]:
        area = _area(args)
        state, data = _light_settings(args)

        self._registry.record_operation("set_light_state_by_area")
        lights = await self._in_area("light", area)
        if not lights:
            return _nothing_in_area("lights", area)

        result = await self._control_lights([_id_of(s) for s in lights], state, data)
        return {"area": area, **result}

    async def turn_off_all_lights(self, args: Mapping[str, Any]) -> dict[str, Any]:
        self._registry.record_operation("turn_off_all_lights")
        entity_ids = [_id_of(s) for s in await self._backend.list_states("light")]
        if not entity_ids:
            log("WARN", "TOOL", "No lights found")
            return {"count": 0, "message": "no lights found"}
        return await self._control_lights(entity_ids, "off", {})

    # ------------------------------------------------------------------
    # Climate
    # ------------------------------------------------------------------

    async def set_climate_state(self, args: Mapping[str, Any]) -> dict[str, Any]:
        state = _climate_state(args)
        entity_id = _entity_id(args.get("entity", ""), "climate")
        service, data = _climate_service(state)

        self._registry.record_operation("set_climate_state")
        await self._require_existing("climate", entity_id)
        await self._registry.capture_snapshot(entity_id)
        await self._backend.call_service("climate", service, {"entity_id": entity_id, **data})
        return {"entity_id": entity_id, "state": state}

    async def set_area_climate_state(self, args: Mapping[str, Any]) -> dict[str, Any]:
        area = _area(args)
        state = _climate_state(args)
        service, data = _climate_service(state)

        self._registry.record_operation("set_area_climate_state")
        entities = await self._in_area("climate", area)
        if not entities:
            return _nothing_in_area("climate entities", area)

        succeeded, failed = await self._mutate_all(
            "climate", service, [_id_of(s) for s in entities], data
        )
        return {"area": area, "state": state, "succeeded": succeeded, "failed": failed}

    async def set_temperature(self, args: Mapping[str, Any]) -> dict[str, Any]:
        entity_id = _entity_id(args.get("entity", ""), "climate")
        temperature = _temperature(args)

        self._registry.record_operation("set_temperature")
        await self._require_existing("climate", entity_id)
        await self._registry.capture_snapshot(entity_id)
        await self._backend.call_service(
            "climate",
            "set_temperature",
            {"entity_id": entity_id, "temperature": temperature},
        )
        return {"entity_id": entity_id, "temperature": temperature}

    async def set_area_temperature(self, args: Mapping[str, Any]) -> dict[str, Any]:
        area = _area(args)
        temperature = _temperature(args)

        self._registry.record_operation("set_area_temperature")
        entities = await self._in_area("climate", area)
        if not entities:
            return _nothing_in_area("climate entities", area)

        succeeded, failed = await self._mutate_all(
            "climate",
            "set_temperature",
            [_id_of(s) for s in entities],
            {"temperature": temperature},
        )
        return {
            "area": area,
            "temperature": temperature,
            "succeeded": succeeded,
            "failed": failed,
        }

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def set_media_player_state(self, args: Mapping[str, Any]) -> dict[str, Any]:
        entity_id = _entity_id(args.get("entity", ""), "media_player")
        action = args.get("action")
        volume = args.get("volume_level")

        if action is None and volume is None:
            raise ValueError("either action or volume_level is required")
        if action is not None and action not in MEDIA_PLAYER_ACTIONS:
            raise ValueError(f"unsupported media player action: {action}")

        self._registry.record_operation("set_media_player_state")
        await self._require_existing("media_player", entity_id)
        await self._registry.capture_snapshot(entity_id)

        if action is not None:
            await self._backend.call_service(
                "media_player", MEDIA_PLAYER_ACTIONS[action], {"entity_id": entity_id}
            )
        if volume is not None:
            volume = max(0.0, min(1.0, float(volume)))
            await self._backend.call_service(
                "media_player",
                "volume_set",
                {"entity_id": entity_id, "volume_level": volume},
            )
        return {"entity_id": entity_id, "action": action, "volume_level": volume}

    # ------------------------------------------------------------------
    # Read-only tools
    # ------------------------------------------------------------------

    async def get_entity_state(self, args: Mapping[str, Any]) -> dict[str, Any]:
        entity_id = str(args.get("entity_id", "")).strip()
        if "." not in entity_id:
            raise ValueError("entity_id must look like <domain>.<name>")
        state = await self._backend.get_state(entity_id)
        return {
            "entity_id": entity_id,
            "state": state.get("state"),
            "attributes": dict(state.get("attributes") or {}),
        }

    async def get_lights_by_area(self, args: Mapping[str, Any]) -> dict[str, Any]:
        area = _area(args)
        lights = [_describe(s) for s in await self._in_area("light", area)]
        return {"area": area, "count": len(lights), "lights": lights}

    async def list_entities(self, args: Mapping[str, Any]) -> dict[str, Any]:
        domain = args.get("domain") or None
        name = str(args.get("name") or "").lower()

        entities = []
        for s in await self._backend.list_states(domain):
            entity = _describe(s)
            if (
                name
                and name not in entity["entity_id"].lower()
                and name not in entity["friendly_name"].lower()
            ):
                continue
            entities.append(entity)
        return {"count": len(entities), "entities": entities}

    async def no_action_required(self, args: Mapping[str, Any]) -> dict[str, Any]:
        log("INFO", "TOOL", "No action taken")
        return {"action": "none"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _control_lights(
        self,
        entity_ids: list[str],
        state: str,
        data: dict[str, Any],
        *,
        skipped: list[str] | None = None,
    ) -> dict[str, Any]:
        skipped = skipped or []
        if not entity_ids:
            log("WARN", "TOOL", "No valid lights found", skipped=skipped)
            return {
                "succeeded": [],
                "failed": {},
                "skipped": skipped,
                "state": state,
                "message": "no valid lights found",
            }

        service = "turn_on" if state == "on" else "turn_off"
        succeeded, failed = await self._mutate_all("light", service, entity_ids, data)
        return {
            "succeeded": succeeded,
            "failed": failed,
            "skipped": skipped,
            "state": state,
            **data,
        }

    async def _mutate_all(
        self,
        domain: str,
        service: str,
        entity_ids: list[str],
        data: dict[str, Any],
    ) -> tuple[list[str], dict[str, str]]:
        """Snapshot every entity, then call the service on each concurrently."""
        await self._capture_all(entity_ids)

        results = await asyncio.gather(
            *(self._call(domain, service, {"entity_id": e, **data}) for e in entity_ids)
        )
        succeeded = [e for e, err in zip(entity_ids, results) if err is None]
        failed = {e: err for e, err in zip(entity_ids, results) if err is not None}

        if failed:
            log(
                "WARN", "TOOL", "Some service calls failed",
                domain=domain,
                service=service,
                succeeded=succeeded,
                failed=failed,
            )
        return succeeded, failed

    async def _existing(
        self,
        domain: str,
        entity_ids: list[str],
    ) -> tuple[list[str], list[str]]:
        """Split entity_ids into (known to the backend, unknown)."""
        known = {_id_of(s) for s in await self._backend.list_states(domain)}
        existing = [e for e in entity_ids if e in known]
        missing = [e for e in entity_ids if e not in known]
        for entity_id in missing:
            log("WARN", "TOOL", "Skipping non-existent entity", entity_id=entity_id)
        return existing, missing

    async def _require_existing(self, domain: str, entity_id: str) -> None:
        existing, _ = await self._existing(domain, [entity_id])
        if not existing:
            raise LookupError(f"unknown entity: {entity_id}")

    async def _in_area(self, domain: str, area: str) -> list[Mapping[str, Any]]:
        """Entities of `domain` whose area name contains `area` (case-insensitive)."""
        wanted = area.lower()
        states = await self._backend.list_states(domain)
        areas = await asyncio.gather(*(self._area_of(_id_of(s)) for s in states))
        matched = [s for s, name in zip(states, areas) if name and wanted in name.lower()]

        log(
            "DEBUG", "TOOL", "Resolved area",
            domain=domain,
            area=area,
            entity_ids=[_id_of(s) for s in matched],
        )
        return matched

    async def _area_of(self, entity_id: str) -> str | None:
        try:
            return await self._backend.get_area(entity_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "WARN", "TOOL", "Area lookup failed",
                entity_id=entity_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return None

    async def _capture_all(self, entity_ids: list[str]) -> None:
        await asyncio.gather(*(self._registry.capture_snapshot(e) for e in entity_ids))

    async def _call(self, domain: str, service: str, data: dict[str, Any]) -> str | None:
        """Call one service; returns the error text, None on success."""
        try:
            await self._backend.call_service(domain, service, data)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "ERROR", "TOOL", "Service call failed",
                domain=domain,
                service=service,
                entity_id=data.get("entity_id"),
                error=f"{type(exc).__name__}: {exc}",
            )
            return str(exc)
        return None


# ---------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------

def _light_settings(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    state = args.get("state")
    if state not in ("on", "off"):
        raise ValueError("state must be 'on' or 'off'")

    data: dict[str, Any] = {}
    if state == "on":
        if args.get("brightness") is not None:
            data["brightness"] = max(0, min(255, int(args["brightness"])))
        if args.get("color"):
            data["rgb_color"] = list(_resolve_color(str(args["color"])))
        elif args.get("color_temperature"):
            data["color_temp_kelvin"] = _resolve_kelvin(args["color_temperature"])
    return state, data


def _climate_state(args: Mapping[str, Any]) -> str:
    state = args.get("state")
    if state not in CLIMATE_STATES:
        raise ValueError(f"state must be one of {', '.join(CLIMATE_STATES)}")
    return state


def _climate_service(state: str) -> tuple[str, dict[str, Any]]:
    if state in ("on", "off"):
        return f"turn_{state}", {}
    return "set_hvac_mode", {"hvac_mode": state}


def _temperature(args: Mapping[str, Any]) -> float:
    temperature = float(args["temperature"])
    if not TEMPERATURE_MIN_C <= temperature <= TEMPERATURE_MAX_C:
        raise ValueError(
            f"temperature must be between {TEMPERATURE_MIN_C} and {TEMPERATURE_MAX_C}"
        )
    return temperature


def _id_of(state: Mapping[str, Any]) -> str:
    return str(state.get("entity_id", ""))


def _describe(state: Mapping[str, Any]) -> dict[str, Any]:
    entity_id = _id_of(state)
    return {
        "entity_id": entity_id,
        "friendly_name": str((state.get("attributes") or {}).get("friendly_name") or entity_id),
        "state": state.get("state"),
    }


def _nothing_in_area(kind: str, area: str) -> dict[str, Any]:
    log("WARN", "TOOL", "Nothing to control in area", kind=kind, area=area)
    return {"area": area, "count": 0, "message": f"no {kind} found in area {area!r}"}


def _resolve_color(name: str) -> tuple[int, int, int]:
    rgb = COLOR_RGB.get(name.strip().lower())
    if rgb is None:
        raise ValueError(f"unknown color: {name}")
    return rgb


def _resolve_kelvin(value: Any) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    if text in COLOR_TEMPERATURE_KELVIN:
        return COLOR_TEMPERATURE_KELVIN[text]
    try:
        return int(text.rstrip("k"))
    except ValueError as exc:
        raise ValueError(f"unknown color temperature: {value}") from exc
