"""
Home Assistant REST adapter.

Responsibilities:
- Read entity state (GET /api/states[/<entity_id>])
- Invoke services (POST /api/services/<domain>/<service>)
- Resolve an entity's area (POST /api/template)
- Normalize transport and API failures into HomeAssistantError

Non-responsibilities:
- NO snapshotting or rollback (orchestrator)
- NO retries: callers decide whether a failure matters
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from constants import HA_CONNECT_TIMEOUT_S, HA_READ_TIMEOUT_S
from observability.logger import log

# Rendered by Home Assistant; an entity with no area renders as "None"
AREA_TEMPLATE = "{{{{ area_name('{entity_id}') }}}}"


class HomeAssistantError(Exception):
    """Transport failure or non-2xx response from Home Assistant."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HomeAssistantClient:
    """
    Thin async client over the Home Assistant REST API.

    One instance per process; owns its httpx.AsyncClient until aclose().
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(HA_READ_TIMEOUT_S, connect=HA_CONNECT_TIMEOUT_S),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_state(self, entity_id: str) -> Mapping[str, Any]:
        data = await self._request("GET", f"/api/states/{entity_id}")
        if not isinstance(data, Mapping):
            raise HomeAssistantError(f"unexpected state payload for {entity_id}")
        return data

    async def list_states(self, domain: str | None = None) -> list[Mapping[str, Any]]:
        """All entity states, optionally restricted to one domain."""
        data = await self._request("GET", "/api/states")
        if not isinstance(data, list):
            raise HomeAssistantError("unexpected states payload")
        if domain is None:
            return data
        prefix = f"{domain}."
        return [s for s in data if str(s.get("entity_id", "")).startswith(prefix)]

    async def call_service(
        self,
        domain: str,
        service: str,
        data: Mapping[str, Any],
    ) -> Any:
        log(
            "DEBUG", "HA", "Calling Home Assistant service",
            domain=domain,
            service=service,
            data=dict(data),
        )
        return await self._request("POST", f"/api/services/{domain}/{service}", json=dict(data))

    async def get_area(self, entity_id: str) -> str | None:
        """Area name of an entity, None if it has none."""
        response = await self._send(
            "POST",
            "/api/template",
            json={"template": AREA_TEMPLATE.format(entity_id=entity_id)},
        )
        area = response.text.strip()
        if not area or area == "None":
            return None
        return area

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if not response.content:
            return None
        return response.json()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            log(
                "ERROR", "HA", "Home Assistant request failed",
                method=method,
                path=path,
                error=f"{type(exc).__name__}: {exc}",
            )
            raise HomeAssistantError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            log(
                "ERROR", "HA", "Home Assistant returned an error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise HomeAssistantError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response
