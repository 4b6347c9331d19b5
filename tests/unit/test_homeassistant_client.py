# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json

import httpx
import pytest

from adapters.homeassistant.client import HomeAssistantClient, HomeAssistantError
from orchestrator.collaborators import HomeBackend

STATES = [
    {"entity_id": "light.kitchen", "state": "on", "attributes": {"brightness": 200}},
    {"entity_id": "switch.kettle", "state": "off", "attributes": {}},
]


def handler(request: httpx.Request) -> httpx.Response:
    if request.headers.get("Authorization") != "Bearer secret":
        return httpx.Response(401, text="unauthorized")

    path = request.url.path
    if request.method == "GET" and path == "/api/states":
        return httpx.Response(200, json=STATES)
    if request.method == "GET" and path == "/api/states/light.kitchen":
        return httpx.Response(200, json=STATES[0])
    if request.method == "GET" and path.startswith("/api/states/"):
        return httpx.Response(404, json={"message": "Entity not found."})
    if request.method == "POST" and path == "/api/services/light/turn_off":
        return httpx.Response(200, json=[{"echo": json.loads(request.content)}])
    if request.method == "POST" and path == "/api/template":
        template = json.loads(request.content)["template"]
        area = "Kitchen\n" if "area_name('light.kitchen')" in template else "None"
        return httpx.Response(200, text=area)
    return httpx.Response(500)


def run_with_client(fn, token="secret"):
    async def scenario():
        client = HomeAssistantClient(
            base_url="http://ha.test:8123/",
            token=token,
            transport=httpx.MockTransport(handler),
        )
        try:
            return await fn(client)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def test_get_state():
    state = run_with_client(lambda c: c.get_state("light.kitchen"))

    assert state["state"] == "on"
    assert state["attributes"]["brightness"] == 200


def test_list_states_filters_by_domain():
    lights = run_with_client(lambda c: c.list_states("light"))
    everything = run_with_client(lambda c: c.list_states())

    assert [s["entity_id"] for s in lights] == ["light.kitchen"]
    assert len(everything) == 2


def test_call_service_posts_data():
    result = run_with_client(
        lambda c: c.call_service("light", "turn_off", {"entity_id": "light.kitchen"})
    )

    assert result == [{"echo": {"entity_id": "light.kitchen"}}]


def test_get_area_renders_area_name_template():
    kitchen = run_with_client(lambda c: c.get_area("light.kitchen"))
    kettle = run_with_client(lambda c: c.get_area("switch.kettle"))

    assert kitchen == "Kitchen"
    assert kettle is None


def test_client_is_a_home_backend():
    async def scenario():
        client = HomeAssistantClient(base_url="http://ha.test", token="secret")
        try:
            return isinstance(client, HomeBackend)
        finally:
            await client.aclose()

    assert asyncio.run(scenario()) is True


def test_error_status_raises_home_assistant_error():
    with pytest.raises(HomeAssistantError) as info:
        run_with_client(lambda c: c.get_state("light.missing"))

    assert info.value.status_code == 404


def test_bad_token_raises_home_assistant_error():
    with pytest.raises(HomeAssistantError) as info:
        run_with_client(lambda c: c.get_state("light.kitchen"), token="wrong")

    assert info.value.status_code == 401


def test_transport_failure_raises_home_assistant_error():
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        client = HomeAssistantClient(
            base_url="http://ha.test:8123",
            token="secret",
            transport=httpx.MockTransport(broken),
        )
        try:
            await client.get_state("light.kitchen")
        finally:
            await client.aclose()

    with pytest.raises(HomeAssistantError) as info:
        asyncio.run(scenario())

    assert info.value.status_code is None
