import asyncio

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from tests.host_helpers import HOST_ORIGIN, VALID_TOKEN, token_message
from widgetbridge.app import WidgetBridge, create_app
from widgetbridge.bus import MemoryMessageBus


def _wait_then_request(bridge: WidgetBridge):
    async def request() -> str:
        for _ in range(500):
            if bridge.bus.embedded:
                break
            await asyncio.sleep(0.01)
        return await bridge.channel.get_token()

    return request


def test_health_response_format(security_config) -> None:
    bridge = WidgetBridge(config=security_config)

    with TestClient(create_app(bridge)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["version"] == "0.1.0"
    assert payload["embedded"] is False
    assert payload["auth_state"] == {
        "status": "idle",
        "last_validated_at": None,
        "error": None,
    }


def test_static_url_token_skips_message_flow(security_config) -> None:
    bridge = WidgetBridge(
        config=security_config,
        page_url="https://widget.example.com/embed?token=url-static-token",
    )

    assert bridge.static_token == "url-static-token"
    assert bridge.channel.attached is False
    asyncio.run(bridge.api_client.aclose())


def test_websocket_host_round_trip(security_config) -> None:
    bridge = WidgetBridge(config=security_config)
    app = create_app(bridge)

    with TestClient(app) as client:
        with client.websocket_connect("/bridge", headers={"origin": HOST_ORIGIN}) as websocket:
            pending = client.portal.start_task_soon(_wait_then_request(bridge))

            message = websocket.receive_json()
            while message["type"] != "REQUEST_TOKEN":
                message = websocket.receive_json()
            websocket.send_json(token_message(message["nonce"]))

            assert pending.result(timeout=5) == VALID_TOKEN
            assert client.get("/health").json()["auth_state"]["status"] == "authenticated"


def test_malformed_frames_do_not_drop_the_host(security_config) -> None:
    bridge = WidgetBridge(config=security_config)

    with TestClient(create_app(bridge)) as client:
        with client.websocket_connect("/bridge", headers={"origin": HOST_ORIGIN}) as websocket:
            pending = client.portal.start_task_soon(_wait_then_request(bridge))

            message = websocket.receive_json()
            while message["type"] != "REQUEST_TOKEN":
                message = websocket.receive_json()
            websocket.send_bytes(b"\x00\x01")
            websocket.send_text("not json")
            websocket.send_json(token_message(message["nonce"]))

            assert pending.result(timeout=5) == VALID_TOKEN
            assert bridge.bus.embedded is True


def test_memory_bus_bridge_refuses_websocket(security_config) -> None:
    widget_bus, _host_bus = MemoryMessageBus.pair()
    bridge = WidgetBridge(config=security_config, bus=widget_bus)

    with TestClient(create_app(bridge)) as client:
        assert client.get("/health").json()["embedded"] is True
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/bridge"):
                pass
    assert excinfo.value.code == 1011
