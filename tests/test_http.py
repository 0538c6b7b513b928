import httpx
import pytest

from auth.channel import AuthChannel
from tests.host_helpers import REFRESHED_TOKEN, VALID_TOKEN, FakeHost
from widgetbridge.bus import MemoryMessageBus
from widgetbridge.http import RETRIED_EXTENSION, TokenAuthTransport, WidgetApi, create_api_client


class TokenRecorder:
    def __init__(self, tokens: list[str], *, error: Exception | None = None) -> None:
        self._tokens = list(tokens)
        self._error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._tokens.pop(0)


def _make_handler(statuses: list[int]):
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        index = len(seen)
        seen.append(request)
        status = statuses[min(index, len(statuses) - 1)]
        return httpx.Response(status, request=request, json={"status": status})

    return handler, seen


def _client(handler, **kwargs) -> httpx.AsyncClient:
    transport = TokenAuthTransport(httpx.MockTransport(handler), **kwargs)
    return httpx.AsyncClient(base_url="https://api.example.com", transport=transport)


@pytest.mark.asyncio
async def test_attaches_bearer_token() -> None:
    handler, seen = _make_handler([200])
    get_token = TokenRecorder([VALID_TOKEN])

    async with _client(handler, get_token=get_token) as client:
        response = await client.get("/companies")

    assert response.status_code == 200
    assert seen[0].headers["authorization"] == f"Bearer {VALID_TOKEN}"
    assert get_token.calls == 1


@pytest.mark.asyncio
async def test_static_token_wins() -> None:
    handler, seen = _make_handler([200])
    get_token = TokenRecorder([VALID_TOKEN])

    async with _client(handler, get_token=get_token, static_token="url-static-token") as client:
        await client.get("/companies")

    assert seen[0].headers["authorization"] == "Bearer url-static-token"
    assert get_token.calls == 0


@pytest.mark.asyncio
async def test_401_refreshes_once_and_replays() -> None:
    handler, seen = _make_handler([401, 200])
    get_token = TokenRecorder([VALID_TOKEN])
    refresh_token = TokenRecorder([REFRESHED_TOKEN])

    async with _client(handler, get_token=get_token, refresh_token=refresh_token) as client:
        response = await client.get("/members/me", params={"page": "2"})

    assert response.status_code == 200
    assert refresh_token.calls == 1
    assert len(seen) == 2
    assert seen[0].headers["authorization"] == f"Bearer {VALID_TOKEN}"
    assert seen[1].headers["authorization"] == f"Bearer {REFRESHED_TOKEN}"
    assert seen[1].method == "GET"
    assert seen[1].url == seen[0].url
    assert seen[1].extensions[RETRIED_EXTENSION] is True


@pytest.mark.asyncio
async def test_second_401_is_returned_unchanged() -> None:
    handler, seen = _make_handler([401, 401, 200])
    refresh_token = TokenRecorder([REFRESHED_TOKEN])

    async with _client(
        handler, get_token=TokenRecorder([VALID_TOKEN]), refresh_token=refresh_token
    ) as client:
        response = await client.get("/members/me")

    assert response.status_code == 401
    assert refresh_token.calls == 1
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_refresh_failure_propagates() -> None:
    handler, seen = _make_handler([401, 200])
    refresh_token = TokenRecorder([], error=RuntimeError("Token request timeout"))

    async with _client(
        handler, get_token=TokenRecorder([VALID_TOKEN]), refresh_token=refresh_token
    ) as client:
        with pytest.raises(RuntimeError, match="Token request timeout"):
            await client.get("/members/me")

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_static_token_401_is_not_refreshed() -> None:
    handler, seen = _make_handler([401, 200])
    refresh_token = TokenRecorder([REFRESHED_TOKEN])

    async with _client(
        handler, static_token="url-static-token", refresh_token=refresh_token
    ) as client:
        response = await client.get("/members/me")

    assert response.status_code == 401
    assert refresh_token.calls == 0
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_pre_marked_request_is_not_retried() -> None:
    handler, seen = _make_handler([401, 200])
    refresh_token = TokenRecorder([REFRESHED_TOKEN])

    async with _client(
        handler, get_token=TokenRecorder([VALID_TOKEN]), refresh_token=refresh_token
    ) as client:
        request = client.build_request(
            "GET", "/members/me", extensions={RETRIED_EXTENSION: True}
        )
        response = await client.send(request)

    assert response.status_code == 401
    assert refresh_token.calls == 0


@pytest.mark.asyncio
async def test_get_token_failure_sends_unauthenticated() -> None:
    handler, seen = _make_handler([200])
    get_token = TokenRecorder([], error=RuntimeError("Not running inside an embedding host."))

    async with _client(handler, get_token=get_token) as client:
        response = await client.get("/companies")

    assert response.status_code == 200
    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_non_auth_errors_pass_through() -> None:
    handler, seen = _make_handler([500])
    refresh_token = TokenRecorder([REFRESHED_TOKEN])

    async with _client(
        handler, get_token=TokenRecorder([VALID_TOKEN]), refresh_token=refresh_token
    ) as client:
        response = await client.get("/companies")

    assert response.status_code == 500
    assert refresh_token.calls == 0
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_post_body_is_replayed() -> None:
    handler, seen = _make_handler([401, 201])

    async with _client(
        handler,
        get_token=TokenRecorder([VALID_TOKEN]),
        refresh_token=TokenRecorder([REFRESHED_TOKEN]),
    ) as client:
        response = await client.post("/companies", json={"name": "Acme"})

    assert response.status_code == 201
    assert seen[0].content == seen[1].content == b'{"name":"Acme"}'


@pytest.mark.asyncio
async def test_create_api_client_defaults() -> None:
    handler, seen = _make_handler([200])

    client = create_api_client(
        base_url="https://api.example.com",
        get_token=TokenRecorder([VALID_TOKEN]),
        transport=httpx.MockTransport(handler),
        debug_enabled=True,
    )
    async with client:
        await WidgetApi(client).companies()

    assert str(seen[0].url) == "https://api.example.com/companies"
    assert seen[0].headers["content-type"] == "application/json"
    assert client.timeout.read == 30


@pytest.mark.asyncio
async def test_401_with_auth_channel_refreshes_exactly_once(security_config) -> None:
    widget_bus, host_bus = MemoryMessageBus.pair()
    channel = AuthChannel(widget_bus, config=security_config)
    channel.attach()
    host = FakeHost(host_bus, auto_tokens=[VALID_TOKEN, REFRESHED_TOKEN])
    handler, seen = _make_handler([401, 200])

    client = create_api_client(
        base_url="https://api.example.com",
        get_token=channel.get_token,
        refresh_token=channel.refresh_token,
        transport=httpx.MockTransport(handler),
    )
    async with client:
        response = await WidgetApi(client).me()

    assert response.status_code == 200
    assert [request["type"] for request in host.requests] == ["REQUEST_TOKEN", "REFRESH_TOKEN"]
    assert [request.method for request in seen] == ["GET", "GET"]
    assert seen[1].headers["authorization"] == f"Bearer {REFRESHED_TOKEN}"
