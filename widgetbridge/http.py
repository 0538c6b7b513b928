from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import httpx

from .constants import LOGGER

RETRIED_EXTENSION = "widget_auth_retried"

TokenProvider = Callable[[], Awaitable[str]]


class TokenAuthTransport(httpx.AsyncBaseTransport):
    """Attach the widget's bearer token and replay once after a 401.

    A static token (handed to the page up front) always wins and disables the
    refresh path, since there is no message flow behind it to refresh from.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        get_token: TokenProvider | None = None,
        refresh_token: TokenProvider | None = None,
        static_token: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._get_token = get_token
        self._refresh_token = refresh_token
        self.static_token = static_token
        self._logger = logger or LOGGER

    async def _current_token(self) -> str | None:
        if self.static_token:
            return self.static_token
        if self._get_token is None:
            return None
        try:
            return await self._get_token()
        except Exception as error:
            self._logger.error("Failed to get token: %s", error)
            return None

    def _build_request(
        self,
        request: httpx.Request,
        body: bytes,
        token: str | None,
        *,
        retried: bool,
    ) -> httpx.Request:
        headers = httpx.Headers(request.headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        extensions = dict(request.extensions)
        if retried:
            extensions[RETRIED_EXTENSION] = True
        return httpx.Request(
            method=request.method,
            url=request.url,
            headers=headers,
            content=body,
            extensions=extensions,
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = await request.aread()
        token = await self._current_token()
        response = await self._transport.handle_async_request(
            self._build_request(request, body, token, retried=False)
        )

        if response.status_code != 401:
            return response
        if request.extensions.get(RETRIED_EXTENSION):
            return response
        if self.static_token or self._refresh_token is None:
            return response

        self._logger.info("Token expired, refreshing (%s %s)", request.method, request.url)
        await response.aclose()
        try:
            new_token = await self._refresh_token()
        except Exception as error:
            self._logger.error("Token refresh failed: %s", error)
            raise

        return await self._transport.handle_async_request(
            self._build_request(request, body, new_token, retried=True)
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


def create_api_client(
    *,
    base_url: str,
    get_token: TokenProvider | None = None,
    refresh_token: TokenProvider | None = None,
    static_token: str | None = None,
    timeout: float = 30,
    transport: httpx.AsyncBaseTransport | None = None,
    debug_enabled: bool = False,
) -> httpx.AsyncClient:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        LOGGER.info("API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        LOGGER.info(
            "API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("API error body: %s", text)

    auth_transport = TokenAuthTransport(
        transport or httpx.AsyncHTTPTransport(),
        get_token=get_token,
        refresh_token=refresh_token,
        static_token=static_token,
        logger=LOGGER,
    )
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"Content-Type": "application/json"},
        timeout=timeout,
        transport=auth_transport,
        event_hooks={"request": [log_request], "response": [log_response]},
    )


class WidgetApi:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def companies(self) -> httpx.Response:
        return await self._client.get("/companies")

    async def me(self) -> httpx.Response:
        return await self._client.get("/members/me")
