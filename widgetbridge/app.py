from __future__ import annotations

import contextlib

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from auth.channel import configure_auth_channel, reset_auth_channel
from auth.origin import OriginValidator

from .bus import MessageBus, WebSocketMessageBus
from .constants import APP_VERSION, LOGGER
from .env import SecurityConfig, extract_url_token, resolve_api_base_url
from .file_content import FileContentResponder
from .heartbeat import Heartbeat
from .http import WidgetApi, create_api_client


class WidgetBridge:
    """Everything one embedded widget needs, sharing a single bus and auth channel."""

    def __init__(
        self,
        *,
        config: SecurityConfig,
        bus: MessageBus | None = None,
        page_url: str | None = None,
        dev_server_url: str | None = None,
        api_timeout: float = 30,
        debug_enabled: bool = False,
        api_transport=None,
    ) -> None:
        self.config = config
        self.bus = bus or WebSocketMessageBus()
        self.static_token = extract_url_token(page_url)
        # A token handed over in the page URL replaces the message flow for the whole session.
        self.channel = configure_auth_channel(
            self.bus,
            attach=self.static_token is None,
            config=config,
        )
        self.heartbeat = Heartbeat(self.bus)
        self.file_content = None
        if dev_server_url:
            self.file_content = FileContentResponder(
                self.bus,
                OriginValidator(config.allowed_origins),
                dev_server_url=dev_server_url,
                production=config.production,
            )
        self.api_client = create_api_client(
            base_url=resolve_api_base_url(page_url),
            get_token=self.channel.get_token,
            refresh_token=self.channel.refresh_token,
            static_token=self.static_token,
            timeout=api_timeout,
            transport=api_transport,
            debug_enabled=debug_enabled,
        )
        self.api = WidgetApi(self.api_client)

    async def startup(self) -> None:
        self.heartbeat.mount()
        if self.file_content is not None:
            self.file_content.attach()
        LOGGER.info(
            "Widget bridge started static_token=%s allowed_origins=%s",
            self.static_token is not None,
            sorted(self.config.allowed_origins),
        )

    async def shutdown(self) -> None:
        self.heartbeat.unmount()
        if self.file_content is not None:
            self.file_content.detach()
            await self.file_content.drain()
        await self.api_client.aclose()
        reset_auth_channel()

    def health_payload(self) -> dict:
        return {
            "status": "ok",
            "version": APP_VERSION,
            "embedded": self.bus.embedded,
            "auth_state": self.channel.auth_state.as_dict(),
        }


def create_app(bridge: WidgetBridge) -> Starlette:
    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse(bridge.health_payload())

    async def bridge_route(websocket: WebSocket) -> None:
        if not isinstance(bridge.bus, WebSocketMessageBus):
            await websocket.close(code=1011)
            return
        await bridge.bus.serve(websocket)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await bridge.startup()
        try:
            yield
        finally:
            await bridge.shutdown()

    app = Starlette(
        routes=[
            Route("/health", health_route, methods=["GET"]),
            WebSocketRoute("/bridge", bridge_route),
        ],
        lifespan=lifespan,
    )
    app.state.bridge = bridge
    return app
