"""Origin-tagged message transports between the widget and its host."""

from __future__ import annotations

import copy
import inspect
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from starlette.websockets import WebSocket, WebSocketDisconnect

from .constants import LOGGER


@dataclass(frozen=True)
class InboundMessage:
    origin: str
    data: object


MessageHandler = Callable[[InboundMessage], "Awaitable[None] | None"]
StatusHandler = Callable[[bool], None]


class MessageBus(ABC):
    def __init__(self) -> None:
        self._message_handlers: list[MessageHandler] = []
        self._status_handlers: list[StatusHandler] = []

    @property
    @abstractmethod
    def embedded(self) -> bool:
        """True while a host is attached on the other end."""

    @abstractmethod
    async def send(self, message: dict, target_origin: str = "*") -> None:
        raise NotImplementedError

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        self._message_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._message_handlers:
                self._message_handlers.remove(handler)

        return unsubscribe

    def on_status(self, handler: StatusHandler) -> Callable[[], None]:
        self._status_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._status_handlers:
                self._status_handlers.remove(handler)

        return unsubscribe

    async def dispatch(self, message: InboundMessage) -> None:
        for handler in list(self._message_handlers):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("Message handler failed origin=%s", message.origin)

    def _notify_status(self, up: bool) -> None:
        for handler in list(self._status_handlers):
            try:
                handler(up)
            except Exception:
                LOGGER.exception("Status handler failed up=%s", up)


class MemoryMessageBus(MessageBus):
    """In-process transport; ``pair()`` wires a widget end to a host end."""

    def __init__(self, origin: str) -> None:
        super().__init__()
        self.origin = origin
        self.peer: MemoryMessageBus | None = None
        self.sent: list[tuple[dict, str]] = []

    @classmethod
    def pair(
        cls,
        *,
        widget_origin: str = "https://widget.example.com",
        host_origin: str = "https://host.example.com",
    ) -> tuple["MemoryMessageBus", "MemoryMessageBus"]:
        widget = cls(widget_origin)
        host = cls(host_origin)
        widget.connect(host)
        return widget, host

    @property
    def embedded(self) -> bool:
        return self.peer is not None

    def connect(self, peer: "MemoryMessageBus") -> None:
        self.peer = peer
        peer.peer = self
        self._notify_status(True)
        peer._notify_status(True)

    def disconnect(self) -> None:
        peer = self.peer
        if peer is None:
            return
        self.peer = None
        peer.peer = None
        self._notify_status(False)
        peer._notify_status(False)

    async def send(self, message: dict, target_origin: str = "*") -> None:
        peer = self.peer
        if peer is None:
            raise RuntimeError("No peer is attached to this message bus.")
        if target_origin != "*" and target_origin != peer.origin:
            LOGGER.warning(
                "Dropping message for origin=%s; peer origin is %s",
                target_origin,
                peer.origin,
            )
            return
        self.sent.append((message, target_origin))
        await peer.dispatch(InboundMessage(origin=self.origin, data=copy.deepcopy(message)))


class WebSocketMessageBus(MessageBus):
    """Host end is a single WebSocket connection; its Origin header tags every message."""

    def __init__(self) -> None:
        super().__init__()
        self._websocket: WebSocket | None = None
        self._origin: str | None = None

    @property
    def embedded(self) -> bool:
        return self._websocket is not None

    @property
    def host_origin(self) -> str | None:
        return self._origin

    async def serve(self, websocket: WebSocket) -> None:
        if self._websocket is not None:
            LOGGER.warning("Rejecting second host connection; one host is already attached")
            await websocket.close(code=1013)
            return

        await websocket.accept()
        origin = websocket.headers.get("origin", "")
        self._websocket = websocket
        self._origin = origin
        LOGGER.info("Host attached origin=%s", origin)
        self._notify_status(True)

        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None:
                    LOGGER.warning("Dropping non-text frame from origin=%s", origin)
                    continue
                try:
                    data = json.loads(raw)
                except ValueError:
                    LOGGER.warning("Dropping non-JSON frame from origin=%s", origin)
                    continue
                await self.dispatch(InboundMessage(origin=origin, data=data))
        except WebSocketDisconnect:
            pass
        finally:
            self._websocket = None
            self._origin = None
            LOGGER.info("Host detached origin=%s", origin)
            self._notify_status(False)

    async def send(self, message: dict, target_origin: str = "*") -> None:
        websocket = self._websocket
        if websocket is None:
            raise RuntimeError("No host is attached to this message bus.")
        if target_origin != "*" and target_origin != self._origin:
            LOGGER.warning(
                "Dropping message for origin=%s; attached host is %s",
                target_origin,
                self._origin,
            )
            return
        await websocket.send_json(message)
