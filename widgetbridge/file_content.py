from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping

import httpx

from auth.models import MessageType
from auth.origin import OriginValidator
from auth.schemas import validate_file_content_request
from auth.security import sanitize_error

from .bus import InboundMessage, MessageBus
from .constants import LOGGER


class FileContentResponder:
    """Answers ``REQUEST_FILE_CONTENT`` from an allowed host with raw source text.

    Content is fetched from the development server's ``?raw`` endpoint and
    the reply is addressed to the requesting origin only.
    """

    def __init__(
        self,
        bus: MessageBus,
        origin_validator: OriginValidator,
        *,
        dev_server_url: str,
        client: httpx.AsyncClient | None = None,
        production: bool = False,
    ) -> None:
        self._bus = bus
        self._origin_validator = origin_validator
        self._dev_server_url = dev_server_url.rstrip("/")
        self._client = client
        self._production = production
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._bus.on_message(self.handle_message)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def drain(self) -> None:
        """Wait for in-flight replies; failures are logged, not raised."""
        if not self._tasks:
            return
        results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                LOGGER.error("File content reply failed: %s", result)

    def handle_message(self, message: InboundMessage) -> None:
        data = message.data
        if not isinstance(data, Mapping):
            return
        if data.get("type") != MessageType.REQUEST_FILE_CONTENT.value:
            return

        if not self._origin_validator.is_allowed(message.origin):
            LOGGER.warning("[Security] Invalid origin for file request: %s", message.origin)
            return

        result = validate_file_content_request(data)
        if not result.success:
            LOGGER.error("Invalid file content request: %s", result.error)
            return

        task = asyncio.get_running_loop().create_task(
            self.respond(result.data.file_path, result.data.nonce, message.origin)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def fetch(self, file_path: str) -> str:
        url = f"{self._dev_server_url}/{file_path.lstrip('/')}?raw"
        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient()
        try:
            response = await http_client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            raise RuntimeError(
                f"Failed to fetch file: {error.response.status_code} {error.response.reason_phrase}"
            ) from error
        finally:
            if own_client:
                await http_client.aclose()
        return response.text

    async def respond(self, file_path: str, nonce: str, origin: str) -> None:
        try:
            content = await self.fetch(file_path)
        except (RuntimeError, httpx.HTTPError) as error:
            LOGGER.error("Error fetching file %s: %s", file_path, error)
            reply = {
                "type": MessageType.FILE_CONTENT_ERROR.value,
                "filePath": file_path,
                "error": sanitize_error(error, production=self._production),
                "timestamp": int(time.time() * 1000),
                "nonce": nonce,
            }
        else:
            reply = {
                "type": MessageType.FILE_CONTENT.value,
                "filePath": file_path,
                "content": content,
                "timestamp": int(time.time() * 1000),
                "nonce": nonce,
            }

        if not self._bus.embedded:
            LOGGER.warning("Host detached before file content reply for %s", file_path)
            return
        await self._bus.send(reply, target_origin=origin)
