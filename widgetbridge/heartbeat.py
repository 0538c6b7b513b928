from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from auth.models import MessageType

from .bus import MessageBus
from .constants import HEARTBEAT_INTERVAL_MS, LOGGER


class Heartbeat:
    """Posts ``HEARTBEAT`` to the host on a fixed interval while embedded.

    ``suspend`` and ``resume`` are both idempotent so they can be wired
    straight to a transport's up/down signal.
    """

    def __init__(
        self,
        bus: MessageBus,
        *,
        interval_ms: int = HEARTBEAT_INTERVAL_MS,
        sleep=asyncio.sleep,
    ) -> None:
        self._bus = bus
        self._interval = interval_ms / 1000
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._unwatch: Callable[[], None] | None = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def mount(self) -> bool:
        """Start beating and follow the bus's status; no-op when not embedded."""
        if self._unwatch is None:
            self._unwatch = self._bus.on_status(self._on_status)
        if not self._bus.embedded:
            return False
        self.resume()
        return True

    def unmount(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        self.suspend()

    def resume(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def suspend(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    def _on_status(self, up: bool) -> None:
        if up:
            self.resume()
        else:
            self.suspend()

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            if not self._bus.embedded:
                continue
            try:
                await self._bus.send(
                    {
                        "type": MessageType.HEARTBEAT.value,
                        "timestamp": int(time.time() * 1000),
                    }
                )
            except Exception as error:
                LOGGER.warning("Heartbeat send failed: %s", error)
                continue
            self.beats += 1
            LOGGER.debug("Heartbeat sent count=%s", self.beats)
