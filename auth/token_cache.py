from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from widgetbridge.constants import DEFAULT_TOKEN_CACHE_DURATION_MS


def _loop_ms() -> float:
    try:
        return asyncio.get_running_loop().time() * 1000
    except RuntimeError:
        return time.monotonic() * 1000


class TokenCache:
    """Single-slot token cache that forgets its token after a TTL."""

    def __init__(
        self,
        *,
        default_ttl_ms: int = DEFAULT_TOKEN_CACHE_DURATION_MS,
        clock: Callable[[], float] = _loop_ms,
    ) -> None:
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float | None = None
        self._timer: asyncio.TimerHandle | None = None

    def get(self) -> str | None:
        if self._token is None:
            return None
        if self._expires_at is not None and self._clock() > self._expires_at:
            self.clear()
            return None
        return self._token

    def set(self, token: str, ttl_ms: int | None = None) -> None:
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._cancel_timer()
        self._token = token
        self._expires_at = self._clock() + ttl

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(ttl / 1000, self._expire)

    def clear(self) -> None:
        self._cancel_timer()
        self._token = None
        self._expires_at = None

    def _expire(self) -> None:
        self._timer = None
        self._token = None
        self._expires_at = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
