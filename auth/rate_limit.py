from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from widgetbridge.constants import (
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_MS,
)


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RateLimitRecord:
    count: int
    window_start: float


class RateLimiter:
    """Fixed-window counter per key.

    The window starts at the first request for a key and is reset by the first
    request that arrives after it has elapsed. Denied requests do not advance
    the counter.
    """

    def __init__(
        self,
        *,
        window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS,
        max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock = clock
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def check(
        self,
        key: str,
        window_ms: int | None = None,
        max_requests: int | None = None,
    ) -> bool:
        window = self.window_ms if window_ms is None else window_ms
        limit = self.max_requests if max_requests is None else max_requests

        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None or now - record.window_start > window:
                self._records[key] = RateLimitRecord(count=1, window_start=now)
                return True

            if record.count >= limit:
                return False

            record.count += 1
            return True

    def get(self, key: str) -> RateLimitRecord | None:
        return self._records.get(key)

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
