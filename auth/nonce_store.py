from __future__ import annotations

import secrets
import threading
import time
from collections import OrderedDict

from widgetbridge.constants import DEFAULT_NONCE_STORE_SIZE

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_nonce(*, now_ms: int | None = None) -> str:
    """Time-prefixed nonce: ``<base36 ms>-<random><random>``.

    The prefix keeps nonces roughly chronological for log reading; the two
    random segments are what make collisions negligible.
    """
    current = time.time_ns() // 1_000_000 if now_ms is None else now_ms
    return f"{_to_base36(current)}-{secrets.token_hex(6)}{secrets.token_hex(6)}"


class NonceStore:
    def __init__(self, max_size: int = DEFAULT_NONCE_STORE_SIZE) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive.")
        self._max_size = max_size
        self._used: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def generate(self) -> str:
        return generate_nonce()

    def validate(self, nonce: str) -> bool:
        """Record ``nonce`` and return True, or return False if it was already used."""
        with self._lock:
            if nonce in self._used:
                return False

            if len(self._used) >= self._max_size:
                self._used.popitem(last=False)

            self._used[nonce] = None
            return True

    def remove(self, nonce: str) -> None:
        with self._lock:
            self._used.pop(nonce, None)

    def clear(self) -> None:
        with self._lock:
            self._used.clear()

    def __contains__(self, nonce: object) -> bool:
        return nonce in self._used

    def __len__(self) -> int:
        return len(self._used)
