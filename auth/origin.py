from __future__ import annotations

from collections.abc import Iterable


class OriginValidator:
    def __init__(self, allowed_origins: Iterable[str]) -> None:
        self._allowed_origins = frozenset(allowed_origins)

    @property
    def allowed_origins(self) -> frozenset[str]:
        return self._allowed_origins

    def is_allowed(self, origin: str | None) -> bool:
        return is_allowed_origin(origin, self._allowed_origins)


def is_allowed_origin(origin: str | None, allowed_origins: Iterable[str]) -> bool:
    return bool(origin and origin in allowed_origins)
