from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum


class MessageType(str, Enum):
    AUTH_TOKEN = "AUTH_TOKEN"
    REQUEST_TOKEN = "REQUEST_TOKEN"
    REFRESH_TOKEN = "REFRESH_TOKEN"
    AUTH_ERROR = "AUTH_ERROR"
    HEARTBEAT = "HEARTBEAT"
    REQUEST_FILE_CONTENT = "REQUEST_FILE_CONTENT"
    FILE_CONTENT = "FILE_CONTENT"
    FILE_CONTENT_ERROR = "FILE_CONTENT_ERROR"
    # UI-side developer tooling; relayed by other collaborators, never handled here.
    EDIT_REQUEST = "EDIT_REQUEST"
    QUERY_CLICK = "QUERY_CLICK"
    FILE_UPDATED = "FILE_UPDATED"
    TOGGLE_EDIT_MODE = "TOGGLE_EDIT_MODE"


class AuthStatus(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthState:
    status: AuthStatus = AuthStatus.IDLE
    last_validated_at: int | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "last_validated_at": self.last_validated_at,
            "error": self.error,
        }


@dataclass
class PendingRequest:
    nonce: str
    message_type: MessageType
    future: asyncio.Future
    timeout_handle: asyncio.TimerHandle | None = None
    created_at: int = 0
