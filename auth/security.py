from __future__ import annotations

from collections.abc import MutableMapping

from widgetbridge.constants import GENERIC_AUTH_ERROR, MAX_ERROR_LENGTH


def sanitize_error(error: object, *, production: bool) -> str:
    """Reduce a host- or exception-supplied error to something safe to surface."""
    if production:
        return GENERIC_AUTH_ERROR

    if isinstance(error, BaseException):
        text = str(error)
    elif isinstance(error, str):
        text = error
    else:
        return "Unknown error"

    text = text.strip()
    if not text:
        return "Unknown error"
    return text[:MAX_ERROR_LENGTH]


def clear_sensitive_data(payload: MutableMapping) -> None:
    for key in list(payload.keys()):
        if isinstance(payload[key], str):
            payload[key] = ""
        del payload[key]
