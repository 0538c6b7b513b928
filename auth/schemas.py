"""Inbound message schemas.

Every validator rebuilds a fresh, narrowed model from the untrusted mapping;
unknown keys are dropped rather than carried through. Timestamps are epoch
milliseconds and must sit within ``validity_ms`` of the validation clock.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from widgetbridge.constants import DEFAULT_TIMESTAMP_VALIDITY_MS, MAX_ERROR_LENGTH

from .models import MessageType

NONCE_PATTERN = r"^[A-Za-z0-9\-_]+$"
SUPPORTED_LOCALES = ("ko", "en")

Timestamp = Annotated[float, Field(gt=0, strict=True, allow_inf_nan=False)]
Nonce = Annotated[str, Field(min_length=10, pattern=NONCE_PATTERN, strict=True)]
Token = Annotated[str, Field(min_length=20, strict=True)]
ErrorText = Annotated[str, Field(max_length=MAX_ERROR_LENGTH, strict=True)]


class _InboundModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class _TimestampedModel(_InboundModel):
    timestamp: Timestamp

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_fresh(cls, value: float, info: ValidationInfo) -> float:
        context = info.context or {}
        now_ms = context.get("now_ms")
        if now_ms is None:
            now_ms = time.time() * 1000
        validity_ms = context.get("validity_ms", DEFAULT_TIMESTAMP_VALIDITY_MS)
        if abs(now_ms - value) > validity_ms:
            raise ValueError("Timestamp is too old or in the future")
        return value


class AuthTokenPayload(_TimestampedModel):
    type: Literal["AUTH_TOKEN"]
    token: Token
    nonce: Nonce
    locale: Optional[Literal["ko", "en"]] = None

    @field_validator("locale", mode="before")
    @classmethod
    def _drop_unsupported_locale(cls, value: Any) -> Any:
        if value not in SUPPORTED_LOCALES:
            return None
        return value


class AuthErrorPayload(_TimestampedModel):
    type: Literal["AUTH_ERROR"]
    error: ErrorText


class RequestTokenPayload(_TimestampedModel):
    type: Literal["REQUEST_TOKEN", "REFRESH_TOKEN"]
    nonce: Nonce


class RequestFileContentPayload(_InboundModel):
    type: Literal["REQUEST_FILE_CONTENT"]
    file_path: str = Field(alias="filePath", min_length=1, max_length=512, strict=True)
    nonce: Nonce

    @field_validator("file_path")
    @classmethod
    def _relative_source_path(cls, value: str) -> str:
        normalized = value.replace("\\", "/")
        if "://" in normalized or ".." in normalized.split("/"):
            raise ValueError("filePath must be a project-relative path")
        return normalized


@dataclass(frozen=True)
class ValidationResult:
    success: bool
    data: Any = None
    error: str | None = None


def _summarize(error: ValidationError) -> str:
    # Only locations and messages; never the offending input.
    parts = []
    for item in error.errors(include_input=False, include_url=False):
        location = ".".join(str(part) for part in item["loc"]) or "payload"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def _safe_parse(
    model: type[_InboundModel],
    data: object,
    *,
    now_ms: float | None,
    validity_ms: int,
) -> ValidationResult:
    if not isinstance(data, Mapping):
        return ValidationResult(success=False, error="payload: must be an object")
    try:
        parsed = model.model_validate(
            dict(data),
            context={"now_ms": now_ms, "validity_ms": validity_ms},
        )
    except ValidationError as error:
        return ValidationResult(success=False, error=_summarize(error))
    return ValidationResult(success=True, data=parsed)


def validate_auth_token_payload(
    data: object,
    *,
    now_ms: float | None = None,
    validity_ms: int = DEFAULT_TIMESTAMP_VALIDITY_MS,
) -> ValidationResult:
    return _safe_parse(AuthTokenPayload, data, now_ms=now_ms, validity_ms=validity_ms)


def validate_auth_error_payload(
    data: object,
    *,
    now_ms: float | None = None,
    validity_ms: int = DEFAULT_TIMESTAMP_VALIDITY_MS,
) -> ValidationResult:
    return _safe_parse(AuthErrorPayload, data, now_ms=now_ms, validity_ms=validity_ms)


def validate_request_token_payload(
    data: object,
    *,
    now_ms: float | None = None,
    validity_ms: int = DEFAULT_TIMESTAMP_VALIDITY_MS,
) -> ValidationResult:
    return _safe_parse(RequestTokenPayload, data, now_ms=now_ms, validity_ms=validity_ms)


def validate_file_content_request(data: object) -> ValidationResult:
    return _safe_parse(
        RequestFileContentPayload,
        data,
        now_ms=None,
        validity_ms=DEFAULT_TIMESTAMP_VALIDITY_MS,
    )


_HOST_MESSAGE_VALIDATORS = {
    MessageType.AUTH_TOKEN.value: validate_auth_token_payload,
    MessageType.AUTH_ERROR.value: validate_auth_error_payload,
}


def validate_post_message_payload(
    data: object,
    *,
    now_ms: float | None = None,
    validity_ms: int = DEFAULT_TIMESTAMP_VALIDITY_MS,
) -> ValidationResult:
    """Validate a host → widget auth message of either kind."""
    if not isinstance(data, Mapping):
        return ValidationResult(success=False, error="payload: must be an object")
    message_type = data.get("type")
    validator = _HOST_MESSAGE_VALIDATORS.get(message_type) if isinstance(message_type, str) else None
    if validator is None:
        return ValidationResult(success=False, error="type: unsupported message type")
    return validator(data, now_ms=now_ms, validity_ms=validity_ms)
