from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from .constants import (
    DEFAULT_NONCE_STORE_SIZE,
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_MS,
    DEFAULT_REQUEST_TIMEOUT_MS,
    DEFAULT_TIMESTAMP_VALIDITY_MS,
    DEFAULT_TOKEN_CACHE_DURATION_MS,
    DEV_API_BASE_URL,
    LOGGER,
    PROD_API_BASE_URL,
    URL_TOKEN_PARAM,
)


@dataclass(frozen=True)
class SecurityConfig:
    allowed_origins: frozenset[str] = frozenset()
    timestamp_validity_ms: int = DEFAULT_TIMESTAMP_VALIDITY_MS
    token_cache_duration_ms: int = DEFAULT_TOKEN_CACHE_DURATION_MS
    rate_limit_window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS
    rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    nonce_store_size: int = DEFAULT_NONCE_STORE_SIZE
    production: bool = False


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    from dotenv import load_dotenv

    load_dotenv(env_path, override=False)


def validate_env() -> None:
    for key in (
        "WIDGET_TOKEN_TTL_MS",
        "WIDGET_REQUEST_TIMEOUT_MS",
        "WIDGET_RATE_LIMIT_WINDOW_MS",
        "WIDGET_RATE_LIMIT_MAX",
    ):
        if _get_env_int(key, 1) <= 0:
            raise RuntimeError(f"{key} must be a positive integer.")

    for origin in parse_csv_env("WIDGET_ALLOWED_ORIGINS"):
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc or parsed.path:
            raise RuntimeError(
                f"WIDGET_ALLOWED_ORIGINS entry {origin!r} must be a bare origin "
                "(for example: https://host.example.com)."
            )

    base_url = os.getenv("WIDGET_API_BASE_URL", "").strip()
    if base_url:
        parsed_base_url = urlparse(base_url)
        if parsed_base_url.scheme not in {"http", "https"} or not parsed_base_url.netloc:
            raise RuntimeError("WIDGET_API_BASE_URL must be an absolute http(s) URL.")

    if not parse_csv_env("WIDGET_ALLOWED_ORIGINS"):
        LOGGER.warning(
            "WIDGET_ALLOWED_ORIGINS is empty; every inbound host message will be dropped."
        )


def load_security_config() -> SecurityConfig:
    return SecurityConfig(
        allowed_origins=frozenset(parse_csv_env("WIDGET_ALLOWED_ORIGINS")),
        token_cache_duration_ms=_get_env_int(
            "WIDGET_TOKEN_TTL_MS", DEFAULT_TOKEN_CACHE_DURATION_MS
        ),
        rate_limit_window_ms=_get_env_int(
            "WIDGET_RATE_LIMIT_WINDOW_MS", DEFAULT_RATE_LIMIT_WINDOW_MS
        ),
        rate_limit_max_requests=_get_env_int(
            "WIDGET_RATE_LIMIT_MAX", DEFAULT_RATE_LIMIT_MAX_REQUESTS
        ),
        request_timeout_ms=_get_env_int("WIDGET_REQUEST_TIMEOUT_MS", DEFAULT_REQUEST_TIMEOUT_MS),
        production=os.getenv("WIDGET_ENV", "").strip().lower() == "production",
    )


def extract_url_token(page_url: str | None) -> str | None:
    """Pull the static bearer token out of the widget page's query string."""
    if not page_url:
        return None
    values = parse_qs(urlparse(page_url).query).get(URL_TOKEN_PARAM, [])
    token = values[0].strip() if values else ""
    if token:
        LOGGER.info("Token extracted from page URL")
        return token
    LOGGER.info("No token found in page URL")
    return None


def resolve_api_base_url(page_url: str | None = None) -> str:
    override = os.getenv("WIDGET_API_BASE_URL", "").strip()
    if override:
        return override

    hostname = urlparse(page_url).hostname if page_url else None
    if hostname and "dev" in hostname:
        return DEV_API_BASE_URL
    return PROD_API_BASE_URL


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("WIDGET_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
