from __future__ import annotations

import logging

LOGGER = logging.getLogger("widgetbridge")
APP_VERSION = "0.1.0"

DEV_API_BASE_URL = "https://app-api-v2-dev.commerceos.ai"
PROD_API_BASE_URL = "https://app-api-v2.commerceos.ai"

TOKEN_REQUEST_RATE_KEY = "token-request"
URL_TOKEN_PARAM = "token"

DEFAULT_TIMESTAMP_VALIDITY_MS = 5000
DEFAULT_TOKEN_CACHE_DURATION_MS = 10000
DEFAULT_RATE_LIMIT_WINDOW_MS = 60000
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 30
DEFAULT_REQUEST_TIMEOUT_MS = 5000
DEFAULT_NONCE_STORE_SIZE = 1000
HEARTBEAT_INTERVAL_MS = 1000

MAX_ERROR_LENGTH = 100
GENERIC_AUTH_ERROR = "Authentication failed"
