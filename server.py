from __future__ import annotations

import os

from starlette.applications import Starlette

from widgetbridge.app import WidgetBridge, create_app
from widgetbridge.constants import APP_VERSION, LOGGER
from widgetbridge.env import (
    _get_env_int,
    load_env,
    load_security_config,
    parse_csv_env,
    setup_logging,
    validate_env,
)


def create_bridge() -> WidgetBridge:
    load_env()
    debug_enabled = setup_logging()
    validate_env()

    config = load_security_config()
    page_url = os.getenv("WIDGET_PAGE_URL", "").strip() or None
    dev_server_url = os.getenv("WIDGET_DEV_SERVER_URL", "").strip() or None
    timeout = float(os.getenv("WIDGET_API_TIMEOUT", "30"))

    LOGGER.info(
        "Widget bridge %s allowed_origins=%s dev_server=%s",
        APP_VERSION,
        ",".join(sorted(parse_csv_env("WIDGET_ALLOWED_ORIGINS"))) or "<none>",
        dev_server_url or "<disabled>",
    )
    return WidgetBridge(
        config=config,
        page_url=page_url,
        dev_server_url=dev_server_url,
        api_timeout=timeout,
        debug_enabled=debug_enabled,
    )


def create_server_app() -> Starlette:
    return create_app(create_bridge())


def main() -> None:
    import uvicorn

    host = os.getenv("WIDGET_HOST", "127.0.0.1")
    port = _get_env_int("WIDGET_PORT", 8000)
    app = create_server_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
