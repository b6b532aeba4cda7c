from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import uvicorn

from .app import create_app
from .proxy import TenantGateway, load_settings_from_env

if TYPE_CHECKING:
    from litestar import Litestar

    from .proxy import GatewaySettings

LOG = logging.getLogger("tenant_gateway.server")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_server(
    settings: GatewaySettings,
    app: Litestar | None = None,
    port: int | None = None,
) -> uvicorn.Server:
    """Bind-ready uvicorn server that runs one HTTP/1.1 loop per connection.

    Args:
        settings: Gateway settings; ``host`` and ``port`` select the listener.
        app: Application to serve. Built from ``settings`` when omitted.
        port: Overrides ``settings.port``; ``0`` picks an ephemeral port.
    """
    if app is None:
        app = create_app(TenantGateway(settings))
    config = uvicorn.Config(
        app=app,
        host=settings.host,
        port=settings.port if port is None else port,
        http="h11",
        lifespan="on",
        log_config=None,
        log_level=settings.log_level.lower(),
        access_log=False,
        server_header=False,
        date_header=False,
    )
    return uvicorn.Server(config)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr)


def main() -> None:
    settings = load_settings_from_env()
    configure_logging(settings.log_level)
    server = build_server(settings)
    LOG.info("Server running on http://%s:%d", settings.host, settings.port)
    server.run()
    if not server.started:
        # startup failed; uvicorn has already logged the cause
        sys.exit(1)
