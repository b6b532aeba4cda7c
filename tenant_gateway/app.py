from __future__ import annotations

import logging
import string
from typing import TYPE_CHECKING
from urllib.parse import quote, urlsplit

from litestar import Litestar, Request
from litestar.handlers import asgi

from .proxy import SiteResponse, TenantGateway

if TYPE_CHECKING:
    from litestar.types import HTTPScope, Receive, Scope, Send

LOG = logging.getLogger("tenant_gateway.app")


def _raw_path(scope: HTTPScope) -> str:
    raw_path = scope.get("raw_path")
    if not raw_path:
        return quote(scope.get("path", "/"))
    # Some servers leave the query string on raw_path.
    target, _, _ = raw_path.partition(b"?")
    # Stray non-ASCII bytes are percent-encoded, printable ASCII is kept as sent.
    path = quote(target, safe=string.punctuation)
    if not path.startswith("/"):
        # absolute-form target, e.g. "http://acme.example.com/style.css"
        path = urlsplit(path).path or "/"
    return path


async def _send_response(response: SiteResponse, send: Send) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": response.status_code,
            "headers": [
                (name.encode("latin-1"), value.encode("latin-1"))
                for name, value in response.headers.items()
            ],
        }
    )
    await send({"type": "http.response.body", "body": response.body})


def create_app(gateway: TenantGateway | None = None) -> Litestar:
    """Create the tenant gateway ASGI application."""
    if gateway is None:
        gateway = TenantGateway.from_env()

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def site_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        response = await gateway.handle(
            request.headers.get("host"), _raw_path(request.scope)
        )
        await _send_response(response, send)

    async def startup(app: Litestar) -> None:
        LOG.info("tenant gateway ready (%s)", gateway.describe_storage())

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    return Litestar(
        route_handlers=[site_handler],
        on_startup=[startup],
        on_shutdown=[shutdown],
    )
