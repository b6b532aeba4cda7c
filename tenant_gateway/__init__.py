"""Multi-tenant static site gateway backed by a single object-storage bucket."""

from .app import create_app
from .keys import ResolvedKey, resolve
from .proxy import GatewaySettings, TenantGateway

__all__ = ["GatewaySettings", "ResolvedKey", "TenantGateway", "create_app", "resolve"]
