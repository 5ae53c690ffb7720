"""Range-aware file retrieval gateway over heterogeneous storage backends."""

from .app import create_app
from .gateway import Gateway
from .settings import AccessSettings, GatewaySettings

__all__ = ["AccessSettings", "Gateway", "GatewaySettings", "create_app"]
