from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, Request, get
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .gateway import Gateway

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


FILE_ROUTE = "/file"

prometheus_config = PrometheusConfig(app_name="file_gateway", prefix="file_gateway")


def _raw_file_segment(scope: Scope) -> str:
    """Return the still percent-encoded object key from the request path."""
    raw_path = scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
    else:
        path = scope.get("path", "/")
    prefix = f"{FILE_ROUTE}/"
    if prefix in path:
        return path.split(prefix, 1)[1]
    return path.lstrip("/")


def create_app(gateway: Gateway | None = None) -> Litestar:
    """Create the file gateway ASGI application."""
    gateway = gateway or Gateway.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path=FILE_ROUTE, is_mount=True, copy_scope=True)
    async def file_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        response = await gateway.handle(request, _raw_file_segment(scope))
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await gateway.startup()

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET", "HEAD"],
        allow_headers=["*"],
        expose_headers=[
            "Accept-Ranges",
            "Content-Disposition",
            "Content-Length",
            "Content-Range",
            "ETag",
        ],
    )

    return Litestar(
        route_handlers=[health, file_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
    )


app = create_app()
