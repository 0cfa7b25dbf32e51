"""Signed link service - serves routes guarded by signed URLs."""

from collections.abc import Sequence
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Route
import uvicorn

from signedlinks.common.auth import SignatureMiddleware
from signedlinks.common.http import RequestIdMiddleware
from signedlinks.common.logging import get_logger, setup_logging
from signedlinks.common.metrics import MetricsMiddleware, metrics_endpoint
from signedlinks.common.settings import Settings, get_settings
from signedlinks.root_url import RootUrl, RootUrlMiddleware, normalize_root_url
from signedlinks.signing import SignatureVerifier

logger = get_logger(__name__)


class LinkServer:
    """HTTP handlers for the signed link service."""

    def __init__(self, settings: Settings, root_url: RootUrl):
        """Initialize server."""
        self._settings = settings
        self._root_url = root_url
        self._verifier = SignatureVerifier(
            settings.signing_key,
            root_url,
            ignore_query=settings.signature_ignore_query,
        )

    @property
    def verifier(self) -> SignatureVerifier:
        return self._verifier

    async def startup(self) -> None:
        """Log the resolved configuration."""
        if not self._settings.app_key:
            logger.warning("No signing key configured, signed routes will fail")
        logger.info(
            "Starting signed link service",
            environment=self._settings.app_env,
            signed_paths=list(self._settings.signed_paths),
            **self._root_url.describe(),
        )

    async def shutdown(self) -> None:
        """Clean up resources."""
        pass

    async def handle_link(self, request: Request) -> JSONResponse:
        """Serve a signed link; only reached once the signature checked out."""
        token = request.path_params.get("token", "")
        return JSONResponse({
            "token": token,
            "url": self._root_url.url_for(request, "link", token=token),
            "expires": request.query_params.get("expires"),
        })

    async def handle_health(self, request: Request) -> JSONResponse:
        """Health check."""
        return JSONResponse({"status": "healthy"})


def create_app(
    settings: Settings | None = None,
    routes: Sequence[BaseRoute] | None = None,
) -> Starlette:
    """
    Create the Starlette application.

    Args:
        settings: Application settings (defaults to environment settings)
        routes: Extra application routes; paths under ``signed_paths``
            require a valid signature

    Returns:
        Configured application
    """
    settings = settings or get_settings()

    # Resolved once, before any request is served.
    root_url = normalize_root_url(
        settings.app_url,
        settings.app_env,
        settings.running_in_console,
    )
    server = LinkServer(settings, root_url)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        await server.startup()
        yield
        await server.shutdown()

    app_routes: list[BaseRoute] = [
        Route("/links/{token}", server.handle_link, methods=["GET"], name="link"),
        Route("/health", server.handle_health, methods=["GET"]),
        Route("/metrics", metrics_endpoint, methods=["GET"]),
    ]
    app_routes.extend(routes or [])

    app = Starlette(routes=app_routes, lifespan=lifespan)
    app.state.root_url = root_url
    app.state.verifier = server.verifier

    # Starlette wraps in reverse order: RootUrlMiddleware runs before signature checks.
    app.add_middleware(
        SignatureMiddleware,
        verifier=server.verifier,
        protected_paths=settings.signed_paths,
        absolute=not settings.signature_relative,
    )
    app.add_middleware(RootUrlMiddleware, root_url=root_url)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        MetricsMiddleware,
        exclude_paths=list(settings.metrics_exclude_paths),
    )

    return app


def main():
    """Entry point for the signed link service."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
