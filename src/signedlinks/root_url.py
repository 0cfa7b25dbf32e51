"""Root URL normalization for generated absolute URLs.

In production every absolute URL the application generates should point at
the public HTTPS origin, even when the process sits behind a TLS-terminating
proxy and sees plain HTTP. The decision is made once, at startup, and kept in
an immutable :class:`RootUrl` that is handed to every URL-building call site.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from signedlinks.common.logging import get_logger

logger = get_logger(__name__)

PRODUCTION = "production"
LOCALHOST = "localhost"
SECURE_SCHEME = "https"


@dataclass(frozen=True)
class RootUrl:
    """Root used for generated absolute URLs.

    Attributes:
        root: Forced ``scheme://host[:port][/path]``; None derives it per request
        scheme: Forced scheme applied when no root is forced
        use_request_host: Use ``https://{request host}`` when the host is usable
        mark_secure: Treat inbound requests as HTTPS-originated
    """

    root: str | None = None
    scheme: str | None = None
    use_request_host: bool = False
    mark_secure: bool = False

    def base_for_host(self, scheme: str, host: str | None, netloc: str) -> str:
        """Resolve the root for a request seen with the given scheme and host."""
        if self.root:
            return self.root
        if self.use_request_host and host and host != LOCALHOST:
            return f"{SECURE_SCHEME}://{host}"
        return f"{self.scheme or scheme}://{netloc}"

    def base_for(self, request: Request) -> str:
        """Resolve the root for an inbound request."""
        url = request.url
        return self.base_for_host(url.scheme, url.hostname, url.netloc)

    def to(self, request: Request, path: str) -> str:
        """Absolute URL for ``path`` under this root."""
        base = self.base_for(request)
        path = path.strip("/")
        return f"{base}/{path}" if path else base

    def url_for(self, request: Request, name: str, /, **path_params: Any) -> str:
        """Absolute URL for a named route, generated by the app's router."""
        url_path = request.scope["router"].url_path_for(name, **path_params)
        return self.to(request, str(url_path))

    def describe(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "scheme": self.scheme,
            "use_request_host": self.use_request_host,
            "mark_secure": self.mark_secure,
        }


def _format_host(hostname: str) -> str:
    return f"[{hostname}]" if ":" in hostname else hostname


def normalize_root_url(
    app_url: str | None,
    environment: str,
    running_in_console: bool = False,
) -> RootUrl:
    """
    Decide the root URL policy for this process.

    Args:
        app_url: Configured public base URL, if any
        environment: Environment name; only ``production`` is normalized
        running_in_console: Whether the process has no inbound requests

    Returns:
        The RootUrl every generated URL should use
    """
    if environment != PRODUCTION:
        return RootUrl()

    scheme_only = RootUrl(scheme=SECURE_SCHEME, mark_secure=True)

    if not app_url:
        logger.info("No application URL configured, forcing HTTPS scheme")
        return scheme_only

    try:
        parts = urlsplit(app_url)
        port = parts.port
    except ValueError as exc:
        logger.warning("Malformed application URL, forcing HTTPS scheme", error=str(exc))
        return scheme_only

    host = parts.hostname
    if host and host != LOCALHOST:
        scheme = SECURE_SCHEME if parts.scheme in ("", "http") else parts.scheme
        port_part = f":{port}" if port is not None else ""
        root = f"{scheme}://{_format_host(host)}{port_part}{parts.path}".rstrip("/")
        logger.info("Forcing root URL", root=root)
        return RootUrl(root=root, mark_secure=True)

    if running_in_console:
        logger.info("Console context with local application URL, forcing HTTPS scheme")
        return scheme_only

    logger.info("Local application URL, using request host over HTTPS")
    return RootUrl(scheme=SECURE_SCHEME, use_request_host=True, mark_secure=True)


class RootUrlMiddleware(BaseHTTPMiddleware):
    """Expose the root URL on each request and mark requests secure."""

    def __init__(self, app: ASGIApp, root_url: RootUrl) -> None:
        super().__init__(app)
        self._root_url = root_url

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._root_url.mark_secure:
            request.scope["scheme"] = SECURE_SCHEME
        request.state.root_url = self._root_url
        return await call_next(request)
