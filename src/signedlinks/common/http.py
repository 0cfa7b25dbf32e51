"""HTTP request utilities."""

from __future__ import annotations

import contextvars
import uuid
from urllib.parse import unquote, urlsplit

import structlog

from starlette.requests import Request
from starlette.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp


_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "signedlinks_request_id",
    default=None,
)


def set_request_id(value: str | None) -> None:
    """Set request id in context."""
    _request_id_var.set(value)
    if value is not None:
        structlog.contextvars.bind_contextvars(request_id=value)


def get_request_id() -> str | None:
    """Get current request id."""
    return _request_id_var.get()


def request_from_url(url: str, method: str = "GET") -> Request:
    """Build a request as a server would receive it for ``url``.

    Used outside of a live server, e.g. to check a link from the command line.
    """
    parts = urlsplit(url)
    raw_path = parts.path or "/"
    headers = []
    if parts.netloc:
        headers.append((b"host", parts.netloc.encode("latin-1")))

    scope = {
        "type": "http",
        "method": method.upper(),
        "scheme": parts.scheme or "http",
        "root_path": "",
        "path": unquote(raw_path),
        "raw_path": raw_path.encode("latin-1"),
        "query_string": parts.query.encode("latin-1"),
        "headers": headers,
    }
    return Request(scope)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, echoed in the response and bound for logging."""

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_id(request_id)
        structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
            response.headers.setdefault(self._header_name, request_id)
            return response
        finally:
            structlog.contextvars.clear_contextvars()
