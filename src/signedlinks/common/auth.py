"""Signed URL authorization middleware."""

from __future__ import annotations

from collections.abc import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from signedlinks.common.errors import ErrorCode, MissingKeyError, error_response
from signedlinks.common.logging import get_logger
from signedlinks.signing import SignatureVerifier

logger = get_logger(__name__)


def _normalize_prefix(prefix: str) -> str:
    return "/" + prefix.strip("/")


class SignatureMiddleware(BaseHTTPMiddleware):
    """Reject requests to signed paths that lack a valid, unexpired signature."""

    def __init__(
        self,
        app: ASGIApp,
        verifier: SignatureVerifier,
        protected_paths: Iterable[str],
        absolute: bool = True,
        ignore_query: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self._verifier = verifier
        self._prefixes = tuple(_normalize_prefix(p) for p in protected_paths)
        self._absolute = absolute
        self._ignore_query = tuple(ignore_query)

    def _is_protected(self, path: str) -> bool:
        for prefix in self._prefixes:
            if prefix == "/" or path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._is_protected(request.url.path):
            return await call_next(request)

        try:
            valid = self._verifier.has_valid_signature(
                request,
                absolute=self._absolute,
                ignore_query=self._ignore_query,
            )
        except MissingKeyError:
            logger.error("Signing key not configured", path=request.url.path)
            return error_response(
                ErrorCode.SIGNING_KEY_MISSING,
                "Signing key not configured",
                status_code=500,
            )

        if not valid:
            return error_response(
                ErrorCode.INVALID_SIGNATURE,
                "Invalid signature.",
                status_code=403,
            )

        return await call_next(request)
