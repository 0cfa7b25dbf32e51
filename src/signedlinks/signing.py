"""Signed URL creation and verification.

A signed URL carries a ``signature`` query parameter holding the hex
HMAC-SHA256 of the URL it was attached to, and optionally an ``expires``
unix timestamp that is itself covered by the signature. Verification
rebuilds that URL from the inbound request: the root URL plus the request
path, and the raw query string minus ``signature`` and any other ignored
parameters, in their original order and encoding.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode, urlsplit

from starlette.requests import Request

from signedlinks.common import hmac
from signedlinks.common.errors import MissingKeyError
from signedlinks.common.logging import get_logger
from signedlinks.common.metrics import record_signature_check
from signedlinks.root_url import RootUrl

logger = get_logger(__name__)

SIGNATURE_PARAM = "signature"
EXPIRES_PARAM = "expires"

Expiration = int | float | datetime | timedelta


def _require_key(key: bytes | str | None) -> bytes:
    if not key:
        raise MissingKeyError()
    if isinstance(key, str):
        return key.encode("utf-8")
    return key


def _request_path(request: Request) -> str:
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    return request.url.path


def _query_param_name(parameter: str) -> str:
    return parameter.split("=", 1)[0]


def filter_query(query: str, ignore_query: Iterable[str]) -> str:
    """Drop ignored parameters from a raw query string, keeping order and encoding."""
    ignored = set(ignore_query)
    return "&".join(
        parameter
        for parameter in query.split("&")
        if _query_param_name(parameter) not in ignored
    )


def canonical_url(
    request: Request,
    root_url: RootUrl | None = None,
    absolute: bool = True,
    ignore_query: Iterable[str] = (),
) -> str:
    """
    Rebuild the URL a request's signature was computed over.

    Args:
        request: Inbound request
        root_url: Root URL policy for absolute URLs
        absolute: Include the root URL; otherwise only the path is signed
        ignore_query: Query parameters excluded in addition to ``signature``

    Returns:
        The canonical URL string
    """
    root_url = root_url or RootUrl()
    ignored = {*ignore_query, SIGNATURE_PARAM}

    path = _request_path(request).strip("/")
    if absolute:
        url = root_url.to(request, path)
    else:
        url = f"/{path}"

    query = filter_query(request.url.query, ignored)
    return f"{url}?{query}".rstrip("?")


def compute_signature(url: str, key: bytes | str | None) -> str:
    """Hex HMAC-SHA256 of a canonical URL."""
    return hmac.sign(_require_key(key), url)


def verify(
    request: Request,
    key: bytes | str | None,
    root_url: RootUrl | None = None,
    absolute: bool = True,
    ignore_query: Iterable[str] = (),
) -> bool:
    """
    Check the request's ``signature`` parameter against its canonical URL.

    Raises:
        MissingKeyError: If no signing key is configured
    """
    secret = _require_key(key)
    original = canonical_url(request, root_url, absolute, ignore_query)
    provided = request.query_params.get(SIGNATURE_PARAM, "")
    if not provided:
        return False
    return hmac.verify(secret, original, provided)


def signature_has_not_expired(request: Request, now: float | None = None) -> bool:
    """Check the ``expires`` parameter.

    Links without one, or with ``expires=0``, never expire.
    """
    expires = request.query_params.get(EXPIRES_PARAM)
    if not expires or expires == "0":
        return True

    try:
        expires_at = int(expires)
    except ValueError:
        return False

    current = int(time.time() if now is None else now)
    return current <= expires_at


def has_valid_signature(
    request: Request,
    key: bytes | str | None,
    root_url: RootUrl | None = None,
    absolute: bool = True,
    ignore_query: Iterable[str] = (),
) -> bool:
    """Signature matches and the link has not expired."""
    return verify(request, key, root_url, absolute, ignore_query) and signature_has_not_expired(
        request
    )


def expiration_timestamp(expiration: Expiration) -> int:
    """Convert an expiration (timestamp, datetime or lifetime) to a unix timestamp."""
    if isinstance(expiration, timedelta):
        return int(time.time() + expiration.total_seconds())
    if isinstance(expiration, datetime):
        return int(expiration.timestamp())
    return int(expiration)


def _append_query(url: str, parameter: str) -> str:
    separator = "&" if urlsplit(url).query else "?"
    return f"{url.rstrip('?')}{separator}{parameter}"


def sign_url(
    url: str,
    key: bytes | str | None,
    expires_at: Expiration | None = None,
) -> str:
    """
    Attach ``expires`` and ``signature`` parameters to a generated URL.

    The URL must already be in the form it will be requested in, since the
    signature covers it byte for byte.

    Raises:
        MissingKeyError: If no signing key is configured
        ValueError: If the URL already carries a reserved parameter
    """
    secret = _require_key(key)
    url, hash_mark, fragment = url.partition("#")

    reserved = {SIGNATURE_PARAM}
    if expires_at is not None:
        reserved.add(EXPIRES_PARAM)
    present = reserved & {_query_param_name(p) for p in urlsplit(url).query.split("&")}
    if present:
        raise ValueError(f"'{sorted(present)[0]}' is a reserved parameter for signed URLs")

    if expires_at is not None:
        url = _append_query(url, f"{EXPIRES_PARAM}={expiration_timestamp(expires_at)}")

    signed = _append_query(url, f"{SIGNATURE_PARAM}={hmac.sign(secret, url)}")
    return f"{signed}{hash_mark}{fragment}"


class SignatureVerifier:
    """Signs and verifies URLs for one application.

    Holds only immutable configuration, so one instance can serve all
    requests concurrently.
    """

    def __init__(
        self,
        key: bytes | str | None,
        root_url: RootUrl | None = None,
        ignore_query: Iterable[str] = (),
    ) -> None:
        self._key = key
        self._root_url = root_url or RootUrl()
        self._ignore_query = tuple(ignore_query)

    @property
    def root_url(self) -> RootUrl:
        return self._root_url

    def _ignored(self, ignore_query: Iterable[str] | None) -> tuple[str, ...]:
        return self._ignore_query + tuple(ignore_query or ())

    def verify(
        self,
        request: Request,
        absolute: bool = True,
        ignore_query: Iterable[str] | None = None,
    ) -> bool:
        return verify(request, self._key, self._root_url, absolute, self._ignored(ignore_query))

    def has_valid_signature(
        self,
        request: Request,
        absolute: bool = True,
        ignore_query: Iterable[str] | None = None,
    ) -> bool:
        """Verify the signature and expiry, recording the outcome."""
        try:
            valid = self.verify(request, absolute, ignore_query)
        except MissingKeyError:
            record_signature_check("misconfigured")
            raise

        if not valid:
            record_signature_check("invalid")
            logger.info("Signed URL rejected", reason="invalid", path=request.url.path)
            return False

        if not signature_has_not_expired(request):
            record_signature_check("expired")
            logger.info("Signed URL rejected", reason="expired", path=request.url.path)
            return False

        record_signature_check("valid")
        return True

    def sign(self, url: str, expires_at: Expiration | None = None) -> str:
        return sign_url(url, self._key, expires_at)

    def signed_url_for(
        self,
        request: Request,
        name: str,
        /,
        expires_at: Expiration | None = None,
        absolute: bool = True,
        query: Mapping[str, Any] | None = None,
        **path_params: Any,
    ) -> str:
        """
        Generate a signed URL for a named route.

        Args:
            request: Current request, used to resolve the root URL
            name: Route name
            expires_at: Optional expiration (timestamp, datetime or lifetime)
            absolute: Sign the absolute URL; use False for relative verification
            query: Extra query parameters, appended before signing
            **path_params: Route path parameters

        Returns:
            The signed URL
        """
        if absolute:
            url = self._root_url.url_for(request, name, **path_params)
        else:
            url_path = request.scope["router"].url_path_for(name, **path_params)
            url = "/" + str(url_path).strip("/")

        if query:
            url = _append_query(url, urlencode(query))
        return self.sign(url, expires_at)
