"""Shared error types, helpers and codes."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse


class ErrorCode:
    INVALID_SIGNATURE = "invalid_signature"
    SIGNING_KEY_MISSING = "signing_key_missing"
    NOT_FOUND = "not_found"


class MissingKeyError(RuntimeError):
    """The signing key is not configured.

    Raised instead of returning a verification result: an unset key is an
    operator misconfiguration, not an invalid link.
    """

    def __init__(self, message: str = "Application signing key is not set.") -> None:
        super().__init__(message)


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(payload, status_code=status_code)
