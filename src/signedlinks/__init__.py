"""
signedlinks: signed URL verification and root URL normalization.

Verifies HMAC-SHA256 signed links (with optional expiry) on Starlette
requests, and pins the scheme and host of generated URLs in production.
"""

from signedlinks.common.errors import MissingKeyError
from signedlinks.root_url import RootUrl, normalize_root_url
from signedlinks.signing import (
    SignatureVerifier,
    canonical_url,
    has_valid_signature,
    sign_url,
    signature_has_not_expired,
    verify,
)

__version__ = "1.0.0"

__all__ = [
    "MissingKeyError",
    "RootUrl",
    "SignatureVerifier",
    "canonical_url",
    "has_valid_signature",
    "normalize_root_url",
    "sign_url",
    "signature_has_not_expired",
    "verify",
]
