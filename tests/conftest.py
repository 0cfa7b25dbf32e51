"""Pytest configuration and fixtures."""

import hashlib
import hmac

import pytest

from signedlinks.common.settings import Settings

SIGNING_KEY = "secret"


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        app_key=SIGNING_KEY,
        app_url=None,
        app_env="testing",
        signed_paths=("/links",),
    )


@pytest.fixture
def production_settings() -> Settings:
    """Create production settings with a public application URL."""
    return Settings(
        app_key=SIGNING_KEY,
        app_url="http://app.example.com:8080/base",
        app_env="production",
        signed_paths=("/links",),
    )


def expected_signature(url: str, key: str = SIGNING_KEY) -> str:
    """Reference HMAC-SHA256 hex digest."""
    return hmac.new(key.encode("utf-8"), url.encode("utf-8"), hashlib.sha256).hexdigest()
