"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SIGNEDLINKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_key: str | None = Field(
        default=None,
        description="Secret used as the HMAC key for signed URLs (used verbatim)",
    )
    app_url: str | None = Field(
        default=None,
        description="Public base URL of the application (scheme://host[:port][/path])",
    )
    app_env: str = Field(
        default="local",
        description="Environment name; root URL normalization only runs in 'production'",
    )
    running_in_console: bool = Field(
        default=False,
        description="Process runs as a console/batch job with no inbound request",
    )

    # Signed URLs
    signed_paths: tuple[str, ...] = Field(
        default=("/links",),
        description="Path prefixes that require a valid signature",
    )
    signature_relative: bool = Field(
        default=False,
        description="Verify signatures against the relative path instead of the absolute URL",
    )
    signature_ignore_query: tuple[str, ...] = Field(
        default=(),
        description="Query parameters excluded from the signed payload (besides 'signature')",
    )
    link_ttl_seconds: int | None = Field(
        default=None,
        description="Default lifetime of newly signed links (None = never expires)",
    )

    # Server
    host: str = Field(
        default="0.0.0.0",
        description="Host for the HTTP server",
    )
    port: int = Field(
        default=8000,
        description="Port for the HTTP server",
    )
    metrics_exclude_paths: tuple[str, ...] = Field(
        default=("/health", "/metrics"),
        description="Paths excluded from HTTP request metrics",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output",
    )

    @property
    def is_production(self) -> bool:
        """Whether the configured environment is production."""
        return self.app_env == "production"

    @property
    def signing_key(self) -> bytes | None:
        """The HMAC key as bytes, or None when unset."""
        if not self.app_key:
            return None
        return self.app_key.encode("utf-8")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
