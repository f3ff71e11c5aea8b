"""Configuration management for Coloring Page Studio.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the COLORPAGE_ prefix,
so every deployment switch (shared password, storage mode, vendor keys, bucket
and database identifiers) can be changed without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (COLORPAGE_* prefix)
2. .env file in the project root
3. Default values defined in ColorPageConfig

Example .env file:
    COLORPAGE_OPENAI_API_KEY=sk-...
    COLORPAGE_APP_PASSWORD=letmein
    COLORPAGE_IMAGE_STORAGE_MODE=hosted
    COLORPAGE_S3_BUCKET=coloring-pages
    COLORPAGE_REDIS_URL=redis://localhost:6379/0
    COLORPAGE_STRIPE_SECRET_KEY=sk_test_...
    COLORPAGE_STRIPE_WEBHOOK_SECRET=whsec_...

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The HTTP layer builds its clients from it once, at process startup.

Secrets are optional at load time.  An operation that needs a missing secret
raises :class:`~colorpage.core.exceptions.ConfigurationError` through
:meth:`ColorPageConfig.require`, which surfaces as a 500 response.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from colorpage.core.exceptions import ConfigurationError


class ColorPageConfig(BaseSettings):
    """Main configuration for Coloring Page Studio.

    Attributes
    ----------
    Image vendor:
        openai_api_key : str | None
            API key for the image-generation vendor.
        openai_base_url : str | None
            Optional override of the vendor API base URL.
        image_model : str
            Model used for both generation and edits.

    Access:
        app_password : str | None
            Shared password.  When set, every image request must carry the
            SHA-256 hex digest of this value.

    Storage:
        image_storage_mode : Literal["hosted", "local"]
            ``hosted`` uploads results to the object store, ``local`` returns
            inline data only for client-side storage.
        s3_bucket, s3_region, s3_endpoint_url
            Object store location (any S3-compatible service).

    Ledger and payments:
        redis_url : str
            Redis instance holding profile documents and processed events.
        stripe_secret_key, stripe_webhook_secret : str | None
            Payment processor credentials.
        stripe_currency : str
            Currency for checkout line items.
        frontend_url : str | None
            Origin used in checkout redirect URLs; the request origin is used
            when unset.
        signup_credits : int
            Credits granted to a new profile.
        credits_per_page : int
            Flat cost of one coloring page regardless of photo count.

    Server:
        data_dir : Path
            Directory for the generation history file.
        history_enabled : bool
            Record a history entry for every successful image request.
        server_host, server_port, log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COLORPAGE_",
        case_sensitive=False,
    )

    # Image vendor
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the image-generation vendor",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Optional base URL override for the vendor API",
    )
    image_model: str = Field(
        default="gpt-image-1.5",
        description="Model used for generate and edit calls",
    )

    # Shared password gate
    app_password: str | None = Field(
        default=None,
        description="Shared password; enables the passwordHash check when set",
    )

    # Storage
    image_storage_mode: Literal["hosted", "local"] = Field(
        default="hosted",
        description="hosted = upload to object store, local = inline data only",
    )
    s3_bucket: str | None = Field(default=None, description="Bucket for generated images")
    s3_region: str = Field(default="us-east-1", description="Object store region")
    s3_endpoint_url: str | None = Field(
        default=None,
        description="Endpoint for S3-compatible stores other than AWS",
    )

    # Ledger
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for profile documents and processed events",
    )
    signup_credits: int = Field(default=3, ge=0)
    credits_per_page: int = Field(default=1, ge=1)

    # Payments
    stripe_secret_key: str | None = Field(default=None)
    stripe_webhook_secret: str | None = Field(default=None)
    stripe_currency: str = Field(default="usd")
    frontend_url: str | None = Field(
        default=None,
        description="Origin for checkout success/cancel redirects",
    )

    # Server
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for history.json",
    )
    history_enabled: bool = Field(default=True)
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8000, ge=1024, le=65535)
    log_level: str = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory."""
        super().__init__(**kwargs)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def password_required(self) -> bool:
        return bool(self.app_password)

    def require(self, field_name: str) -> str:
        """Return a configured secret or identifier, or fail loudly.

        Args:
            field_name: Attribute name on this config.

        Returns:
            The non-empty configured value.

        Raises:
            ConfigurationError: If the value is missing or empty.
        """
        value = getattr(self, field_name)
        if not value:
            env_name = f"{self.model_config['env_prefix']}{field_name.upper()}"
            raise ConfigurationError(f"Server configuration error: {env_name} is not set.")
        return value


# Global configuration instance
config = ColorPageConfig()
