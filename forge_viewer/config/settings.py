"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock mode enables local development without APS credentials.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APS_BASE_URL = "https://developer.api.autodesk.com"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like cors_origins), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Forge Viewer Service"

    # APS (Forge) Configuration
    aps_client_id: str = Field(
        default="",
        description="APS application client ID. Required unless in mock mode."
    )
    aps_client_secret: str = Field(
        default="",
        description="APS application client secret. Required unless in mock mode."
    )
    aps_bucket: Optional[str] = Field(
        default=None,
        description="OSS bucket key. Derived from the client ID when not set."
    )
    aps_base_url: str = Field(
        default=DEFAULT_APS_BASE_URL,
        description="Base URL of the APS REST API"
    )
    aps_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for outbound APS requests"
    )
    aps_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of the real APS API. Enables local dev without credentials."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def bucket_key(self) -> str:
        """
        Effective bucket key.

        Bucket keys are globally unique across APS, so the default is
        scoped by the client ID: "<client id lowercased>-basic-app".
        """
        if self.aps_bucket:
            return self.aps_bucket
        return f"{self.aps_client_id.lower()}-basic-app"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        """
        missing = []

        if not self.aps_mock_mode:
            if not self.aps_client_id:
                missing.append("APS_CLIENT_ID")
            if not self.aps_client_secret:
                missing.append("APS_CLIENT_SECRET")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process.
    For tests, call get_settings.cache_clear() to reset.
    """
    return Settings()
