"""
FastAPI dependency injection.

Dependencies provide the Forge service and configuration to route
handlers. Unlike per-request clients, the ForgeService is created once
at startup and kept on app.state: it owns the token cache, and a cache
rebuilt per request would fetch a new token on every call.

Tests can swap the service with app.dependency_overrides.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from ..config.settings import Settings, get_settings
from ..core.service import ForgeService
from ..infrastructure.aps.client import APSConfig, create_aps_client

logger = logging.getLogger(__name__)


def build_forge_service(settings: Settings) -> ForgeService:
    """
    Create the ForgeService for the configured environment.

    In mock mode the service talks to an in-memory APS, so uploads and
    listings work locally without credentials.
    """
    if settings.aps_mock_mode:
        client = create_aps_client(mock_mode=True)
        logger.info("Created mock APS client", extra={"bucket": settings.bucket_key})
    else:
        config = APSConfig(
            client_id=settings.aps_client_id,
            client_secret=settings.aps_client_secret,
            base_url=settings.aps_base_url,
            timeout_seconds=settings.aps_timeout_seconds,
        )
        client = create_aps_client(config=config)
        logger.debug("Created APS client")

    return ForgeService(client=client, bucket_key=settings.bucket_key)


def get_app_settings(request: Request) -> Settings:
    """
    Provide the settings the app was created with.

    Falls back to the process settings for apps built without create_app.
    """
    return getattr(request.app.state, "settings", None) or get_settings()


def get_forge_service(request: Request) -> ForgeService:
    """Provide the process-wide ForgeService created during startup."""
    service = getattr(request.app.state, "forge_service", None)
    if service is None:
        logger.error("ForgeService requested before application startup")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not initialized",
        )
    return service


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

ForgeServiceDep = Annotated[ForgeService, Depends(get_forge_service)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
