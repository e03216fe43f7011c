"""
Viewer authentication endpoint.

The browser viewer needs its own bearer token to stream derivatives.
It only ever gets the public (viewables:read) token; the internal token
with bucket and data scopes never leaves the server.
"""

import logging

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from ..dependencies import ForgeServiceDep

logger = logging.getLogger(__name__)

router = APIRouter()


class TokenResponse(BaseModel):
    """Shape expected by the viewer's getAccessToken callback."""
    access_token: str = Field(description="Read-only viewer token")
    expires_in: int = Field(description="Seconds until the token expires")


@router.get(
    "/token",
    response_model=TokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Get viewer token",
)
async def get_viewer_token(service: ForgeServiceDep) -> TokenResponse:
    credential = await service.get_public_token()
    return TokenResponse(
        access_token=credential.access_token,
        expires_in=credential.expires_in(service.tokens.now()),
    )
