"""
Model API endpoints.

Lists the models stored in the app bucket, accepts new uploads (which are
immediately submitted for translation), and reports translation progress
so the frontend knows when a model can be opened in the viewer.

Errors from APS are not handled here; the RemoteServiceError handler in
main turns them into 502 responses.
"""

import logging
import os
from typing import Annotated, AsyncIterator, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel, Field

from ...core.models import is_valid_urn
from ..dependencies import ForgeServiceDep

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_CHUNK_SIZE = 1024 * 1024


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class ModelSummary(BaseModel):
    """A model as shown in the frontend's model picker."""
    name: str = Field(description="Object key in the bucket")
    urn: str = Field(description="Base64 URN used to load the model in the viewer")


class TranslationStatusResponse(BaseModel):
    """Translation progress for a single model."""
    urn: str = Field(description="Model URN")
    status: str = Field(description="pending, inprogress, success, failed, timeout or n/a")
    progress: str = Field(default="", description="Progress as reported by APS")
    messages: list[dict] = Field(default_factory=list, description="Warnings and errors from translation")


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _upload_size(upload: UploadFile) -> int:
    """Byte length of the spooled upload."""
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


async def _iter_upload(upload: UploadFile) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[ModelSummary],
    status_code=status.HTTP_200_OK,
    summary="List models",
)
async def list_models(service: ForgeServiceDep) -> list[ModelSummary]:
    objects = await service.list_objects()
    return [ModelSummary(name=obj.name, urn=obj.urn) for obj in objects]


@router.post(
    "",
    response_model=ModelSummary,
    status_code=status.HTTP_200_OK,
    summary="Upload and translate a model",
)
async def upload_model(
    service: ForgeServiceDep,
    model_file: Annotated[UploadFile, File(alias="model-file", description="Design file or zip archive")],
    model_zip_entrypoint: Annotated[
        Optional[str],
        Form(alias="model-zip-entrypoint", description="Main design file inside a zip upload"),
    ] = None,
) -> ModelSummary:
    """
    Upload a design file and start its translation.

    For zip archives, model-zip-entrypoint names the root design inside
    the archive (e.g. an assembly that references other files).
    """
    if not model_file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The uploaded file must have a filename",
        )

    size = _upload_size(model_file)
    if size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The uploaded file is empty",
        )

    logger.info(
        "Received model upload",
        extra={
            "filename": model_file.filename,
            "size_bytes": size,
            "entrypoint": model_zip_entrypoint,
        }
    )

    try:
        details = await service.upload_model(
            model_file.filename,
            _iter_upload(model_file),
            size,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    await service.translate_model(details.object_id, model_zip_entrypoint or None)

    return ModelSummary(name=details.object_key, urn=details.urn)


@router.get(
    "/{urn}/status",
    response_model=TranslationStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get translation status",
)
async def get_model_status(urn: str, service: ForgeServiceDep) -> TranslationStatusResponse:
    if not is_valid_urn(urn):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid model URN",
        )

    result = await service.get_translation_status(urn)
    return TranslationStatusResponse(
        urn=result.urn,
        status=result.status,
        progress=result.progress,
        messages=result.messages,
    )
