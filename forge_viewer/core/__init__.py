"""
Core logic for the model viewer backend.

This module is framework-agnostic - it doesn't import FastAPI or httpx.
The remote APS service is reached through the APSClient protocol, so the
token cache and listing loop can be tested with plain test doubles.
"""

from .errors import AuthenticationError, RemoteServiceError
from .models import (
    INTERNAL_SCOPES,
    PUBLIC_SCOPES,
    BucketDetails,
    BucketPolicy,
    Credential,
    ObjectDetails,
    ObjectPage,
    Scope,
    StorageObjectSummary,
    TranslationJob,
    TranslationStatus,
    decode_urn,
    encode_urn,
    is_valid_urn,
)
from .service import PAGE_SIZE, APSClient, ForgeService, build_translation_payload
from .tokens import TokenCache

__all__ = [
    "AuthenticationError",
    "RemoteServiceError",
    "INTERNAL_SCOPES",
    "PUBLIC_SCOPES",
    "BucketDetails",
    "BucketPolicy",
    "Credential",
    "ObjectDetails",
    "ObjectPage",
    "Scope",
    "StorageObjectSummary",
    "TranslationJob",
    "TranslationStatus",
    "decode_urn",
    "encode_urn",
    "is_valid_urn",
    "PAGE_SIZE",
    "APSClient",
    "ForgeService",
    "build_translation_payload",
    "TokenCache",
]
