"""
The Forge service: everything the viewer backend does with APS.

This module is framework-agnostic. It talks to APS through the
APSClient protocol, so it doesn't know whether requests go over httpx,
to an in-memory mock, or to a test double. Apart from the token cache
and the listing loop, every operation is a single remote call whose
errors propagate unchanged.
"""

import logging
from typing import Any, AsyncIterable, Optional, Protocol, Sequence, Union

from .errors import RemoteServiceError
from .models import (
    BucketDetails,
    BucketPolicy,
    Credential,
    ObjectDetails,
    ObjectPage,
    Scope,
    StorageObjectSummary,
    TranslationJob,
    TranslationStatus,
    encode_urn,
)
from .tokens import Clock, TokenCache, utc_now

logger = logging.getLogger(__name__)


PAGE_SIZE = 64

UploadContent = Union[bytes, AsyncIterable[bytes]]


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class APSClient(Protocol):
    """
    Interface for the remote APS endpoints we use.

    Each method is one HTTP request. Implementations raise
    RemoteServiceError (with the HTTP status when there is one) and
    AuthenticationError from authenticate().
    """

    async def authenticate(self, scopes: Sequence[Scope]) -> Credential:
        """Issue a two-legged token for the given scopes."""
        ...

    async def get_bucket_details(self, token: str, bucket_key: str) -> BucketDetails:
        ...

    async def create_bucket(
        self,
        token: str,
        bucket_key: str,
        policy: BucketPolicy,
    ) -> BucketDetails:
        ...

    async def list_objects(
        self,
        token: str,
        bucket_key: str,
        limit: int,
        start_at: Optional[str] = None,
    ) -> ObjectPage:
        """Fetch one page of the bucket listing."""
        ...

    async def upload_object(
        self,
        token: str,
        bucket_key: str,
        object_name: str,
        content: UploadContent,
        content_length: int,
    ) -> ObjectDetails:
        ...

    async def submit_translation(self, token: str, payload: dict[str, Any]) -> TranslationJob:
        ...

    async def get_manifest(self, token: str, urn: str) -> TranslationStatus:
        ...

    async def aclose(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Translation payload
# ---------------------------------------------------------------------------

def build_translation_payload(
    object_id: str,
    root_filename: Optional[str] = None,
) -> dict[str, Any]:
    """
    Build a Model Derivative job asking for SVF output with 2D and 3D views.

    For zip uploads, root_filename names the design file inside the
    archive and the input is flagged as compressed.
    """
    job_input: dict[str, Any] = {"urn": encode_urn(object_id)}
    if root_filename:
        job_input["rootFilename"] = root_filename
        job_input["compressedUrn"] = True

    return {
        "input": job_input,
        "output": {
            "formats": [
                {"type": "svf", "views": ["2d", "3d"]},
            ],
        },
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ForgeService:
    """
    Bucket, upload and translation operations against one OSS bucket.

    Owns the token cache. One instance per process is enough: the only
    state is the two cached credentials.
    """

    def __init__(
        self,
        client: APSClient,
        bucket_key: str,
        clock: Clock = utc_now,
        bucket_policy: BucketPolicy = BucketPolicy.TEMPORARY,
    ) -> None:
        if not bucket_key:
            raise ValueError("bucket_key is required")

        self._client = client
        self._bucket_key = bucket_key
        self._bucket_policy = bucket_policy
        self._tokens = TokenCache(client.authenticate, clock=clock)

    @property
    def bucket_key(self) -> str:
        return self._bucket_key

    @property
    def tokens(self) -> TokenCache:
        return self._tokens

    async def aclose(self) -> None:
        """Release the client's connections."""
        await self._client.aclose()

    async def get_public_token(self) -> Credential:
        """Viewer token for the browser."""
        return await self._tokens.get_public_token()

    async def get_internal_token(self) -> Credential:
        return await self._tokens.get_internal_token()

    async def ensure_bucket_exists(self, bucket_key: Optional[str] = None) -> None:
        """
        Create the bucket if APS reports it missing.

        Only a 404 from the details call leads to creation; any other
        failure (403 for a bucket owned by someone else, 5xx...) is raised.
        """
        bucket_key = bucket_key or self._bucket_key
        token = await self._tokens.get_internal_token()

        try:
            await self._client.get_bucket_details(token.access_token, bucket_key)
        except RemoteServiceError as e:
            if not e.is_not_found:
                raise

            logger.info(
                "Bucket not found, creating it",
                extra={"bucket": bucket_key, "policy": self._bucket_policy.value}
            )
            await self._client.create_bucket(
                token.access_token,
                bucket_key,
                self._bucket_policy,
            )

    async def list_objects(self) -> list[StorageObjectSummary]:
        """
        List every object in the bucket.

        Pages are fetched one after another, each using the startAt
        cursor from the previous page's `next` link, until a page comes
        back without one.
        """
        await self.ensure_bucket_exists()
        token = await self._tokens.get_internal_token()

        objects: list[StorageObjectSummary] = []
        start_at: Optional[str] = None
        pages = 0

        while True:
            page = await self._client.list_objects(
                token.access_token,
                self._bucket_key,
                limit=PAGE_SIZE,
                start_at=start_at,
            )
            pages += 1
            objects.extend(item.to_summary() for item in page.items)

            start_at = page.next_start_at
            if start_at is None:
                break

        logger.debug(
            "Listed bucket objects",
            extra={"bucket": self._bucket_key, "count": len(objects), "pages": pages}
        )

        return objects

    async def upload_model(
        self,
        object_name: str,
        content: UploadContent,
        content_length: int,
    ) -> ObjectDetails:
        """Upload a model file into the bucket under object_name."""
        if not object_name:
            raise ValueError("object_name is required")
        if object_name in (".", ".."):
            raise ValueError(f"object_name cannot be {object_name!r}")
        if content_length < 0:
            raise ValueError("content_length cannot be negative")

        await self.ensure_bucket_exists()
        token = await self._tokens.get_internal_token()

        details = await self._client.upload_object(
            token.access_token,
            self._bucket_key,
            object_name,
            content,
            content_length,
        )

        logger.info(
            "Uploaded model",
            extra={
                "bucket": self._bucket_key,
                "object_key": details.object_key,
                "size_bytes": content_length,
            }
        )

        return details

    async def translate_model(
        self,
        object_id: str,
        root_filename: Optional[str] = None,
    ) -> TranslationJob:
        """Start converting an uploaded object into a viewable derivative."""
        token = await self._tokens.get_internal_token()
        payload = build_translation_payload(object_id, root_filename)

        job = await self._client.submit_translation(token.access_token, payload)

        logger.info(
            "Submitted translation job",
            extra={"urn": job.urn, "result": job.result, "root_filename": root_filename}
        )

        return job

    async def get_translation_status(self, urn: str) -> TranslationStatus:
        """
        Read translation progress from the derivative manifest.

        A model that was never translated has no manifest; that comes
        back as status "n/a" rather than an error.
        """
        token = await self._tokens.get_internal_token()

        try:
            return await self._client.get_manifest(token.access_token, urn)
        except RemoteServiceError as e:
            if e.is_not_found:
                return TranslationStatus.not_available(urn)
            raise
