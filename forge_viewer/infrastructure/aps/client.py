"""
APS (Autodesk Platform Services) REST client.

Implements the APSClient protocol from core.service over httpx. The
wrapper is intentionally thin: one method per endpoint, JSON turned into
the typed records from core.models, HTTP failures turned into
RemoteServiceError with the status code preserved.

Mock mode keeps buckets, objects and manifests in memory, enabling API
testing without an APS application.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence
from urllib.parse import quote

import httpx

from ...core.errors import AuthenticationError, RemoteServiceError
from ...core.models import (
    BucketDetails,
    BucketPolicy,
    Credential,
    ObjectDetails,
    ObjectPage,
    Scope,
    TranslationJob,
    TranslationStatus,
    is_valid_urn,
)
from ...core.service import APSClient, UploadContent
from ...core.tokens import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class APSConfig:
    """
    Configuration for the APS client.

    Validated at construction time so a missing secret fails at startup
    rather than on the first token request.
    """
    client_id: str
    client_secret: str
    base_url: str = "https://developer.api.autodesk.com"
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ValueError("client_id is required")
        if not self.client_secret:
            raise ValueError("client_secret is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


def _error_message(response: httpx.Response) -> str:
    """Pull the human readable reason out of an APS error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(body, dict):
        for key in ("reason", "developerMessage", "diagnostic", "errorMessage", "error_description", "detail"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a successful response; a non-object body is a remote failure."""
    try:
        body = response.json()
    except ValueError as e:
        raise RemoteServiceError(
            f"Expected JSON from {response.request.url.path}, got {response.headers.get('Content-Type', 'no content type')}",
            status_code=response.status_code,
        ) from e

    if not isinstance(body, dict):
        raise RemoteServiceError(
            f"Expected a JSON object from {response.request.url.path}",
            status_code=response.status_code,
        )
    return body


class HttpAPSClient:
    """
    APSClient implementation backed by httpx.AsyncClient.

    The underlying connection pool is shared by all requests; call
    aclose() on shutdown. A transport can be injected for tests
    (httpx.MockTransport).
    """

    def __init__(
        self,
        config: APSConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._clock = clock
        self._http = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_seconds,
            transport=transport,
        )

        logger.info(
            "Initialized APS client",
            extra={"base_url": config.base_url}
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- authentication -----------------------------------------------------

    async def authenticate(self, scopes: Sequence[Scope]) -> Credential:
        """Two-legged OAuth: client credentials grant."""
        scope = " ".join(s.value for s in scopes)

        try:
            response = await self._http.post(
                "/authentication/v2/token",
                auth=(self._config.client_id, self._config.client_secret),
                data={"grant_type": "client_credentials", "scope": scope},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Token request failed", extra={"scope": scope, "error": str(e)})
            raise AuthenticationError(f"Authentication request failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.error(
                "Token request rejected",
                extra={"scope": scope, "status": response.status_code, "error": message}
            )
            raise AuthenticationError(
                f"Authentication failed: {message}",
                status_code=response.status_code,
            )

        try:
            return Credential.from_api(_json_body(response), now=self._clock())
        except RemoteServiceError as e:
            logger.error(
                "Token response malformed",
                extra={"scope": scope, "status": response.status_code, "error": e.message}
            )
            raise AuthenticationError(
                f"Authentication failed: {e.message}",
                status_code=response.status_code,
            ) from e

    # -- buckets ------------------------------------------------------------

    async def get_bucket_details(self, token: str, bucket_key: str) -> BucketDetails:
        response = await self._request(
            "GET",
            f"/oss/v2/buckets/{quote(bucket_key, safe='')}/details",
            token,
        )
        return BucketDetails.from_api(_json_body(response))

    async def create_bucket(
        self,
        token: str,
        bucket_key: str,
        policy: BucketPolicy,
    ) -> BucketDetails:
        response = await self._request(
            "POST",
            "/oss/v2/buckets",
            token,
            json={"bucketKey": bucket_key, "policyKey": policy.value},
        )
        return BucketDetails.from_api(_json_body(response))

    # -- objects ------------------------------------------------------------

    async def list_objects(
        self,
        token: str,
        bucket_key: str,
        limit: int,
        start_at: Optional[str] = None,
    ) -> ObjectPage:
        params: dict[str, Any] = {"limit": limit}
        if start_at is not None:
            params["startAt"] = start_at

        response = await self._request(
            "GET",
            f"/oss/v2/buckets/{quote(bucket_key, safe='')}/objects",
            token,
            params=params,
        )
        return ObjectPage.from_api(_json_body(response))

    async def upload_object(
        self,
        token: str,
        bucket_key: str,
        object_name: str,
        content: UploadContent,
        content_length: int,
    ) -> ObjectDetails:
        """
        Stream the object body to OSS.

        Content-Length is sent explicitly so an async iterator body goes
        out as a sized upload instead of a chunked one.
        """
        response = await self._request(
            "PUT",
            f"/oss/v2/buckets/{quote(bucket_key, safe='')}/objects/{quote(object_name, safe='')}",
            token,
            content=content,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(content_length),
            },
        )
        return ObjectDetails.from_api(_json_body(response))

    # -- model derivative ---------------------------------------------------

    async def submit_translation(self, token: str, payload: dict[str, Any]) -> TranslationJob:
        response = await self._request(
            "POST",
            "/modelderivative/v2/designdata/job",
            token,
            json=payload,
        )
        return TranslationJob.from_api(_json_body(response))

    async def get_manifest(self, token: str, urn: str) -> TranslationStatus:
        if not is_valid_urn(urn):
            raise ValueError(f"Not a viewer URN: {urn!r}")

        response = await self._request(
            "GET",
            f"/modelderivative/v2/designdata/{quote(urn, safe='')}/manifest",
            token,
        )
        return TranslationStatus.from_manifest(_json_body(response))

    # -- plumbing -----------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        request_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            request_headers.update(headers)

        try:
            response = await self._http.request(method, url, headers=request_headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(
                "APS request failed",
                extra={"method": method, "url": url, "error": str(e)}
            )
            raise RemoteServiceError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            # 404s are routine (bucket check, missing manifest), keep them quiet
            log = logger.debug if response.status_code == 404 else logger.warning
            log(
                "APS request returned error",
                extra={
                    "method": method,
                    "url": url,
                    "status": response.status_code,
                    "error": message,
                }
            )
            raise RemoteServiceError(message, status_code=response.status_code)

        logger.debug(
            "APS request succeeded",
            extra={"method": method, "url": url, "status": response.status_code}
        )

        return response


# ---------------------------------------------------------------------------
# Mock Client for Local Development
# ---------------------------------------------------------------------------

MOCK_BASE_URL = "https://mock.aps.local"


class MockAPSClient:
    """
    In-memory stand-in for APS.

    Buckets and objects live in dictionaries, translations complete
    instantly, and listing paginates with real `next` links so the
    listing loop is exercised end to end.

    Not suitable for production, but perfect for development and testing.
    """

    def __init__(self, clock: Clock = utc_now, token_ttl_seconds: int = 3600) -> None:
        # {bucket_key: {object_key: ObjectDetails}}, insertion ordered
        self._buckets: dict[str, dict[str, ObjectDetails]] = {}
        self._policies: dict[str, BucketPolicy] = {}
        self._manifests: dict[str, dict[str, Any]] = {}
        self._clock = clock
        self._token_ttl_seconds = token_ttl_seconds
        self._tokens_issued = 0
        logger.info("Initialized mock APS client (in-memory)")

    @property
    def tokens_issued(self) -> int:
        return self._tokens_issued

    async def aclose(self) -> None:
        return None

    async def authenticate(self, scopes: Sequence[Scope]) -> Credential:
        self._tokens_issued += 1
        return Credential.from_api(
            {
                "access_token": f"mock-token-{self._tokens_issued}",
                "expires_in": self._token_ttl_seconds,
            },
            now=self._clock(),
        )

    async def get_bucket_details(self, token: str, bucket_key: str) -> BucketDetails:
        if bucket_key not in self._buckets:
            raise RemoteServiceError(f"Bucket not found: {bucket_key}", status_code=404)
        return BucketDetails(bucket_key=bucket_key, policy_key=self._policies[bucket_key].value)

    async def create_bucket(
        self,
        token: str,
        bucket_key: str,
        policy: BucketPolicy,
    ) -> BucketDetails:
        if bucket_key in self._buckets:
            raise RemoteServiceError(f"Bucket already exists: {bucket_key}", status_code=409)

        self._buckets[bucket_key] = {}
        self._policies[bucket_key] = policy
        logger.debug("Created bucket in mock APS", extra={"bucket": bucket_key})
        return BucketDetails(bucket_key=bucket_key, policy_key=policy.value)

    async def list_objects(
        self,
        token: str,
        bucket_key: str,
        limit: int,
        start_at: Optional[str] = None,
    ) -> ObjectPage:
        if bucket_key not in self._buckets:
            raise RemoteServiceError(f"Bucket not found: {bucket_key}", status_code=404)

        objects = list(self._buckets[bucket_key].values())
        start = 0
        if start_at is not None:
            keys = [obj.object_key for obj in objects]
            start = keys.index(start_at) if start_at in keys else len(keys)

        items = objects[start:start + limit]
        next_url = None
        if start + limit < len(objects):
            cursor = quote(objects[start + limit].object_key, safe="")
            next_url = (
                f"{MOCK_BASE_URL}/oss/v2/buckets/{bucket_key}/objects"
                f"?startAt={cursor}&limit={limit}"
            )

        return ObjectPage(items=items, next=next_url)

    async def upload_object(
        self,
        token: str,
        bucket_key: str,
        object_name: str,
        content: UploadContent,
        content_length: int,
    ) -> ObjectDetails:
        if bucket_key not in self._buckets:
            raise RemoteServiceError(f"Bucket not found: {bucket_key}", status_code=404)

        if isinstance(content, bytes):
            data = content
        else:
            data = b"".join([chunk async for chunk in content])

        if len(data) != content_length:
            raise RemoteServiceError(
                f"Content-Length mismatch: declared {content_length}, got {len(data)}",
                status_code=400,
            )

        details = ObjectDetails(
            bucket_key=bucket_key,
            object_key=object_name,
            object_id=f"urn:adsk.objects:os.object:{bucket_key}/{object_name}",
            size=len(data),
            sha1=hashlib.sha1(data).hexdigest(),
            location=f"{MOCK_BASE_URL}/oss/v2/buckets/{bucket_key}/objects/{quote(object_name, safe='')}",
        )
        # Re-uploading replaces the object in place, like OSS does
        self._buckets[bucket_key][object_name] = details

        logger.debug(
            "Stored object in mock APS",
            extra={"bucket": bucket_key, "object_key": object_name, "size_bytes": len(data)}
        )

        return details

    async def submit_translation(self, token: str, payload: dict[str, Any]) -> TranslationJob:
        urn = payload["input"]["urn"]
        self._manifests[urn] = {
            "urn": urn,
            "status": "success",
            "progress": "complete",
            "derivatives": [],
        }
        return TranslationJob(result="created", urn=urn)

    async def get_manifest(self, token: str, urn: str) -> TranslationStatus:
        if urn not in self._manifests:
            raise RemoteServiceError(f"Manifest not found: {urn}", status_code=404)
        return TranslationStatus.from_manifest(self._manifests[urn])


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_aps_client(
    config: Optional[APSConfig] = None,
    mock_mode: bool = False,
) -> APSClient:
    """
    Create an APS client based on configuration.

    Args:
        config: APS configuration (required if not mock_mode)
        mock_mode: If True, return the in-memory mock

    Returns:
        APSClient implementation (HTTP or Mock)
    """
    if mock_mode:
        return MockAPSClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return HttpAPSClient(config)
