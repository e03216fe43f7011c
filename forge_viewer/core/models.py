"""
Domain models for the model viewer backend.

These models represent what we get back from APS once the loosely-typed
JSON has been checked. They have no dependencies on httpx or FastAPI.
Required keys are checked explicitly in the `from_api` constructors, so
a malformed response fails here instead of deep inside a route.
"""

import base64
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from .errors import RemoteServiceError


class Scope(Enum):
    """OAuth2 scopes understood by the APS authentication service."""
    BUCKET_CREATE = "bucket:create"
    BUCKET_READ = "bucket:read"
    DATA_READ = "data:read"
    DATA_WRITE = "data:write"
    DATA_CREATE = "data:create"
    VIEWABLES_READ = "viewables:read"


# Server-side token: manages the bucket and submits translations
INTERNAL_SCOPES = (
    Scope.BUCKET_CREATE,
    Scope.BUCKET_READ,
    Scope.DATA_READ,
    Scope.DATA_WRITE,
    Scope.DATA_CREATE,
)

# Handed to the browser viewer, so read-only
PUBLIC_SCOPES = (Scope.VIEWABLES_READ,)


class BucketPolicy(Enum):
    """OSS retention policies."""
    TRANSIENT = "transient"    # 24 hours
    TEMPORARY = "temporary"    # 30 days
    PERSISTENT = "persistent"


_URN_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def encode_urn(object_id: str) -> str:
    """
    Encode an OSS object ID as a viewer URN.

    URL-safe Base64 with the trailing '=' padding removed, which is the
    form the Model Derivative service and the viewer expect.
    """
    encoded = base64.urlsafe_b64encode(object_id.encode("utf-8")).decode("ascii")
    return encoded.rstrip("=")


def is_valid_urn(urn: str) -> bool:
    """True for a non-empty string in the URL-safe Base64 alphabet."""
    return bool(_URN_PATTERN.fullmatch(urn))


def decode_urn(urn: str) -> str:
    """Reverse of encode_urn: restore the padding and decode."""
    padded = urn + "=" * (-len(urn) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


def _require(data: dict[str, Any], key: str, what: str) -> Any:
    if key not in data or data[key] is None:
        raise RemoteServiceError(f"Malformed {what} response: missing '{key}'")
    return data[key]


@dataclass(frozen=True)
class Credential:
    """
    A bearer token and the moment it stops being usable.

    Frozen because a credential is replaced on refresh, never mutated.
    """
    access_token: str
    expires_at: datetime

    @classmethod
    def from_api(cls, data: dict[str, Any], now: datetime) -> "Credential":
        """Build from a token endpoint response ({access_token, expires_in})."""
        token = _require(data, "access_token", "authentication")
        expires_in = _require(data, "expires_in", "authentication")
        try:
            seconds = int(expires_in)
        except (TypeError, ValueError) as e:
            raise RemoteServiceError(
                f"Malformed authentication response: expires_in={expires_in!r}"
            ) from e
        return cls(access_token=token, expires_at=now + timedelta(seconds=seconds))

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    def expires_in(self, now: datetime) -> int:
        """Whole seconds left before expiry, never negative."""
        return max(0, int((self.expires_at - now).total_seconds()))


@dataclass(frozen=True)
class StorageObjectSummary:
    """What the frontend needs to show and load a model."""
    name: str
    urn: str


@dataclass(frozen=True)
class BucketDetails:
    bucket_key: str
    policy_key: Optional[str] = None
    created_date: Optional[int] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "BucketDetails":
        return cls(
            bucket_key=_require(data, "bucketKey", "bucket"),
            policy_key=data.get("policyKey"),
            created_date=data.get("createdDate"),
        )


@dataclass(frozen=True)
class ObjectDetails:
    """A single object stored in an OSS bucket."""
    bucket_key: str
    object_key: str
    object_id: str
    size: Optional[int] = None
    sha1: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ObjectDetails":
        return cls(
            bucket_key=data.get("bucketKey", ""),
            object_key=_require(data, "objectKey", "object"),
            object_id=_require(data, "objectId", "object"),
            size=data.get("size"),
            sha1=data.get("sha1"),
            location=data.get("location"),
        )

    @property
    def urn(self) -> str:
        return encode_urn(self.object_id)

    def to_summary(self) -> StorageObjectSummary:
        return StorageObjectSummary(name=self.object_key, urn=self.urn)


@dataclass(frozen=True)
class ObjectPage:
    """
    One page of a bucket listing.

    `next` is the absolute URL of the following page, present only when
    more objects remain.
    """
    items: list[ObjectDetails] = field(default_factory=list)
    next: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ObjectPage":
        items = data.get("items") or []
        return cls(
            items=[ObjectDetails.from_api(item) for item in items],
            next=data.get("next"),
        )

    @property
    def next_start_at(self) -> Optional[str]:
        """The startAt cursor carried in the query string of `next`."""
        if not self.next:
            return None
        values = parse_qs(urlsplit(self.next).query).get("startAt")
        return values[0] if values else None


@dataclass(frozen=True)
class TranslationJob:
    """Acknowledgement returned when a translation job is accepted."""
    result: str
    urn: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TranslationJob":
        return cls(
            result=_require(data, "result", "translation job"),
            urn=_require(data, "urn", "translation job"),
        )


@dataclass(frozen=True)
class TranslationStatus:
    """Progress of a translation, read from the derivative manifest."""
    urn: str
    status: str
    progress: str = ""
    messages: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_manifest(cls, data: dict[str, Any]) -> "TranslationStatus":
        messages: list[dict[str, Any]] = []
        for derivative in data.get("derivatives") or []:
            messages.extend(derivative.get("messages") or [])
        return cls(
            urn=_require(data, "urn", "manifest"),
            status=_require(data, "status", "manifest"),
            progress=data.get("progress", ""),
            messages=messages,
        )

    @classmethod
    def not_available(cls, urn: str) -> "TranslationStatus":
        """No manifest yet: the model was never submitted for translation."""
        return cls(urn=urn, status="n/a")
