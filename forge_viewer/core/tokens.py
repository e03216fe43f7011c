"""
Bearer token cache.

The viewer backend needs two kinds of APS tokens:
- internal: bucket and data scopes, never leaves the server
- public: viewables:read only, handed to the browser viewer

Each kind has its own slot. A slot is refreshed lazily, before use, once
its credential has expired. There is no lock: two coroutines racing past
the expiry check both refresh, which only costs one extra token request.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from .models import INTERNAL_SCOPES, PUBLIC_SCOPES, Credential, Scope

logger = logging.getLogger(__name__)


Authenticator = Callable[[Sequence[Scope]], Awaitable[Credential]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenCache:
    """
    Holds at most one internal and one public credential.

    The authenticator and clock are injected so tests can count token
    requests and move time forward without sleeping.
    """

    def __init__(self, authenticator: Authenticator, clock: Clock = utc_now) -> None:
        self._authenticate = authenticator
        self._clock = clock
        self._internal: Optional[Credential] = None
        self._public: Optional[Credential] = None

    async def get_internal_token(self) -> Credential:
        """Token with bucket and data scopes for server-side calls."""
        if not self._is_fresh(self._internal):
            self._internal = await self._refresh(INTERNAL_SCOPES)
        return self._internal

    async def get_public_token(self) -> Credential:
        """Read-only viewer token, safe to expose to browsers."""
        if not self._is_fresh(self._public):
            self._public = await self._refresh(PUBLIC_SCOPES)
        return self._public

    def clear(self) -> None:
        """Forget both credentials; the next accessor call refreshes."""
        self._internal = None
        self._public = None

    def now(self) -> datetime:
        return self._clock()

    def _is_fresh(self, credential: Optional[Credential]) -> bool:
        return credential is not None and credential.is_valid(self._clock())

    async def _refresh(self, scopes: Sequence[Scope]) -> Credential:
        credential = await self._authenticate(scopes)
        logger.info(
            "Refreshed APS token",
            extra={
                "scopes": [scope.value for scope in scopes],
                "expires_at": credential.expires_at.isoformat(),
            }
        )
        return credential
