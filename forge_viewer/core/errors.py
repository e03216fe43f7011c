"""
Errors raised when talking to the remote APS service.

These live in core (not infrastructure) because the service layer has to
inspect them: a 404 from the bucket details call means "create it".
"""

from typing import Optional


class RemoteServiceError(Exception):
    """Raised when a remote APS call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class AuthenticationError(RemoteServiceError):
    """Raised when the token endpoint rejects our client credentials."""
    pass
