"""Client package exports."""

from eventauth.client.auth_client import AuthClient, AuthClientError
from eventauth.client.session import (
    RefreshTimeoutError,
    SessionClient,
    SessionError,
    SessionExpiredError,
)

__all__ = [
    "AuthClient",
    "AuthClientError",
    "RefreshTimeoutError",
    "SessionClient",
    "SessionError",
    "SessionExpiredError",
]
