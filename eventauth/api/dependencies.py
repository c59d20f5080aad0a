"""FastAPI dependencies for services, authentication and authorization."""

from typing import Optional

import structlog
from fastapi import Cookie, Depends

from eventauth.config import get_settings
from eventauth.errors import AuthenticationError, AuthorizationError
from eventauth.models.user import Principal
from eventauth.services.auth_service import AuthService
from eventauth.services.email_service import EmailService
from eventauth.services.kv_store import InMemoryKeyValueStore, KeyValueStore
from eventauth.services.otp_service import OTPService
from eventauth.services.redis_service import RedisKeyValueStore
from eventauth.services.session_service import SessionService
from eventauth.services.user_service import UserService

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# Process-local OTP store, used unless OTP_STORE=redis
_memory_store: Optional[InMemoryKeyValueStore] = None


def get_otp_store() -> KeyValueStore:
    """Return the configured pending-OTP store."""
    global _memory_store

    if get_settings().otp_store == "redis":
        return RedisKeyValueStore(prefix="otp")

    if _memory_store is None:
        _memory_store = InMemoryKeyValueStore()
    return _memory_store


def get_user_service() -> UserService:
    return UserService()


def get_auth_service() -> AuthService:
    return AuthService()


def get_session_service(
    users: UserService = Depends(get_user_service),
    auth: AuthService = Depends(get_auth_service),
    store: KeyValueStore = Depends(get_otp_store),
) -> SessionService:
    """Assemble the token issuer from its collaborators."""
    otp = OTPService(store, ttl_seconds=get_settings().otp_ttl_seconds)
    return SessionService(users=users, auth=auth, otp=otp, email=EmailService())


async def get_current_user(
    access_token: Optional[str] = Cookie(default=None, alias=ACCESS_TOKEN_COOKIE),
    auth: AuthService = Depends(get_auth_service),
    users: UserService = Depends(get_user_service),
) -> Principal:
    """Resolve the caller from the ``accessToken`` cookie.

    Raises:
        AuthenticationError: If the cookie is missing, the token is invalid,
            or the user no longer exists
        TokenExpiredError: If the token has expired
    """
    if not access_token:
        raise AuthenticationError("Access token required")

    payload = auth.decode_access_token(access_token)

    user = await users.get_by_id(payload["id"])
    if user is None:
        logger.warning("access_token_user_missing", user_id=payload["id"])
        raise AuthenticationError("Invalid token - user not found")

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return Principal(id=user.id, email=user.email, name=user.name)


def require_owner(principal: Principal, owner_id: int) -> None:
    """Guard for resource routes: only the owner may modify a resource.

    Raises:
        AuthorizationError: If ``principal`` does not own the resource
    """
    if principal.id != owner_id:
        logger.warning("ownership_check_failed", user_id=principal.id, owner_id=owner_id)
        raise AuthorizationError("You do not have permission to modify this resource")
