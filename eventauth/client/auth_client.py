"""Typed client for the ``/auth`` endpoints, built on ``SessionClient``."""

from typing import Any, Optional

import httpx
import structlog

from eventauth.client.session import SessionClient, SessionError, error_message
from eventauth.models.auth import (
    LoginResponse,
    MeResponse,
    MessageResponse,
    OTPSentResponse,
    RefreshResponse,
    RegisterResponse,
)
from eventauth.models.user import Principal

logger = structlog.get_logger(__name__)


class AuthClientError(Exception):
    """An auth call failed; ``message`` is safe to show to the user."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthClient:
    """Feature-facing auth calls; failures surface as ``AuthClientError``."""

    def __init__(self, session: SessionClient):
        self.session = session

    async def _call(self, method: str, path: str, fallback: str, **kwargs: Any) -> dict:
        try:
            response = await self.session.request(method, path, **kwargs)
        except (httpx.HTTPError, SessionError) as e:
            logger.warning("auth_call_failed", path=path, error=str(e))
            raise AuthClientError(fallback) from e

        if response.is_error:
            message = error_message(response, fallback)
            logger.info("auth_call_rejected", path=path, status_code=response.status_code)
            raise AuthClientError(message, status_code=response.status_code)

        return response.json()

    async def register(
        self, name: str, email: str, phone_number: str, password: str
    ) -> RegisterResponse | OTPSentResponse:
        """Register; returns ``OTPSentResponse`` when the server requires OTP verification."""
        body = await self._call(
            "POST",
            "/auth/register",
            "Registration failed",
            json={
                "name": name,
                "email": email,
                "phone_number": phone_number,
                "password": password,
            },
        )
        if "user" in body:
            return RegisterResponse.model_validate(body)
        return OTPSentResponse.model_validate(body)

    async def verify_otp(self, email: str, otp: str) -> RegisterResponse:
        body = await self._call(
            "POST",
            "/auth/verify-otp",
            "OTP verification failed",
            json={"email": email, "otp": otp},
        )
        return RegisterResponse.model_validate(body)

    async def login(self, email: str, password: str) -> LoginResponse:
        body = await self._call(
            "POST",
            "/auth/login",
            "Login failed",
            json={"email": email, "password": password},
        )
        return LoginResponse.model_validate(body)

    async def logout(self) -> MessageResponse:
        body = await self._call("POST", "/auth/logout", "Logout failed")
        return MessageResponse.model_validate(body)

    async def refresh_token(self) -> RefreshResponse:
        body = await self._call("POST", "/auth/refresh", "Token refresh failed")
        return RefreshResponse.model_validate(body)

    async def get_current_user(self) -> Principal:
        body = await self._call("GET", "/auth/me", "Failed to get user data")
        return MeResponse.model_validate(body).user

    async def check_auth(self) -> Optional[Principal]:
        """Return the signed-in user if the refresh cookie still works, else None."""
        try:
            return (await self.refresh_token()).user
        except AuthClientError:
            logger.info("user_not_authenticated")
            return None
