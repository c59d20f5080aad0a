"""Token issuer: registration, login, refresh rotation and logout."""

from typing import Optional

import structlog

from eventauth.errors import (
    AuthenticationError,
    ConflictError,
    InternalError,
    ValidationError,
)
from eventauth.models.auth import RegisterRequest
from eventauth.models.user import PendingRegistration, User
from eventauth.services.auth_service import AuthService, TokenPair
from eventauth.services.email_service import EmailService
from eventauth.services.otp_service import OTPService
from eventauth.services.user_service import UserService

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH_TOKEN = "Invalid refresh token"


class SessionService:
    """Authenticates users and keeps exactly one active refresh token per user.

    Every successful register, verify, login and refresh mints a brand-new
    token pair and stores the refresh token against the user row, which
    invalidates whatever refresh token was stored before.
    """

    def __init__(
        self,
        users: UserService,
        auth: AuthService,
        otp: OTPService,
        email: EmailService,
    ):
        self.users = users
        self.auth = auth
        self.otp = otp
        self.email = email

    async def _ensure_available(self, email: str, phone_number: str) -> None:
        if await self.users.get_by_email(email) is not None:
            raise ConflictError("User with this email already exists")
        if await self.users.get_by_phone_number(phone_number) is not None:
            raise ConflictError("User with this phone number already exists")

    async def _sign_in(self, user: User) -> TokenPair:
        pair = self.auth.issue_token_pair(user.id, user.email)
        await self.users.set_refresh_token(user.id, pair.refresh_token)
        return pair

    async def register(self, request: RegisterRequest) -> tuple[User, TokenPair]:
        """Create an account immediately and sign it in.

        Raises:
            ConflictError: If the email or phone number is already taken
        """
        await self._ensure_available(request.email, request.phone_number)

        user = await self.users.create_user(
            email=request.email,
            name=request.name,
            phone_number=request.phone_number,
            password_hash=self.auth.hash_password(request.password),
        )
        pair = await self._sign_in(user)
        logger.info("user_registered", user_id=user.id)
        return user, pair

    async def start_registration(self, request: RegisterRequest) -> str:
        """Hold the registration and email a verification code.

        Returns:
            The email the code was sent to

        Raises:
            ConflictError: If the email or phone number is already taken
            InternalError: If the verification email could not be sent
        """
        await self._ensure_available(request.email, request.phone_number)

        pending = PendingRegistration(
            name=request.name,
            email=request.email,
            phone_number=request.phone_number,
            password_hash=self.auth.hash_password(request.password),
        )
        code = await self.otp.store_otp(pending)

        if not await self.email.send_otp(pending.email, code):
            await self.otp.discard(pending.email)
            raise InternalError("Failed to send verification email")

        logger.info("registration_pending", email=pending.email)
        return pending.email

    async def verify_otp(self, email: str, otp: str) -> tuple[User, TokenPair]:
        """Complete a pending registration.

        Raises:
            ValidationError: If there is no pending entry, it expired, or the
                code does not match
            ConflictError: If the email or phone was taken in the meantime
        """
        pending = await self.otp.verify_otp(email, otp)
        if pending is None:
            raise ValidationError("Invalid or expired OTP")

        user = await self.users.create_user(
            email=pending.email,
            name=pending.name,
            phone_number=pending.phone_number,
            password_hash=pending.password_hash,
        )
        pair = await self._sign_in(user)
        logger.info("user_registered", user_id=user.id, verified_by="otp")
        return user, pair

    async def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        """Check credentials and sign the user in.

        Unknown email and wrong password fail identically.

        Raises:
            AuthenticationError: If the credentials are invalid
        """
        result = await self.users.get_by_email(email)
        if result is None:
            logger.info("login_failed", reason="unknown_email")
            raise AuthenticationError(INVALID_CREDENTIALS)

        user, password_hash = result
        if not self.auth.verify_password(password, password_hash):
            logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise AuthenticationError(INVALID_CREDENTIALS)

        pair = await self._sign_in(user)
        logger.info("user_logged_in", user_id=user.id)
        return user, pair

    async def refresh(self, refresh_token: Optional[str]) -> tuple[User, TokenPair]:
        """Rotate the token pair.

        The new refresh token only replaces the presented one if that token
        is still the stored one, so a token survives at most one rotation.

        Raises:
            AuthenticationError: If the token is absent, invalid, expired,
                superseded, or lost a concurrent rotation
        """
        if not refresh_token:
            raise AuthenticationError("Refresh token not found")

        payload = self.auth.decode_refresh_token(refresh_token)

        user = await self.users.get_by_refresh_token(refresh_token)
        if user is None or user.id != payload["id"]:
            logger.warning("refresh_token_not_current", claimed_user_id=payload["id"])
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        pair = self.auth.issue_token_pair(user.id, user.email)
        if not await self.users.swap_refresh_token(user.id, refresh_token, pair.refresh_token):
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        logger.info("session_refreshed", user_id=user.id)
        return user, pair

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Forget the stored refresh token of whoever holds ``refresh_token``.

        Best effort: lookup failures are logged and never raised.
        """
        if not refresh_token:
            return

        try:
            user = await self.users.get_by_refresh_token(refresh_token)
            if user is not None:
                await self.users.set_refresh_token(user.id, None)
                logger.info("user_logged_out", user_id=user.id)
        except Exception as e:
            logger.warning("logout_token_clear_failed", error=str(e))
