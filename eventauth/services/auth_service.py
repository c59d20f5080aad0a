"""Password hashing and JWT access/refresh token minting and validation."""

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
import jwt
import structlog

from eventauth.config import get_settings
from eventauth.errors import AuthenticationError, TokenExpiredError

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
MIN_DURATION = timedelta(seconds=1)

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d|w)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def parse_duration(value: str | int) -> timedelta:
    """Parse a token lifetime such as ``"15m"``, ``"7d"`` or ``900``.

    A bare number is a count of seconds.

    Raises:
        ValueError: If the value is malformed or shorter than one second
    """
    if isinstance(value, int):
        amount, unit = float(value), "s"
    else:
        match = _DURATION_PATTERN.match(value)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = float(match.group(1)), (match.group(2) or "s").lower()

    duration = _DURATION_UNITS[unit] * amount
    # Cookie Max-Age is whole seconds; anything shorter would delete the cookie
    if duration < MIN_DURATION:
        raise ValueError(f"Duration must be at least 1 second: {value!r}")
    return duration


def hash_token(token: str) -> str:
    """SHA-256 digest used to store and look up refresh tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TokenPair:
    """A freshly minted access/refresh pair with matching cookie lifetimes."""

    access_token: str
    refresh_token: str
    access_max_age: int
    refresh_max_age: int


class AuthService:
    """Service for password hashing and JWT management."""

    def __init__(self):
        self.settings = get_settings()
        self.access_lifetime = parse_duration(self.settings.jwt_expires_in)
        self.refresh_lifetime = parse_duration(self.settings.jwt_refresh_expires_in)

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string
        """
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise (including a
            malformed hash)
        """
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            logger.warning("password_hash_malformed")
            return False

    def _encode(
        self, user_id: int, email: str, token_type: str, secret: str, lifetime: timedelta
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": user_id,
            "email": email,
            "typ": token_type,
            "jti": uuid4().hex,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    def create_access_token(self, user_id: int, email: str) -> str:
        """Create a short-lived access token signed with the access secret."""
        return self._encode(
            user_id,
            email,
            ACCESS_TOKEN_TYPE,
            self.settings.jwt_secret,
            self.access_lifetime,
        )

    def create_refresh_token(self, user_id: int, email: str) -> str:
        """Create a long-lived refresh token signed with the refresh secret."""
        return self._encode(
            user_id,
            email,
            REFRESH_TOKEN_TYPE,
            self.settings.jwt_refresh_secret,
            self.refresh_lifetime,
        )

    def issue_token_pair(self, user_id: int, email: str) -> TokenPair:
        """Mint a brand-new access/refresh pair for a user."""
        pair = TokenPair(
            access_token=self.create_access_token(user_id, email),
            refresh_token=self.create_refresh_token(user_id, email),
            access_max_age=int(self.access_lifetime.total_seconds()),
            refresh_max_age=int(self.refresh_lifetime.total_seconds()),
        )
        logger.debug(
            "token_pair_issued",
            user_id=user_id,
            access_max_age=pair.access_max_age,
            refresh_max_age=pair.refresh_max_age,
        )
        return pair

    def _decode(self, token: str, secret: str, token_type: str, invalid_message: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidTokenError as e:
            logger.debug("token_decode_failed", kind=token_type, reason=str(e))
            raise AuthenticationError(invalid_message)

        if payload.get("typ") != token_type or not isinstance(payload.get("id"), int):
            raise AuthenticationError(invalid_message)
        return payload

    def decode_access_token(self, token: str) -> dict:
        """Decode and validate an access token.

        Returns:
            Decoded payload with id, email, typ, jti, iat, exp

        Raises:
            TokenExpiredError: If the signature is valid but the token expired
            AuthenticationError: If the token is malformed or badly signed
        """
        return self._decode(
            token, self.settings.jwt_secret, ACCESS_TOKEN_TYPE, "Invalid token"
        )

    def decode_refresh_token(self, token: str) -> dict:
        """Decode and validate a refresh token.

        Expiry is reported the same way as any other invalid refresh token.

        Raises:
            AuthenticationError: If the token is expired, malformed or badly signed
        """
        try:
            return self._decode(
                token,
                self.settings.jwt_refresh_secret,
                REFRESH_TOKEN_TYPE,
                "Invalid refresh token",
            )
        except TokenExpiredError:
            raise AuthenticationError("Invalid refresh token")
