"""Auth request and response models with validation."""

import re
from typing import Optional

from pydantic import BaseModel, ValidationInfo, field_validator

from eventauth.models.user import Principal, User

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
OTP_PATTERN = re.compile(r"^\d{6}$")
MIN_PASSWORD_LENGTH = 6
# bcrypt only accepts passwords up to 72 bytes
MAX_PASSWORD_BYTES = 72
MIN_PHONE_DIGITS = 10


def _required(v: str, info: ValidationInfo) -> str:
    if not v or not v.strip():
        raise ValueError(f"{info.field_name} is required")
    return v


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Email address is not valid")
    return v


class RegisterRequest(BaseModel):
    """New account details.

    Attributes:
        name: Display name
        email: Unique email address (stored lower-cased)
        phone_number: Unique phone number with at least 10 digits
        password: Plain-text password (min 6 chars)
    """

    name: str
    email: str
    phone_number: str
    password: str

    @field_validator("name", "email", "phone_number", "password")
    @classmethod
    def not_blank(cls, v: str, info: ValidationInfo) -> str:
        """Reject empty or whitespace-only values."""
        return _required(v, info)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_length(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
            )
        return v

    @field_validator("phone_number")
    @classmethod
    def phone_long_enough(cls, v: str) -> str:
        v = v.strip()
        if sum(ch.isdigit() for ch in v) < MIN_PHONE_DIGITS:
            raise ValueError(
                f"Phone number must be at least {MIN_PHONE_DIGITS} digits long"
            )
        return v


class LoginRequest(BaseModel):
    """Login credentials."""

    email: str
    password: str

    @field_validator("email", "password")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Email and password are required")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class VerifyOTPRequest(BaseModel):
    """Email plus the 6-digit code that was sent to it."""

    email: str
    otp: str

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str, info: ValidationInfo) -> str:
        return _normalize_email(_required(v, info))

    @field_validator("otp")
    @classmethod
    def otp_is_six_digits(cls, v: str) -> str:
        v = v.strip()
        if not OTP_PATTERN.match(v):
            raise ValueError("OTP must be a 6-digit code")
        return v


class RegisterResponse(BaseModel):
    """Account created and signed in."""

    message: str
    user: User


class OTPSentResponse(BaseModel):
    """Registration started; the code was emailed (never returned)."""

    message: str
    email: str


class LoginResponse(BaseModel):
    """Successful login.

    Attributes:
        message: Human-readable status
        user: Public view of the user
        accessToken: The access token also set in the ``accessToken`` cookie
    """

    message: str
    user: User
    accessToken: str


class RefreshResponse(BaseModel):
    """Token pair rotated."""

    message: str
    user: Principal


class MeResponse(BaseModel):
    user: Principal


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    code: Optional[str] = None
