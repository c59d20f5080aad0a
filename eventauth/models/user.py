"""User and authentication models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class User(BaseModel):
    """A registered user (public view, never carries secrets)."""

    id: int
    email: str
    name: str
    phone_number: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Principal(BaseModel):
    """The authenticated caller attached to a protected request."""

    id: int
    email: str
    name: str


class PendingRegistration(BaseModel):
    """Registration payload held until the emailed OTP is verified.

    The password is hashed before the payload is stored.
    """

    name: str
    email: str
    phone_number: str
    password_hash: str


class PendingOTP(BaseModel):
    """A pending OTP entry keyed by email in the OTP store."""

    otp: str
    registration: PendingRegistration
    expires_at: float  # unix timestamp
