"""Models package exports."""

from eventauth.models.auth import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    VerifyOTPRequest,
)
from eventauth.models.user import PendingOTP, PendingRegistration, Principal, User

__all__ = [
    "ErrorResponse",
    "LoginRequest",
    "LoginResponse",
    "PendingOTP",
    "PendingRegistration",
    "Principal",
    "RegisterRequest",
    "RegisterResponse",
    "User",
    "VerifyOTPRequest",
]
