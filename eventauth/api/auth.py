"""Authentication API endpoints."""

from typing import Optional, Union

import structlog
from fastapi import APIRouter, Cookie, Depends, Response, status
from fastapi.responses import JSONResponse

from eventauth.api.dependencies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_current_user,
    get_session_service,
)
from eventauth.config import get_settings
from eventauth.errors import AuthenticationError
from eventauth.models.auth import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OTPSentResponse,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    VerifyOTPRequest,
)
from eventauth.models.user import Principal, User
from eventauth.services.auth_service import TokenPair
from eventauth.services.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Auth"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)


def set_auth_cookies(response: Response, pair: TokenPair) -> None:
    """Set both auth cookies with lifetimes matching the tokens' expiry."""
    settings = get_settings()
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        pair.access_token,
        max_age=pair.access_max_age,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        pair.refresh_token,
        max_age=pair.refresh_max_age,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
    )


def clear_auth_cookies(response: Response) -> None:
    settings = get_settings()
    for name in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            httponly=True,
            secure=settings.cookie_secure,
            samesite=settings.cookie_samesite,
        )


def _principal(user: User) -> Principal:
    return Principal(id=user.id, email=user.email, name=user.name)


@router.post("/register")
async def register(
    request: RegisterRequest,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> Union[RegisterResponse, OTPSentResponse]:
    """Register a new account.

    With OTP registration enabled the account is only created once the
    emailed code is verified via ``/auth/verify-otp``; otherwise it is created
    and signed in immediately.

    Raises:
        400: Missing or malformed fields
        409: Email or phone number already taken
    """
    if get_settings().otp_registration_enabled:
        email = await service.start_registration(request)
        return OTPSentResponse(
            message="OTP sent to your email. Please verify to complete registration.",
            email=email,
        )

    user, pair = await service.register(request)
    set_auth_cookies(response, pair)
    response.status_code = status.HTTP_201_CREATED
    return RegisterResponse(message="User registered successfully", user=user)


@router.post("/verify-otp", status_code=status.HTTP_201_CREATED)
async def verify_otp(
    request: VerifyOTPRequest,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> RegisterResponse:
    """Verify an emailed code and complete registration.

    Raises:
        400: Invalid or expired OTP
    """
    user, pair = await service.verify_otp(request.email, request.otp)
    set_auth_cookies(response, pair)
    return RegisterResponse(message="User registered successfully", user=user)


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> LoginResponse:
    """Login with email and password.

    Raises:
        401: Invalid email or password (no cookies are set)
    """
    user, pair = await service.login(request.email, request.password)
    set_auth_cookies(response, pair)
    return LoginResponse(
        message="Login successful",
        user=user,
        accessToken=pair.access_token,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    refresh_token: Optional[str] = Cookie(default=None, alias=REFRESH_TOKEN_COOKIE),
    service: SessionService = Depends(get_session_service),
):
    """Rotate the token pair using the ``refreshToken`` cookie.

    On any failure both cookies are cleared and 401 is returned.
    """
    try:
        user, pair = await service.refresh(refresh_token)
    except AuthenticationError as e:
        logger.info("refresh_rejected", detail=e.message)
        failed = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": e.message},
        )
        clear_auth_cookies(failed)
        return failed

    body = RefreshResponse(message="Token refreshed successfully", user=_principal(user))
    ok = JSONResponse(content=body.model_dump())
    set_auth_cookies(ok, pair)
    return ok


@router.post("/logout")
async def logout(
    response: Response,
    refresh_token: Optional[str] = Cookie(default=None, alias=REFRESH_TOKEN_COOKIE),
    service: SessionService = Depends(get_session_service),
) -> MessageResponse:
    """Forget the session and clear both cookies unconditionally."""
    await service.logout(refresh_token)
    clear_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me")
async def get_me(current_user: Principal = Depends(get_current_user)) -> MeResponse:
    """Return the authenticated caller."""
    return MeResponse(user=current_user)
