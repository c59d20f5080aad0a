"""FastAPI application initialization."""

from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eventauth.api.auth import router as auth_router
from eventauth.api.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from eventauth.api.routes import router
from eventauth.config import get_settings
from eventauth.errors import AppError
from eventauth.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    logger = get_logger("main")

    # Database is required for every auth operation, so startup fails loudly
    from eventauth.database import close_database, init_database, run_migrations

    await init_database()
    await run_migrations()
    logger.info("database_initialized")

    if settings.otp_store == "redis":
        from eventauth.services.redis_service import get_redis

        if await get_redis() is None:
            logger.warning(
                "redis_initialization_failed",
                note="OTP verification will fail until Redis is reachable",
            )

    logger.info(
        "application_started",
        log_level=settings.log_level,
        verification_required=settings.otp_registration_enabled,
        verification_store=settings.otp_store,
    )

    yield

    await close_database()

    if settings.otp_store == "redis":
        from eventauth.services.redis_service import close_redis

        await close_redis()

    logger.info("application_shutdown")


app = FastAPI(
    title="Event Planner - Auth API",
    description="Cookie-based JWT authentication with refresh-token rotation",
    version="1.0.0",
    lifespan=lifespan,
)


def _error_response(request: Request, status_code: int, message: str, code=None) -> JSONResponse:
    content = {"error": message}
    if code is not None:
        content["code"] = code
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors as ``{"error": message}`` with their status."""
    logger = structlog.get_logger()
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        status_code=exc.status_code,
        error_type=type(exc).__name__,
        detail=exc.message,
    )
    return _error_response(request, exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with the validator's own message."""
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = first_error.get("loc") or ("body",)
        error_type = first_error.get("type")
        ctx = first_error.get("ctx") or {}
        if error_type == "missing":
            message = f"{loc[-1]} is required"
        elif error_type == "value_error" and "error" in ctx:
            message = str(ctx["error"])
        elif error_type == "json_invalid":
            message = "Request body is not valid JSON"
        else:
            field = ".".join(str(part) for part in loc)
            message = f"Field '{field}': {first_error.get('msg', 'Validation failed')}"
    else:
        message = "Request validation failed"

    logger.info("validation_error", path=request.url.path, detail=message)
    return _error_response(request, 400, message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures and hide their details from clients."""
    structlog.get_logger().exception(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return _error_response(request, 500, "Internal server error")


# CORS for the browser client; credentials are required for the auth cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

# Added last so it runs first and the correlation id is bound for every log line
app.add_middleware(CorrelationIdMiddleware)

app.include_router(auth_router)
app.include_router(router)
