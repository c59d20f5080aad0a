"""Operational endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter

from eventauth.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Status, timestamp in ISO8601 format and backing service health
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        from eventauth.database import health_check as db_health_check

        db_healthy = await db_health_check()
        health_status["database"] = "healthy" if db_healthy else "unhealthy"
    except Exception:
        health_status["database"] = "unavailable"

    if get_settings().otp_store == "redis":
        try:
            from eventauth.services.redis_service import get_redis

            redis_client = await get_redis()
            health_status["redis"] = "healthy" if redis_client else "unavailable"
        except Exception:
            health_status["redis"] = "unavailable"

    return health_status
