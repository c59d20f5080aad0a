"""API package exports."""

from eventauth.api.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from eventauth.api.routes import router

__all__ = ["router", "CorrelationIdMiddleware", "RequestLoggingMiddleware"]
