"""API package exports."""

from authflow.api.auth import router as auth_router
from authflow.api.health import router as health_router
from authflow.api.middleware import CorrelationIdMiddleware

__all__ = ["auth_router", "health_router", "CorrelationIdMiddleware"]
