"""Services package exports."""

from authflow.services.auth_service import AuthService
from authflow.services.logging_service import configure_logging, get_logger

__all__ = [
    "AuthService",
    "configure_logging",
    "get_logger",
]
