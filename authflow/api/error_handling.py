"""Map tagged auth errors and framework errors to JSON responses."""

from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from authflow.errors import AuthError, AuthErrorKind

logger = structlog.get_logger(__name__)


def _correlation_headers(request: Request) -> dict:
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    return {"X-Correlation-Id": correlation_id}


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers producing ``{"error": ..., "code": ...}`` bodies."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "auth_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=_correlation_headers(request),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors with field-level details.

        Only the location and message of each error are returned; raw
        input values are left out so submitted passwords never echo back.
        """
        details = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", ()) if loc != "body"),
                "message": error.get("msg", "Invalid value"),
            }
            for error in exc.errors()
        ]

        logger.warning(
            "validation_error",
            path=request.url.path,
            fields=[d["field"] for d in details],
        )

        error = AuthError(AuthErrorKind.VALIDATION_ERROR, details=details)
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_dict(),
            headers=_correlation_headers(request),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        error = AuthError(AuthErrorKind.INTERNAL_ERROR)
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_dict(),
            headers=_correlation_headers(request),
        )
