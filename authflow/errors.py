"""Tagged error type for expected authentication outcomes.

Every user-facing failure carries an ``AuthErrorKind`` with a stable
machine-readable code. Kinds are turned into HTTP responses only by
``authflow.api.error_handling``.
"""

from enum import Enum
from typing import Any, Optional


class AuthErrorKind(str, Enum):
    """Stable error codes with their default status and message."""

    USER_EXISTS = "USER_EXISTS"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_MFA_CODE = "INVALID_MFA_CODE"
    MFA_NOT_CONFIGURED = "MFA_NOT_CONFIGURED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    REGISTRATION_ERROR = "REGISTRATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def status_code(self) -> int:
        return _DEFAULT_STATUS[self]

    @property
    def default_message(self) -> str:
        return _DEFAULT_MESSAGE[self]


_DEFAULT_STATUS = {
    AuthErrorKind.USER_EXISTS: 409,
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.ACCOUNT_INACTIVE: 403,
    AuthErrorKind.TOKEN_REQUIRED: 401,
    AuthErrorKind.INVALID_TOKEN: 401,
    AuthErrorKind.INVALID_MFA_CODE: 401,
    AuthErrorKind.MFA_NOT_CONFIGURED: 400,
    AuthErrorKind.VALIDATION_ERROR: 400,
    AuthErrorKind.REGISTRATION_ERROR: 500,
    AuthErrorKind.INTERNAL_ERROR: 500,
}

_DEFAULT_MESSAGE = {
    AuthErrorKind.USER_EXISTS: "User already exists",
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid credentials",
    AuthErrorKind.ACCOUNT_INACTIVE: "Account is not active. Please verify your email.",
    AuthErrorKind.TOKEN_REQUIRED: "Refresh token required",
    AuthErrorKind.INVALID_TOKEN: "Invalid or expired token",
    AuthErrorKind.INVALID_MFA_CODE: "Invalid verification code",
    AuthErrorKind.MFA_NOT_CONFIGURED: "Multi-factor authentication is not set up",
    AuthErrorKind.VALIDATION_ERROR: "Validation failed",
    AuthErrorKind.REGISTRATION_ERROR: "Registration failed",
    AuthErrorKind.INTERNAL_ERROR: "Internal server error",
}


class AuthError(Exception):
    """An expected, user-facing failure of an auth workflow step.

    Args:
        kind: Error kind; determines the wire code
        message: Override for the kind's default message
        status_code: Override for the kind's default HTTP status
        details: Optional structured payload (e.g. field errors)
    """

    def __init__(
        self,
        kind: AuthErrorKind,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.default_message
        self.status_code = status_code or kind.status_code
        self.details = details
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict:
        """Wire representation: ``{"error": message, "code": CODE}``."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


__all__ = ["AuthError", "AuthErrorKind"]
