"""Auth request and response models with validation.

Wire bodies use camelCase field names; snake_case names are accepted on
input as well.
"""

import re
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_SPECIALS = "!$%&*?@"
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def normalize_email(value: str) -> str:
    """Trim and lower-case an email address, rejecting malformed ones."""
    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError("Valid email is required")
    return normalized


def check_password_strength(value: str) -> str:
    """Require lower, upper, digit and one special character."""
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain a lowercase letter")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain an uppercase letter")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain a number")
    if not any(ch in PASSWORD_SPECIALS for ch in value):
        raise ValueError(
            f"Password must contain a special character ({PASSWORD_SPECIALS})"
        )
    return value


class CamelModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RegisterRequest(CamelModel):
    """New account registration.

    Attributes:
        email: Account email (normalized to lower case)
        password: Password (min 8 chars, mixed case, digit, special)
        first_name: Given name (required, trimmed)
        last_name: Family name (required, trimmed)
        company: Optional company name
    """

    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=MAX_PASSWORD_BYTES)
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    company: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_strong(cls, v: str) -> str:
        return check_password_strength(v)

    @field_validator("first_name", "last_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Ensure names are not empty or whitespace only."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Name cannot be empty")
        return stripped

    @field_validator("company")
    @classmethod
    def company_trimmed(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class LoginRequest(CamelModel):
    """Login credentials."""

    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_BYTES)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)


class MfaVerifyRequest(CamelModel):
    """Second login step: the MFA-pending token plus a TOTP code."""

    mfa_token: str = Field(..., min_length=1)
    code: str = Field(..., pattern=r"^\d{6}$")


class MfaCodeRequest(CamelModel):
    """A TOTP code confirming possession of the authenticator."""

    code: str = Field(..., pattern=r"^\d{6}$")


class RefreshRequest(CamelModel):
    """Exchange a refresh token for a new access token.

    The token is optional at the schema level so that a missing token is
    reported as TOKEN_REQUIRED rather than a validation error.
    """

    refresh_token: Optional[str] = None


class LogoutRequest(CamelModel):
    """Logout of one session (token given) or all sessions (omitted)."""

    refresh_token: Optional[str] = None


class VerifyEmailRequest(CamelModel):
    token: str = Field(..., min_length=1)


class EmailRequest(CamelModel):
    """Body for forgot-password and resend-verification."""

    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)


class ResetPasswordRequest(CamelModel):
    """Complete a password reset with the emailed token."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=MAX_PASSWORD_BYTES)

    @field_validator("new_password")
    @classmethod
    def password_strong(cls, v: str) -> str:
        return check_password_strength(v)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class MessageResponse(CamelModel):
    message: str


class RegisterResponse(CamelModel):
    message: str
    user_id: UUID


class UserSummary(CamelModel):
    """Compact user representation returned on login."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    role: str


class UserProfile(UserSummary):
    """Full profile for the authenticated user."""

    company: Optional[str] = None
    status: str
    mfa_enabled: bool


class LoginResponse(CamelModel):
    """Successful authentication with a token pair.

    Attributes:
        user: Summary of the authenticated user
        access_token: Short-lived signed token for API access
        refresh_token: Opaque session token for obtaining new access tokens
    """

    user: UserSummary
    access_token: str
    refresh_token: str


class MfaChallengeResponse(CamelModel):
    """Password accepted; a second factor is required."""

    requires_mfa: Literal[True] = True
    mfa_token: str


class RefreshResponse(CamelModel):
    """New access token; refresh_token is present only when rotation is on."""

    access_token: str
    refresh_token: Optional[str] = None


class VerifyEmailResponse(CamelModel):
    message: str
    email: str


class MeResponse(CamelModel):
    user: UserProfile


class MfaSetupResponse(CamelModel):
    """Freshly generated TOTP secret and its provisioning URI."""

    secret: str
    otpauth_url: str
