"""User, session and one-time token records."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class UserStatus(str, Enum):
    """Account lifecycle state.

    Users are created as PENDING_VERIFICATION and become ACTIVE once an
    email-verify token is consumed. Only ACTIVE users may log in.
    """

    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class TokenPurpose(str, Enum):
    """What a one-time token is allowed to unlock."""

    EMAIL_VERIFY = "email_verify"
    PASSWORD_RESET = "password_reset"


class User(BaseModel):
    """A registered account as held by the credential store."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    company: Optional[str] = None
    role: str = "client"
    status: UserStatus = UserStatus.PENDING_VERIFICATION
    email_verified_at: Optional[datetime] = None
    mfa_enabled: bool = False
    last_login_at: Optional[datetime] = None
    login_count: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class UserCredentials(BaseModel):
    """Secret material for a user, kept apart from the public record."""

    user: User
    password_hash: Optional[str] = None
    mfa_secret: Optional[str] = None


class Session(BaseModel):
    """A refresh-token-bearing login session.

    Only the SHA-256 digest of the refresh token is stored.
    """

    id: UUID
    user_id: UUID
    token_hash: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    expires_at: datetime
    created_at: datetime


class OneTimeToken(BaseModel):
    """A single-use email-verify or password-reset token record."""

    id: UUID
    user_id: UUID
    purpose: TokenPurpose
    expires_at: datetime
    created_at: datetime
