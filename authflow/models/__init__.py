"""Models package exports."""

from authflow.models.auth import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    MfaChallengeResponse,
    MfaCodeRequest,
    MfaSetupResponse,
    MfaVerifyRequest,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserProfile,
    UserSummary,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from authflow.models.user import (
    OneTimeToken,
    Session,
    TokenPurpose,
    User,
    UserCredentials,
    UserStatus,
)

__all__ = [
    "EmailRequest",
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "MeResponse",
    "MessageResponse",
    "MfaChallengeResponse",
    "MfaCodeRequest",
    "MfaSetupResponse",
    "MfaVerifyRequest",
    "OneTimeToken",
    "RefreshRequest",
    "RefreshResponse",
    "RegisterRequest",
    "RegisterResponse",
    "ResetPasswordRequest",
    "Session",
    "TokenPurpose",
    "User",
    "UserCredentials",
    "UserProfile",
    "UserStatus",
    "UserSummary",
    "VerifyEmailRequest",
    "VerifyEmailResponse",
]
