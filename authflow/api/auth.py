"""Authentication API endpoints."""

from typing import Optional, Union

import structlog
from fastapi import APIRouter, Depends, status

from authflow.api.dependencies import get_auth_service, get_client_info, get_current_user
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
from authflow.models.user import User
from authflow.services.auth_service import (
    VERIFICATION_RESENT_MESSAGE,
    AuthService,
    ClientInfo,
    IssuedTokens,
    MfaChallenge,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def _user_summary(user: User) -> UserSummary:
    """Convert a User model to a UserSummary response."""
    return UserSummary(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
    )


def _login_response(tokens: IssuedTokens) -> LoginResponse:
    return LoginResponse(
        user=_user_summary(tokens.user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """Register a new account in pending-verification state.

    Raises:
        AuthError 409 USER_EXISTS: If the email is already registered
    """
    user_id = await auth_service.register(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        company=request.company,
    )
    return RegisterResponse(
        message="Registration successful. Please check your email to verify your account.",
        user_id=user_id,
    )


@router.post("/login")
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> Union[LoginResponse, MfaChallengeResponse]:
    """Login with email and password.

    Returns either a token pair or, for MFA-enabled accounts, an MFA
    challenge to be completed at ``/auth/mfa/verify``.

    Raises:
        AuthError 401 INVALID_CREDENTIALS: Unknown email or wrong password
        AuthError 403 ACCOUNT_INACTIVE: Account not active
    """
    result = await auth_service.login(request.email, request.password, client)

    if isinstance(result, MfaChallenge):
        return MfaChallengeResponse(mfa_token=result.mfa_token)

    return _login_response(result)


@router.post("/mfa/verify")
async def verify_mfa(
    request: MfaVerifyRequest,
    auth_service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> LoginResponse:
    """Complete an MFA login with the pending token and a TOTP code."""
    tokens = await auth_service.complete_mfa_login(request.mfa_token, request.code, client)
    return _login_response(tokens)


@router.post("/refresh", response_model_exclude_none=True)
async def refresh(
    request: Optional[RefreshRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
) -> RefreshResponse:
    """Exchange a refresh token for a new access token.

    Raises:
        AuthError 401 TOKEN_REQUIRED: No refresh token in the body
        AuthError 401 INVALID_TOKEN: Unknown, expired or revoked token
    """
    tokens = await auth_service.refresh(request.refresh_token if request else None)
    return RefreshResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.post("/logout")
async def logout(
    request: Optional[LogoutRequest] = None,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Log out of one session, or all sessions when no token is given."""
    refresh_token = request.refresh_token if request else None
    deleted = await auth_service.logout(current_user.id, refresh_token)
    logger.info(
        "user_logged_out",
        user_id=str(current_user.id),
        everywhere=refresh_token is None,
        sessions_deleted=deleted,
    )
    return MessageResponse(message="Logout successful")


@router.post("/verify-email")
async def verify_email(
    request: VerifyEmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> VerifyEmailResponse:
    """Verify an email address with the emailed one-time token.

    Raises:
        AuthError 400 INVALID_TOKEN: Unknown, expired or already used token
    """
    email = await auth_service.verify_email(request.token)
    return VerifyEmailResponse(message="Email verified successfully", email=email)


@router.post("/resend-verification")
async def resend_verification(
    request: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a new verification email; the response never reveals account state."""
    await auth_service.resend_verification(request.email)
    return MessageResponse(message=VERIFICATION_RESENT_MESSAGE)


@router.post("/forgot-password")
async def forgot_password(
    request: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Request a password reset email; the response is the same for any email."""
    message = await auth_service.request_password_reset(request.email)
    return MessageResponse(message=message)


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Set a new password with a reset token; all sessions are ended.

    Raises:
        AuthError 400 INVALID_TOKEN: Unknown, expired or already used token
    """
    await auth_service.reset_password(request.token, request.new_password)
    return MessageResponse(
        message="Password reset successful. Please login with your new password."
    )


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Get the authenticated user's profile."""
    return MeResponse(
        user=UserProfile(
            id=current_user.id,
            email=current_user.email,
            first_name=current_user.first_name,
            last_name=current_user.last_name,
            role=current_user.role,
            company=current_user.company,
            status=current_user.status.value,
            mfa_enabled=current_user.mfa_enabled,
        )
    )


@router.post("/mfa/setup")
async def setup_mfa(
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> MfaSetupResponse:
    """Generate a TOTP secret for the current user (not yet enabled)."""
    enrollment = await auth_service.begin_mfa_setup(current_user)
    return MfaSetupResponse(secret=enrollment.secret, otpauth_url=enrollment.otpauth_url)


@router.post("/mfa/enable")
async def enable_mfa(
    request: MfaCodeRequest,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.enable_mfa(current_user.id, request.code)
    return MessageResponse(message="Multi-factor authentication enabled")


@router.post("/mfa/disable")
async def disable_mfa(
    request: MfaCodeRequest,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.disable_mfa(current_user.id, request.code)
    return MessageResponse(message="Multi-factor authentication disabled")
