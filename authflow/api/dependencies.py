"""FastAPI dependencies for the auth workflow and bearer authentication."""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authflow.errors import AuthError, AuthErrorKind
from authflow.models.user import User
from authflow.services.auth_service import AuthService, ClientInfo

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built at application startup."""
    return request.app.state.auth_service


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Extract and validate the current user from a Bearer access token.

    Raises:
        AuthError(TOKEN_REQUIRED): No Authorization header
        AuthError(INVALID_TOKEN): Token invalid, expired, or user unknown
        AuthError(ACCOUNT_INACTIVE): User no longer active
    """
    if credentials is None or not credentials.credentials:
        raise AuthError(AuthErrorKind.TOKEN_REQUIRED, "Authentication required")

    return await auth_service.authenticate_access_token(credentials.credentials)
