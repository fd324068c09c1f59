"""Signed token issuance and verification (JWT)."""

import secrets
from datetime import datetime, timedelta, timezone

import jwt
import structlog

from authflow.config import Settings
from authflow.models.user import User

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
MFA_TOKEN_TYPE = "mfa"


class TokenSignatureError(ValueError):
    """A token failed signature, expiry, audience or type checks."""


class TokenSigner:
    """Issues and verifies HMAC-signed JWTs.

    Access tokens and MFA-pending tokens share the signing key but carry a
    ``type`` claim, and each verifier only accepts its own type.
    """

    def __init__(self, settings: Settings):
        self.secret = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl = timedelta(minutes=settings.access_token_expire_minutes)
        self.mfa_ttl = timedelta(minutes=settings.mfa_token_expire_minutes)

    def create_access_token(self, user: User) -> str:
        """Create a signed access token for ``user``.

        Args:
            user: Authenticated user; id goes in the 'sub' claim

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "type": ACCESS_TOKEN_TYPE,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        logger.debug(
            "access_token_created",
            user_id=str(user.id),
            expires_minutes=int(self.access_ttl.total_seconds() // 60),
        )
        return token

    def create_mfa_token(self, user_id: str) -> str:
        """Create a short-lived MFA-pending token bound to ``user_id``.

        The token carries a random ``jti`` so that completion can claim it
        exactly once.
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "type": MFA_TOKEN_TYPE,
            "jti": secrets.token_hex(16),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.mfa_ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def validate_access_token(self, token: str) -> dict:
        """Decode and validate an access token.

        Returns:
            Decoded payload dict with sub, email, role, iat, exp

        Raises:
            TokenSignatureError: If the token is invalid, expired, or not an access token
        """
        return self._decode(token, ACCESS_TOKEN_TYPE)

    def validate_mfa_token(self, token: str) -> dict:
        """Decode and validate an MFA-pending token.

        Raises:
            TokenSignatureError: If the token is invalid, expired, or not an MFA token
        """
        payload = self._decode(token, MFA_TOKEN_TYPE)
        if not payload.get("jti"):
            raise TokenSignatureError("MFA token is missing its identifier")
        return payload

    def _decode(self, token: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenSignatureError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise TokenSignatureError(f"Invalid token: {e}")

        if payload.get("type") != expected_type:
            raise TokenSignatureError(f"Expected a {expected_type} token")

        return payload
