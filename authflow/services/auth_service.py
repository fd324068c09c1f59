"""Auth workflow engine: registration, login, sessions, verification, reset."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from uuid import UUID

import structlog

from authflow.config import Settings
from authflow.database import Database
from authflow.errors import AuthError, AuthErrorKind
from authflow.models.user import TokenPurpose, User, UserStatus
from authflow.services.email_service import EmailService
from authflow.services.one_time_token_service import OneTimeTokenService
from authflow.services.password_hasher import PasswordHasher
from authflow.services.session_service import SessionService
from authflow.services.token_signer import TokenSignatureError, TokenSigner
from authflow.services.totp_service import TotpService
from authflow.services.user_service import UserService

logger = structlog.get_logger(__name__)

RESET_REQUESTED_MESSAGE = (
    "If an account exists with this email, you will receive password reset instructions."
)
VERIFICATION_RESENT_MESSAGE = (
    "If an account is awaiting verification, a new verification email has been sent."
)


@dataclass
class ClientInfo:
    """Informational request metadata stored on new sessions."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class IssuedTokens:
    """A completed login: the user plus a fresh access/refresh pair."""

    user: User
    access_token: str
    refresh_token: str


@dataclass
class MfaChallenge:
    """Password accepted, second factor outstanding."""

    mfa_token: str


@dataclass
class RefreshedTokens:
    access_token: str
    refresh_token: Optional[str] = None


@dataclass
class MfaEnrollment:
    secret: str
    otpauth_url: str


class AuthService:
    """Orchestrates the credential and session lifecycle.

    All collaborators are injected. Writes that must land together
    (user + verification token, token consumption + state change,
    password + token + sessions) share one ``Database.transaction()``.
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        *,
        users: UserService,
        sessions: SessionService,
        one_time_tokens: OneTimeTokenService,
        hasher: PasswordHasher,
        signer: TokenSigner,
        email: EmailService,
        totp: TotpService,
    ):
        self.settings = settings
        self.db = db
        self.users = users
        self.sessions = sessions
        self.one_time_tokens = one_time_tokens
        self.hasher = hasher
        self.signer = signer
        self.email = email
        self.totp = totp

    @classmethod
    def from_database(cls, settings: Settings, db: Database) -> "AuthService":
        """Wire the default Postgres-backed collaborators around ``db``."""
        return cls(
            settings,
            db,
            users=UserService(db),
            sessions=SessionService(db, settings),
            one_time_tokens=OneTimeTokenService(db),
            hasher=PasswordHasher(settings),
            signer=TokenSigner(settings),
            email=EmailService(settings),
            totp=TotpService(settings),
        )

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    async def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        company: Optional[str] = None,
    ) -> UUID:
        """Create a pending account and send its verification email.

        The user row and its email-verify token are written in one
        transaction. The email goes out after commit and its failure does
        not undo the registration.

        Returns:
            The new user's id

        Raises:
            AuthError(USER_EXISTS): If the email is taken, including when a
                concurrent registration wins the insert
            AuthError(REGISTRATION_ERROR): On unexpected storage failure
        """
        try:
            if await self.users.email_exists(email):
                logger.info("registration_rejected_duplicate")
                raise AuthError(AuthErrorKind.USER_EXISTS)

            password_hash = await self.hasher.hash_password(password)

            async with self.db.transaction() as conn:
                user = await self.users.create_user(
                    conn,
                    email=email,
                    password_hash=password_hash,
                    first_name=first_name,
                    last_name=last_name,
                    company=company,
                )
                token = await self.one_time_tokens.issue(
                    user.id,
                    TokenPurpose.EMAIL_VERIFY,
                    self._email_verify_ttl,
                    conn=conn,
                )
        except AuthError:
            raise
        except Exception:
            logger.exception("registration_failed")
            raise AuthError(AuthErrorKind.REGISTRATION_ERROR)

        self._send_verification_email(user, token)
        logger.info("user_registered", user_id=str(user.id))
        return user.id

    async def verify_email(self, token: str) -> str:
        """Consume an email-verify token and activate its user.

        Returns:
            The verified email address

        Raises:
            AuthError(INVALID_TOKEN, 400): If the token is unknown, expired,
                already used, or its user can no longer be activated
        """
        async with self.db.transaction() as conn:
            record = await self.one_time_tokens.consume(
                conn, token, TokenPurpose.EMAIL_VERIFY
            )
            if record is None:
                raise self._invalid_link("Invalid or expired verification token")

            user = await self.users.activate(conn, record.user_id)
            if user is None:
                raise self._invalid_link("Invalid or expired verification token")

        logger.info("email_verified", user_id=str(user.id))
        return user.email

    async def resend_verification(self, email: str) -> None:
        """Issue a fresh email-verify token for a pending account.

        Does nothing (silently) for unknown or already verified emails.
        """
        credentials = await self.users.get_by_email(email)
        if credentials is None or credentials.user.status != UserStatus.PENDING_VERIFICATION:
            logger.info("verification_resend_skipped")
            return

        user = credentials.user
        token = await self.one_time_tokens.issue(
            user.id, TokenPurpose.EMAIL_VERIFY, self._email_verify_ttl
        )
        self._send_verification_email(user, token)
        logger.info("verification_resent", user_id=str(user.id))

    # ------------------------------------------------------------------
    # Login, MFA, refresh, logout
    # ------------------------------------------------------------------

    async def login(
        self, email: str, password: str, client: Optional[ClientInfo] = None
    ) -> Union[IssuedTokens, MfaChallenge]:
        """Authenticate with email and password.

        Unknown email and wrong password raise the same error. Account
        status is checked only after the password matched, and nothing is
        issued for a non-active account.

        Raises:
            AuthError(INVALID_CREDENTIALS): Unknown email or wrong password
            AuthError(ACCOUNT_INACTIVE): Password ok but account not active
        """
        credentials = await self.users.get_by_email(email)
        password_hash = credentials.password_hash if credentials else None

        # Runs against a throwaway hash when the user is unknown
        password_ok = await self.hasher.verify_password(password, password_hash)

        if credentials is None or not password_ok:
            logger.warning(
                "login_failed",
                reason="unknown_email" if credentials is None else "wrong_password",
                user_id=str(credentials.user.id) if credentials else None,
            )
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

        user = credentials.user
        if not user.is_active:
            logger.warning("login_rejected_inactive", user_id=str(user.id), status=user.status.value)
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)

        if user.mfa_enabled:
            logger.info("login_mfa_required", user_id=str(user.id))
            return MfaChallenge(mfa_token=self.signer.create_mfa_token(str(user.id)))

        return await self._start_session(user, client)

    async def complete_mfa_login(
        self, mfa_token: str, code: str, client: Optional[ClientInfo] = None
    ) -> IssuedTokens:
        """Exchange an MFA-pending token plus a TOTP code for a session.

        The pending token is claimed only after the code checks out, so a
        mistyped code can be retried until the token expires; once claimed
        it can never be used again.

        Raises:
            AuthError(INVALID_TOKEN): Bad, expired or already used MFA token
            AuthError(ACCOUNT_INACTIVE): Account deactivated meanwhile
            AuthError(MFA_NOT_CONFIGURED): MFA was turned off meanwhile
            AuthError(INVALID_MFA_CODE): Wrong code
        """
        try:
            payload = self.signer.validate_mfa_token(mfa_token)
            user_id = UUID(payload["sub"])
        except (TokenSignatureError, ValueError) as e:
            logger.warning("mfa_token_rejected", reason=str(e))
            raise AuthError(AuthErrorKind.INVALID_TOKEN)

        credentials = await self.users.get_credentials(user_id)
        if credentials is None:
            raise AuthError(AuthErrorKind.INVALID_TOKEN)

        user = credentials.user
        if not user.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)

        if not user.mfa_enabled or not credentials.mfa_secret:
            raise AuthError(AuthErrorKind.MFA_NOT_CONFIGURED)

        if not self.totp.verify(credentials.mfa_secret, code):
            logger.warning("mfa_code_rejected", user_id=str(user.id))
            raise AuthError(AuthErrorKind.INVALID_MFA_CODE)

        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        tokens = await self._start_session(
            user, client, claim=(payload["jti"], expires_at)
        )
        logger.info("mfa_login_completed", user_id=str(user.id))
        return tokens

    async def refresh(self, refresh_token: Optional[str]) -> RefreshedTokens:
        """Mint a new access token from a refresh token.

        With ``refresh_token_rotation`` on, the presented token is replaced
        atomically and the new one returned; the old one then fails.

        Raises:
            AuthError(TOKEN_REQUIRED): No token given
            AuthError(INVALID_TOKEN): Unknown, expired or revoked token
            AuthError(ACCOUNT_INACTIVE): Owner is no longer active
        """
        if not refresh_token:
            raise AuthError(AuthErrorKind.TOKEN_REQUIRED)

        found = await self.sessions.get_active_session(refresh_token)
        if found is None:
            raise AuthError(AuthErrorKind.INVALID_TOKEN, "Invalid or expired refresh token")

        session, user = found
        if not user.is_active:
            logger.warning("refresh_rejected_inactive", user_id=str(user.id))
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE, "Account is not active")

        new_refresh_token = None
        if self.settings.refresh_token_rotation:
            new_refresh_token = await self.sessions.rotate_session(refresh_token, user.id)
            if new_refresh_token is None:
                raise AuthError(AuthErrorKind.INVALID_TOKEN, "Invalid or expired refresh token")

        access_token = self.signer.create_access_token(user)
        logger.info(
            "access_token_refreshed",
            user_id=str(user.id),
            session_id=str(session.id),
            rotated=new_refresh_token is not None,
        )
        return RefreshedTokens(access_token=access_token, refresh_token=new_refresh_token)

    async def logout(self, user_id: UUID, refresh_token: Optional[str] = None) -> int:
        """Delete one session (token given) or all of the user's sessions.

        Idempotent; returns the number of sessions removed.
        """
        if refresh_token:
            return await self.sessions.delete_session(user_id, refresh_token)
        return await self.sessions.delete_all_for_user(user_id)

    async def authenticate_access_token(self, token: str) -> User:
        """Resolve a bearer access token to a currently active user.

        Raises:
            AuthError(INVALID_TOKEN): Bad token or unknown user
            AuthError(ACCOUNT_INACTIVE): User no longer active
        """
        try:
            payload = self.signer.validate_access_token(token)
            user_id = UUID(payload["sub"])
        except (TokenSignatureError, ValueError) as e:
            logger.debug("access_token_rejected", reason=str(e))
            raise AuthError(AuthErrorKind.INVALID_TOKEN, "Invalid or expired access token")

        user = await self.users.get_by_id(user_id)
        if user is None:
            raise AuthError(AuthErrorKind.INVALID_TOKEN, "Invalid or expired access token")
        if not user.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE, "Account is not active")
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> str:
        """Send a reset link if the account exists.

        Returns:
            The same confirmation message whether or not the email is known
        """
        credentials = await self.users.get_by_email(email)
        if credentials is None:
            logger.info("password_reset_requested", known=False)
            return RESET_REQUESTED_MESSAGE

        user = credentials.user
        token = await self.one_time_tokens.issue(
            user.id, TokenPurpose.PASSWORD_RESET, self._password_reset_ttl
        )
        self.email.send(
            to=user.email,
            subject="Reset your Dreamer AI password",
            template="reset-password",
            data={
                "name": user.first_name,
                "resetLink": f"{self._frontend_url}/reset-password?token={token}",
                "expiresIn": _describe(self._password_reset_ttl),
            },
        )
        logger.info("password_reset_requested", known=True, user_id=str(user.id))
        return RESET_REQUESTED_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password with a reset token and end every session.

        Raises:
            AuthError(INVALID_TOKEN, 400): Unknown, expired or used token
        """
        password_hash = await self.hasher.hash_password(new_password)

        async with self.db.transaction() as conn:
            record = await self.one_time_tokens.consume(
                conn, token, TokenPurpose.PASSWORD_RESET
            )
            if record is None:
                raise self._invalid_link("Invalid or expired reset token")

            if not await self.users.update_password(conn, record.user_id, password_hash):
                raise self._invalid_link("Invalid or expired reset token")

            revoked = await self.sessions.delete_all_for_user(record.user_id, conn=conn)

        logger.info(
            "password_reset_completed",
            user_id=str(record.user_id),
            sessions_revoked=revoked,
        )

    # ------------------------------------------------------------------
    # MFA enrollment
    # ------------------------------------------------------------------

    async def begin_mfa_setup(self, user: User) -> MfaEnrollment:
        """Generate and store a new TOTP secret; MFA stays off until enabled."""
        secret = self.totp.generate_secret()
        await self.users.set_mfa_secret(user.id, secret)
        logger.info("mfa_setup_started", user_id=str(user.id))
        return MfaEnrollment(
            secret=secret,
            otpauth_url=self.totp.provisioning_uri(secret, user.email),
        )

    async def enable_mfa(self, user_id: UUID, code: str) -> None:
        await self._check_enrollment_code(user_id, code)
        await self.users.set_mfa_enabled(user_id, True)

    async def disable_mfa(self, user_id: UUID, code: str) -> None:
        await self._check_enrollment_code(user_id, code)
        await self.users.set_mfa_enabled(user_id, False)

    async def _check_enrollment_code(self, user_id: UUID, code: str) -> None:
        credentials = await self.users.get_credentials(user_id)
        if credentials is None or not credentials.mfa_secret:
            raise AuthError(AuthErrorKind.MFA_NOT_CONFIGURED)
        if not self.totp.verify(credentials.mfa_secret, code):
            logger.warning("mfa_code_rejected", user_id=str(user_id))
            raise AuthError(AuthErrorKind.INVALID_MFA_CODE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _start_session(
        self,
        user: User,
        client: Optional[ClientInfo],
        claim: Optional[tuple[str, datetime]] = None,
    ) -> IssuedTokens:
        """Create the session row and record the login in one transaction.

        ``claim`` is an action token (jti, expiry) spent in the same
        transaction, so a failed session insert leaves it unclaimed.
        """
        client = client or ClientInfo()

        async with self.db.transaction() as conn:
            if claim is not None:
                jti, expires_at = claim
                if not await self.one_time_tokens.claim_action_token(
                    jti, expires_at, conn=conn
                ):
                    raise AuthError(AuthErrorKind.INVALID_TOKEN)
            refresh_token = await self.sessions.create_session(
                user.id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                conn=conn,
            )
            await self.users.record_login(user.id, conn=conn)

        access_token = self.signer.create_access_token(user)
        logger.info("user_logged_in", user_id=str(user.id))
        return IssuedTokens(user=user, access_token=access_token, refresh_token=refresh_token)

    def _send_verification_email(self, user: User, token: str) -> None:
        self.email.send(
            to=user.email,
            subject="Verify your Dreamer AI account",
            template="verify-email",
            data={
                "name": user.first_name,
                "verificationLink": f"{self._frontend_url}/verify-email?token={token}",
                "expiresIn": _describe(self._email_verify_ttl),
            },
        )
        logger.info("verification_email_dispatched", user_id=str(user.id))

    @staticmethod
    def _invalid_link(message: str) -> AuthError:
        return AuthError(AuthErrorKind.INVALID_TOKEN, message, status_code=400)

    @property
    def _email_verify_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.email_verify_expire_hours)

    @property
    def _password_reset_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.password_reset_expire_minutes)

    @property
    def _frontend_url(self) -> str:
        return self.settings.frontend_url.rstrip("/")


def _describe(ttl: timedelta) -> str:
    """Human wording for a lifetime, e.g. '24 hours' or '30 minutes'."""
    minutes = int(ttl.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"
