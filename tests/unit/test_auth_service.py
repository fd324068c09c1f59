"""Unit tests for AuthService.

The Postgres stores are replaced with in-memory fakes honoring the same
contracts; hashing, signing and TOTP use the real implementations.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import bcrypt
import pyotp
import pytest

from authflow.errors import AuthError, AuthErrorKind
from authflow.models.user import (
    OneTimeToken,
    Session,
    TokenPurpose,
    User,
    UserCredentials,
    UserStatus,
)
from authflow.services.auth_service import (
    RESET_REQUESTED_MESSAGE,
    AuthService,
    ClientInfo,
    IssuedTokens,
    MfaChallenge,
    _describe,
)
from authflow.services.email_service import EmailService
from authflow.services.opaque_tokens import generate_token, hash_token
from authflow.services.password_hasher import PasswordHasher
from authflow.services.token_signer import TokenSigner
from authflow.services.totp_service import TotpService

PASSWORD = "Str0ng!Pass"
NEW_PASSWORD = "N3w!Passw0rd"


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

class FakeDatabase:
    def __init__(self):
        self.transactions = 0
        self.on_rollback = []

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        self.on_rollback = []
        try:
            yield object()
        except Exception:
            for undo in self.on_rollback:
                undo()
            raise


class FakeUserStore:
    def __init__(self):
        self.records: dict[UUID, UserCredentials] = {}

    async def email_exists(self, email):
        return any(r.user.email == email for r in self.records.values())

    async def create_user(
        self, conn, *, email, password_hash, first_name, last_name, company=None, role="client"
    ):
        # Unique index on users.email
        if any(r.user.email == email for r in self.records.values()):
            raise AuthError(AuthErrorKind.USER_EXISTS)
        now = datetime.now(timezone.utc)
        user = User(
            id=uuid4(),
            email=email,
            first_name=first_name,
            last_name=last_name,
            company=company,
            role=role,
            status=UserStatus.PENDING_VERIFICATION,
            created_at=now,
            updated_at=now,
        )
        self.records[user.id] = UserCredentials(user=user, password_hash=password_hash)
        return user

    async def get_by_email(self, email):
        for record in self.records.values():
            if record.user.email == email:
                return record.model_copy(deep=True)
        return None

    async def get_credentials(self, user_id):
        record = self.records.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def get_by_id(self, user_id):
        record = self.records.get(user_id)
        return record.user.model_copy() if record else None

    async def activate(self, conn, user_id):
        record = self.records.get(user_id)
        if record is None or record.user.status not in (
            UserStatus.PENDING_VERIFICATION,
            UserStatus.ACTIVE,
        ):
            return None
        self._update(user_id, status=UserStatus.ACTIVE)
        return self.records[user_id].user.model_copy()

    async def update_password(self, conn, user_id, password_hash):
        if user_id not in self.records:
            return False
        self.records[user_id].password_hash = password_hash
        return True

    async def record_login(self, user_id, conn=None):
        user = self.records[user_id].user
        self._update(user_id, login_count=user.login_count + 1)

    async def set_mfa_secret(self, user_id, secret):
        self.records[user_id].mfa_secret = secret
        self._update(user_id, mfa_enabled=False)

    async def set_mfa_enabled(self, user_id, enabled):
        if not enabled:
            self.records[user_id].mfa_secret = None
        self._update(user_id, mfa_enabled=enabled)

    def set_status(self, user_id, status):
        self._update(user_id, status=status)

    def _update(self, user_id, **changes):
        record = self.records[user_id]
        record.user = record.user.model_copy(update=changes)


class FakeSessionStore:
    def __init__(self, users: FakeUserStore):
        self.users = users
        self.sessions: dict[str, Session] = {}

    async def create_session(self, user_id, *, ip_address=None, user_agent=None, conn=None):
        raw_token = generate_token()
        now = datetime.now(timezone.utc)
        self.sessions[raw_token] = Session(
            id=uuid4(),
            user_id=user_id,
            token_hash=hash_token(raw_token),
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=now + timedelta(days=30),
            created_at=now,
        )
        return raw_token

    async def get_active_session(self, raw_token):
        session = self.sessions.get(raw_token)
        if session is None or session.expires_at <= datetime.now(timezone.utc):
            return None
        return session, await self.users.get_by_id(session.user_id)

    async def rotate_session(self, raw_token, user_id):
        session = self.sessions.get(raw_token)
        if session is None or session.user_id != user_id:
            return None
        del self.sessions[raw_token]
        return await self.create_session(
            user_id, ip_address=session.ip_address, user_agent=session.user_agent
        )

    async def delete_session(self, user_id, raw_token):
        session = self.sessions.get(raw_token)
        if session is None or session.user_id != user_id:
            return 0
        del self.sessions[raw_token]
        return 1

    async def delete_all_for_user(self, user_id, conn=None):
        doomed = [t for t, s in self.sessions.items() if s.user_id == user_id]
        for token in doomed:
            del self.sessions[token]
        return len(doomed)

    def for_user(self, user_id):
        return [s for s in self.sessions.values() if s.user_id == user_id]


class FakeOneTimeTokenStore:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.tokens: dict[tuple, tuple[str, datetime]] = {}
        self.claimed: set[str] = set()

    async def issue(self, user_id, purpose, ttl, conn=None):
        raw_token = generate_token()
        self.tokens[(user_id, purpose)] = (raw_token, datetime.now(timezone.utc) + ttl)
        return raw_token

    async def consume(self, conn, raw_token, purpose):
        now = datetime.now(timezone.utc)
        for (user_id, token_purpose), (stored, expires_at) in list(self.tokens.items()):
            if stored == raw_token and token_purpose == purpose and expires_at > now:
                del self.tokens[(user_id, token_purpose)]
                return OneTimeToken(
                    id=uuid4(),
                    user_id=user_id,
                    purpose=purpose,
                    expires_at=expires_at,
                    created_at=now,
                )
        return None

    async def claim_action_token(self, jti, expires_at, conn=None):
        if jti in self.claimed:
            return False
        self.claimed.add(jti)
        if conn is not None:
            self.db.on_rollback.append(lambda: self.claimed.discard(jti))
        return True

    def raw(self, user_id, purpose):
        return self.tokens[(user_id, purpose)][0]

    def expire(self, user_id, purpose):
        raw_token, _ = self.tokens[(user_id, purpose)]
        self.tokens[(user_id, purpose)] = (
            raw_token,
            datetime.now(timezone.utc) - timedelta(seconds=1),
        )


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def auth(settings):
    db = FakeDatabase()
    users = FakeUserStore()
    return AuthService(
        settings,
        db,
        users=users,
        sessions=FakeSessionStore(users),
        one_time_tokens=FakeOneTimeTokenStore(db),
        hasher=PasswordHasher(settings),
        signer=TokenSigner(settings),
        email=MagicMock(spec=EmailService),
        totp=TotpService(settings),
    )


async def _register(auth, email="ada@example.com", password=PASSWORD):
    return await auth.register(
        email=email,
        password=password,
        first_name="Ada",
        last_name="Lovelace",
        company="Analytical Engines",
    )


async def _register_active(auth, email="ada@example.com", password=PASSWORD):
    user_id = await _register(auth, email, password)
    await auth.verify_email(auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY))
    return user_id


async def _enable_mfa(auth, user_id):
    user = await auth.users.get_by_id(user_id)
    enrollment = await auth.begin_mfa_setup(user)
    await auth.enable_mfa(user_id, pyotp.TOTP(enrollment.secret).now())
    return enrollment.secret


def _wrong_code(secret):
    totp = pyotp.TOTP(secret)
    return next(c for c in ("000000", "111111", "222222") if not totp.verify(c, valid_window=1))


# ---------------------------------------------------------------------------
# register / verify_email
# ---------------------------------------------------------------------------

class TestRegister:
    """Tests for AuthService.register."""

    async def test_creates_pending_user_and_sends_verification(self, auth, settings):
        user_id = await _register(auth)

        record = auth.users.records[user_id]
        assert record.user.status == UserStatus.PENDING_VERIFICATION
        assert record.user.company == "Analytical Engines"

        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)
        auth.email.send.assert_called_once()
        kwargs = auth.email.send.call_args.kwargs
        assert kwargs["to"] == "ada@example.com"
        assert kwargs["template"] == "verify-email"
        assert kwargs["data"]["verificationLink"] == (
            f"https://app.example.com/verify-email?token={raw_token}"
        )
        assert kwargs["data"]["expiresIn"] == "24 hours"

    async def test_password_stored_hashed(self, auth):
        user_id = await _register(auth)

        stored = auth.users.records[user_id].password_hash
        assert stored != PASSWORD
        assert bcrypt.checkpw(PASSWORD.encode(), stored.encode())

    async def test_user_and_token_written_in_one_transaction(self, auth):
        await _register(auth)
        assert auth.db.transactions == 1

    async def test_duplicate_email_rejected(self, auth):
        await _register(auth)

        with pytest.raises(AuthError) as exc_info:
            await _register(auth)

        assert exc_info.value.kind == AuthErrorKind.USER_EXISTS
        assert exc_info.value.status_code == 409
        assert len(auth.users.records) == 1
        auth.email.send.assert_called_once()

    async def test_lost_insert_race_reports_user_exists(self, auth):
        await _register(auth)
        # Pre-check misses the concurrent winner; the insert still fails
        auth.users.email_exists = AsyncMock(return_value=False)

        with pytest.raises(AuthError) as exc_info:
            await _register(auth)

        assert exc_info.value.kind == AuthErrorKind.USER_EXISTS
        auth.users.email_exists.assert_awaited_once()
        assert len(auth.users.records) == 1
        auth.email.send.assert_called_once()

    async def test_storage_failure_is_registration_error(self, auth):
        auth.one_time_tokens.issue = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(AuthError) as exc_info:
            await _register(auth)

        assert exc_info.value.kind == AuthErrorKind.REGISTRATION_ERROR
        assert exc_info.value.status_code == 500
        auth.email.send.assert_not_called()


class TestVerifyEmail:
    """Tests for AuthService.verify_email."""

    async def test_activates_user(self, auth):
        user_id = await _register(auth)
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)

        email = await auth.verify_email(raw_token)

        assert email == "ada@example.com"
        assert auth.users.records[user_id].user.status == UserStatus.ACTIVE

    async def test_token_is_single_use(self, auth):
        user_id = await _register(auth)
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)
        await auth.verify_email(raw_token)

        with pytest.raises(AuthError) as exc_info:
            await auth.verify_email(raw_token)

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert exc_info.value.status_code == 400

    async def test_unknown_token(self, auth):
        with pytest.raises(AuthError) as exc_info:
            await auth.verify_email("made-up-token")

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert exc_info.value.status_code == 400

    async def test_expired_token(self, auth):
        user_id = await _register(auth)
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)
        auth.one_time_tokens.expire(user_id, TokenPurpose.EMAIL_VERIFY)

        with pytest.raises(AuthError):
            await auth.verify_email(raw_token)

        assert auth.users.records[user_id].user.status == UserStatus.PENDING_VERIFICATION

    async def test_suspended_user_not_reactivated(self, auth):
        user_id = await _register(auth)
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)
        auth.users.set_status(user_id, UserStatus.SUSPENDED)

        with pytest.raises(AuthError) as exc_info:
            await auth.verify_email(raw_token)

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert auth.users.records[user_id].user.status == UserStatus.SUSPENDED

    async def test_reset_token_cannot_verify_email(self, auth):
        user_id = await _register(auth)
        await auth.request_password_reset("ada@example.com")
        reset_token = auth.one_time_tokens.raw(user_id, TokenPurpose.PASSWORD_RESET)

        with pytest.raises(AuthError):
            await auth.verify_email(reset_token)

    async def test_resend_replaces_previous_token(self, auth):
        user_id = await _register(auth)
        first = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)

        await auth.resend_verification("ada@example.com")

        second = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)
        assert second != first
        with pytest.raises(AuthError):
            await auth.verify_email(first)
        assert await auth.verify_email(second) == "ada@example.com"

    async def test_resend_skips_active_and_unknown(self, auth):
        await _register_active(auth)
        auth.email.send.reset_mock()

        await auth.resend_verification("ada@example.com")
        await auth.resend_verification("nobody@example.com")

        auth.email.send.assert_not_called()


# ---------------------------------------------------------------------------
# login / MFA
# ---------------------------------------------------------------------------

class TestLogin:
    """Tests for AuthService.login."""

    async def test_success_issues_token_pair(self, auth, settings):
        user_id = await _register_active(auth)

        result = await auth.login(
            "ada@example.com", PASSWORD, ClientInfo(ip_address="203.0.113.7", user_agent="pytest")
        )

        assert isinstance(result, IssuedTokens)
        assert result.user.id == user_id
        payload = auth.signer.validate_access_token(result.access_token)
        assert payload["sub"] == str(user_id)
        assert payload["role"] == "client"
        session = auth.sessions.sessions[result.refresh_token]
        assert session.user_id == user_id
        assert session.ip_address == "203.0.113.7"
        assert session.token_hash == hash_token(result.refresh_token)
        assert auth.users.records[user_id].user.login_count == 1

    async def test_pending_account_rejected_without_session(self, auth):
        user_id = await _register(auth)

        with pytest.raises(AuthError) as exc_info:
            await auth.login("ada@example.com", PASSWORD)

        assert exc_info.value.kind == AuthErrorKind.ACCOUNT_INACTIVE
        assert exc_info.value.status_code == 403
        assert auth.sessions.for_user(user_id) == []

    async def test_status_not_revealed_before_password(self, auth):
        await _register(auth)

        with pytest.raises(AuthError) as exc_info:
            await auth.login("ada@example.com", "Wr0ng!Pass")

        assert exc_info.value.kind == AuthErrorKind.INVALID_CREDENTIALS

    async def test_unknown_email_and_wrong_password_identical(self, auth):
        await _register_active(auth)

        with pytest.raises(AuthError) as unknown:
            await auth.login("nobody@example.com", PASSWORD)
        with pytest.raises(AuthError) as wrong:
            await auth.login("ada@example.com", "Wr0ng!Pass")

        assert unknown.value.to_dict() == wrong.value.to_dict()
        assert unknown.value.status_code == wrong.value.status_code == 401

    async def test_unknown_email_still_checks_a_hash(self, auth):
        auth.hasher.verify_password = AsyncMock(return_value=False)

        with pytest.raises(AuthError):
            await auth.login("nobody@example.com", PASSWORD)

        auth.hasher.verify_password.assert_awaited_once_with(PASSWORD, None)

    async def test_suspended_account_rejected(self, auth):
        user_id = await _register_active(auth)
        auth.users.set_status(user_id, UserStatus.SUSPENDED)

        with pytest.raises(AuthError) as exc_info:
            await auth.login("ada@example.com", PASSWORD)

        assert exc_info.value.kind == AuthErrorKind.ACCOUNT_INACTIVE


class TestMfaLogin:
    """Tests for the MFA branch of login and complete_mfa_login."""

    async def test_mfa_user_gets_challenge_and_no_session(self, auth):
        user_id = await _register_active(auth)
        await _enable_mfa(auth, user_id)

        result = await auth.login("ada@example.com", PASSWORD)

        assert isinstance(result, MfaChallenge)
        assert auth.signer.validate_mfa_token(result.mfa_token)["sub"] == str(user_id)
        assert auth.sessions.for_user(user_id) == []

    async def test_valid_code_completes_login(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)
        challenge = await auth.login("ada@example.com", PASSWORD)

        tokens = await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())

        assert isinstance(tokens, IssuedTokens)
        assert tokens.user.id == user_id
        assert len(auth.sessions.for_user(user_id)) == 1

    async def test_mfa_token_is_single_use(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)
        challenge = await auth.login("ada@example.com", PASSWORD)
        await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())

        with pytest.raises(AuthError) as exc_info:
            await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert len(auth.sessions.for_user(user_id)) == 1

    async def test_failed_session_insert_leaves_mfa_token_usable(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)
        challenge = await auth.login("ada@example.com", PASSWORD)
        create_session = auth.sessions.create_session
        auth.sessions.create_session = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())

        assert auth.one_time_tokens.claimed == set()

        auth.sessions.create_session = create_session
        tokens = await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())
        assert tokens.user.id == user_id
        assert len(auth.sessions.for_user(user_id)) == 1

    async def test_wrong_code_rejected_and_retry_allowed(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)
        challenge = await auth.login("ada@example.com", PASSWORD)

        with pytest.raises(AuthError) as exc_info:
            await auth.complete_mfa_login(challenge.mfa_token, _wrong_code(secret))

        assert exc_info.value.kind == AuthErrorKind.INVALID_MFA_CODE
        assert auth.sessions.for_user(user_id) == []

        tokens = await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())
        assert tokens.user.id == user_id

    async def test_access_token_is_not_an_mfa_token(self, auth):
        await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)

        with pytest.raises(AuthError) as exc_info:
            await auth.complete_mfa_login(tokens.access_token, "123456")

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert exc_info.value.status_code == 401

    async def test_deactivated_between_steps(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)
        challenge = await auth.login("ada@example.com", PASSWORD)
        auth.users.set_status(user_id, UserStatus.SUSPENDED)

        with pytest.raises(AuthError) as exc_info:
            await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())

        assert exc_info.value.kind == AuthErrorKind.ACCOUNT_INACTIVE

    async def test_mfa_disabled_between_steps(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)
        challenge = await auth.login("ada@example.com", PASSWORD)
        await auth.disable_mfa(user_id, pyotp.TOTP(secret).now())

        with pytest.raises(AuthError) as exc_info:
            await auth.complete_mfa_login(challenge.mfa_token, pyotp.TOTP(secret).now())

        assert exc_info.value.kind == AuthErrorKind.MFA_NOT_CONFIGURED


class TestMfaEnrollment:
    """Tests for begin_mfa_setup, enable_mfa and disable_mfa."""

    async def test_setup_does_not_enable(self, auth):
        user_id = await _register_active(auth)
        user = await auth.users.get_by_id(user_id)

        enrollment = await auth.begin_mfa_setup(user)

        assert enrollment.otpauth_url.startswith("otpauth://totp/")
        assert auth.users.records[user_id].mfa_secret == enrollment.secret
        assert auth.users.records[user_id].user.mfa_enabled is False

    async def test_enable_requires_valid_code(self, auth):
        user_id = await _register_active(auth)
        user = await auth.users.get_by_id(user_id)
        enrollment = await auth.begin_mfa_setup(user)

        with pytest.raises(AuthError) as exc_info:
            await auth.enable_mfa(user_id, _wrong_code(enrollment.secret))

        assert exc_info.value.kind == AuthErrorKind.INVALID_MFA_CODE
        assert auth.users.records[user_id].user.mfa_enabled is False

    async def test_enable_without_setup(self, auth):
        user_id = await _register_active(auth)

        with pytest.raises(AuthError) as exc_info:
            await auth.enable_mfa(user_id, "123456")

        assert exc_info.value.kind == AuthErrorKind.MFA_NOT_CONFIGURED

    async def test_disable_clears_secret(self, auth):
        user_id = await _register_active(auth)
        secret = await _enable_mfa(auth, user_id)

        await auth.disable_mfa(user_id, pyotp.TOTP(secret).now())

        record = auth.users.records[user_id]
        assert record.user.mfa_enabled is False
        assert record.mfa_secret is None
        assert isinstance(await auth.login("ada@example.com", PASSWORD), IssuedTokens)


# ---------------------------------------------------------------------------
# refresh / logout / bearer authentication
# ---------------------------------------------------------------------------

class TestRefresh:
    """Tests for AuthService.refresh."""

    async def test_issues_new_access_token(self, auth):
        user_id = await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)

        refreshed = await auth.refresh(tokens.refresh_token)

        assert auth.signer.validate_access_token(refreshed.access_token)["sub"] == str(user_id)
        assert refreshed.refresh_token is None
        # Without rotation the same refresh token keeps working
        assert await auth.refresh(tokens.refresh_token)

    async def test_missing_token(self, auth):
        with pytest.raises(AuthError) as exc_info:
            await auth.refresh(None)

        assert exc_info.value.kind == AuthErrorKind.TOKEN_REQUIRED
        assert exc_info.value.status_code == 401

    async def test_unknown_token(self, auth):
        with pytest.raises(AuthError) as exc_info:
            await auth.refresh("not-a-session")

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert exc_info.value.status_code == 401

    async def test_inactive_owner(self, auth):
        user_id = await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)
        auth.users.set_status(user_id, UserStatus.INACTIVE)

        with pytest.raises(AuthError) as exc_info:
            await auth.refresh(tokens.refresh_token)

        assert exc_info.value.kind == AuthErrorKind.ACCOUNT_INACTIVE

    async def test_rotation_invalidates_old_token(self, auth, settings):
        settings.refresh_token_rotation = True
        await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)

        refreshed = await auth.refresh(tokens.refresh_token)

        assert refreshed.refresh_token and refreshed.refresh_token != tokens.refresh_token
        with pytest.raises(AuthError) as exc_info:
            await auth.refresh(tokens.refresh_token)
        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert await auth.refresh(refreshed.refresh_token)

    async def test_rotation_lost_race(self, auth, settings):
        settings.refresh_token_rotation = True
        await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)
        auth.sessions.rotate_session = AsyncMock(return_value=None)

        with pytest.raises(AuthError) as exc_info:
            await auth.refresh(tokens.refresh_token)

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN


class TestLogout:
    """Tests for AuthService.logout."""

    async def test_single_session(self, auth):
        user_id = await _register_active(auth)
        first = await auth.login("ada@example.com", PASSWORD)
        second = await auth.login("ada@example.com", PASSWORD)

        assert await auth.logout(user_id, first.refresh_token) == 1

        with pytest.raises(AuthError):
            await auth.refresh(first.refresh_token)
        assert await auth.refresh(second.refresh_token)

    async def test_all_sessions(self, auth):
        user_id = await _register_active(auth)
        first = await auth.login("ada@example.com", PASSWORD)
        second = await auth.login("ada@example.com", PASSWORD)

        assert await auth.logout(user_id) == 2

        for tokens in (first, second):
            with pytest.raises(AuthError):
                await auth.refresh(tokens.refresh_token)

    async def test_idempotent(self, auth):
        user_id = await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)
        await auth.logout(user_id, tokens.refresh_token)

        assert await auth.logout(user_id, tokens.refresh_token) == 0
        assert await auth.logout(user_id) == 0

    async def test_cannot_end_another_users_session(self, auth):
        await _register_active(auth)
        other_id = await _register_active(auth, email="grace@example.com")
        tokens = await auth.login("ada@example.com", PASSWORD)

        assert await auth.logout(other_id, tokens.refresh_token) == 0
        assert await auth.refresh(tokens.refresh_token)


class TestAuthenticateAccessToken:
    """Tests for AuthService.authenticate_access_token."""

    async def test_resolves_active_user(self, auth):
        user_id = await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)

        user = await auth.authenticate_access_token(tokens.access_token)

        assert user.id == user_id

    async def test_garbage_token(self, auth):
        with pytest.raises(AuthError) as exc_info:
            await auth.authenticate_access_token("garbage")

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN

    async def test_user_suspended_after_issue(self, auth):
        user_id = await _register_active(auth)
        tokens = await auth.login("ada@example.com", PASSWORD)
        auth.users.set_status(user_id, UserStatus.SUSPENDED)

        with pytest.raises(AuthError) as exc_info:
            await auth.authenticate_access_token(tokens.access_token)

        assert exc_info.value.kind == AuthErrorKind.ACCOUNT_INACTIVE


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

class TestPasswordReset:
    """Tests for request_password_reset and reset_password."""

    async def test_response_identical_for_unknown_email(self, auth):
        await _register_active(auth)
        auth.email.send.reset_mock()

        known = await auth.request_password_reset("ada@example.com")
        unknown = await auth.request_password_reset("nobody@example.com")

        assert known == unknown == RESET_REQUESTED_MESSAGE
        auth.email.send.assert_called_once()
        kwargs = auth.email.send.call_args.kwargs
        assert kwargs["template"] == "reset-password"
        assert kwargs["data"]["resetLink"].startswith(
            "https://app.example.com/reset-password?token="
        )
        assert kwargs["data"]["expiresIn"] == "1 hour"

    async def test_reset_replaces_password_and_ends_sessions(self, auth):
        user_id = await _register_active(auth)
        first = await auth.login("ada@example.com", PASSWORD)
        second = await auth.login("ada@example.com", PASSWORD)
        await auth.request_password_reset("ada@example.com")
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.PASSWORD_RESET)

        await auth.reset_password(raw_token, NEW_PASSWORD)

        assert auth.sessions.for_user(user_id) == []
        for tokens in (first, second):
            with pytest.raises(AuthError):
                await auth.refresh(tokens.refresh_token)
        with pytest.raises(AuthError) as exc_info:
            await auth.login("ada@example.com", PASSWORD)
        assert exc_info.value.kind == AuthErrorKind.INVALID_CREDENTIALS
        assert isinstance(await auth.login("ada@example.com", NEW_PASSWORD), IssuedTokens)

    async def test_reset_token_single_use(self, auth):
        user_id = await _register_active(auth)
        await auth.request_password_reset("ada@example.com")
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.PASSWORD_RESET)
        await auth.reset_password(raw_token, NEW_PASSWORD)

        with pytest.raises(AuthError) as exc_info:
            await auth.reset_password(raw_token, "An0ther!Pass")

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert exc_info.value.status_code == 400
        assert isinstance(await auth.login("ada@example.com", NEW_PASSWORD), IssuedTokens)

    async def test_newer_request_replaces_older_token(self, auth):
        user_id = await _register_active(auth)
        await auth.request_password_reset("ada@example.com")
        first = auth.one_time_tokens.raw(user_id, TokenPurpose.PASSWORD_RESET)
        await auth.request_password_reset("ada@example.com")

        with pytest.raises(AuthError):
            await auth.reset_password(first, NEW_PASSWORD)

    async def test_expired_token(self, auth):
        user_id = await _register_active(auth)
        await auth.request_password_reset("ada@example.com")
        raw_token = auth.one_time_tokens.raw(user_id, TokenPurpose.PASSWORD_RESET)
        auth.one_time_tokens.expire(user_id, TokenPurpose.PASSWORD_RESET)

        with pytest.raises(AuthError):
            await auth.reset_password(raw_token, NEW_PASSWORD)

        assert isinstance(await auth.login("ada@example.com", PASSWORD), IssuedTokens)

    async def test_verification_token_cannot_reset(self, auth):
        user_id = await _register(auth)
        verify_token = auth.one_time_tokens.raw(user_id, TokenPurpose.EMAIL_VERIFY)

        with pytest.raises(AuthError):
            await auth.reset_password(verify_token, NEW_PASSWORD)


class TestDescribe:
    """Tests for lifetime wording in emails."""

    @pytest.mark.parametrize(
        "ttl, expected",
        [
            (timedelta(hours=24), "24 hours"),
            (timedelta(hours=1), "1 hour"),
            (timedelta(minutes=30), "30 minutes"),
        ],
    )
    def test_wording(self, ttl, expected):
        assert _describe(ttl) == expected
