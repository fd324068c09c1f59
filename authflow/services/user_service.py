"""Credential store: user identity records and their secrets."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from authflow.database import Database
from authflow.errors import AuthError, AuthErrorKind
from authflow.models.user import User, UserCredentials, UserStatus

logger = structlog.get_logger(__name__)

USER_COLUMNS = """
    id, email, first_name, last_name, company, role, status,
    email_verified_at, mfa_enabled, last_login_at, login_count,
    created_at, updated_at
"""


def row_to_user(row) -> User:
    """Build a User from a row holding USER_COLUMNS."""
    return User(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        company=row["company"],
        role=row["role"],
        status=UserStatus(row["status"]),
        email_verified_at=row["email_verified_at"],
        mfa_enabled=row["mfa_enabled"],
        last_login_at=row["last_login_at"],
        login_count=row["login_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UserService:
    """Reads and writes the ``users`` table.

    Emails are expected already normalized (trimmed, lower case); the
    UNIQUE constraint on ``users.email`` is the final guard against
    duplicate registrations.
    """

    def __init__(self, db: Database):
        self.db = db

    async def email_exists(self, email: str) -> bool:
        async with self.db.connection() as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM users WHERE email = $1",
                email,
            )
        return found is not None

    async def create_user(
        self,
        conn: asyncpg.Connection,
        *,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        company: Optional[str] = None,
        role: str = "client",
    ) -> User:
        """Insert a user in PENDING_VERIFICATION state.

        Args:
            conn: Connection of the enclosing registration transaction
            email: Normalized email
            password_hash: Bcrypt hash of the password

        Returns:
            Created User model

        Raises:
            AuthError(USER_EXISTS): If the email is already registered
        """
        user_id = uuid4()
        now = datetime.now(timezone.utc)

        try:
            row = await conn.fetchrow(
                f"""
                INSERT INTO users (id, email, password_hash, first_name, last_name,
                                   company, role, status, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING {USER_COLUMNS}
                """,
                user_id,
                email,
                password_hash,
                first_name,
                last_name,
                company,
                role,
                UserStatus.PENDING_VERIFICATION.value,
                now,
                now,
            )
        except asyncpg.UniqueViolationError:
            logger.warning("user_insert_duplicate_email")
            raise AuthError(AuthErrorKind.USER_EXISTS)

        logger.info("user_created", user_id=str(user_id), role=role)
        return row_to_user(row)

    async def get_by_email(self, email: str) -> Optional[UserCredentials]:
        """Get a user and their secrets by email.

        Returns:
            UserCredentials or None if not found
        """
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {USER_COLUMNS}, password_hash, mfa_secret
                FROM users
                WHERE email = $1
                """,
                email,
            )

        if row is None:
            return None

        return UserCredentials(
            user=row_to_user(row),
            password_hash=row["password_hash"],
            mfa_secret=row["mfa_secret"],
        )

    async def get_credentials(self, user_id: UUID) -> Optional[UserCredentials]:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {USER_COLUMNS}, password_hash, mfa_secret
                FROM users
                WHERE id = $1
                """,
                user_id,
            )

        if row is None:
            return None

        return UserCredentials(
            user=row_to_user(row),
            password_hash=row["password_hash"],
            mfa_secret=row["mfa_secret"],
        )

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {USER_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )

        if row is None:
            return None

        return row_to_user(row)

    async def activate(self, conn: asyncpg.Connection, user_id: UUID) -> Optional[User]:
        """Move a user from PENDING_VERIFICATION to ACTIVE.

        An already active user is returned unchanged. Suspended and
        inactive users are not touched and None is returned.
        """
        row = await conn.fetchrow(
            f"""
            UPDATE users
            SET status = 'active',
                email_verified_at = COALESCE(email_verified_at, NOW()),
                updated_at = NOW()
            WHERE id = $1 AND status IN ('pending_verification', 'active')
            RETURNING {USER_COLUMNS}
            """,
            user_id,
        )

        if row is None:
            logger.warning("user_activation_skipped", user_id=str(user_id))
            return None

        return row_to_user(row)

    async def update_password(
        self, conn: asyncpg.Connection, user_id: UUID, password_hash: str
    ) -> bool:
        result = await conn.execute(
            """
            UPDATE users
            SET password_hash = $1, updated_at = NOW()
            WHERE id = $2
            """,
            password_hash,
            user_id,
        )
        return result == "UPDATE 1"

    async def record_login(
        self, user_id: UUID, conn: Optional[asyncpg.Connection] = None
    ) -> None:
        """Bump last-login bookkeeping after a successful login."""
        async with self.db.connection(conn) as c:
            await c.execute(
                """
                UPDATE users
                SET last_login_at = NOW(), login_count = login_count + 1
                WHERE id = $1
                """,
                user_id,
            )

    async def set_mfa_secret(self, user_id: UUID, secret: str) -> None:
        """Store a new TOTP secret; MFA stays off until confirmed."""
        async with self.db.connection() as conn:
            await conn.execute(
                """
                UPDATE users
                SET mfa_secret = $1, mfa_enabled = FALSE, updated_at = NOW()
                WHERE id = $2
                """,
                secret,
                user_id,
            )

    async def set_mfa_enabled(self, user_id: UUID, enabled: bool) -> None:
        async with self.db.connection() as conn:
            await conn.execute(
                """
                UPDATE users
                SET mfa_enabled = $1,
                    mfa_secret = CASE WHEN $1 THEN mfa_secret ELSE NULL END,
                    updated_at = NOW()
                WHERE id = $2
                """,
                enabled,
                user_id,
            )

        logger.info("user_mfa_updated", user_id=str(user_id), mfa_enabled=enabled)
