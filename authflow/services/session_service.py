"""Session store: refresh-token-bearing login sessions."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from authflow.config import Settings
from authflow.database import Database
from authflow.models.user import Session, User
from authflow.services.opaque_tokens import affected_rows, generate_token, hash_token
from authflow.services.user_service import USER_COLUMNS, row_to_user

logger = structlog.get_logger(__name__)

# users columns qualified for the sessions JOIN
_JOINED_USER_COLUMNS = ", ".join(
    f"u.{column.strip()}" for column in USER_COLUMNS.split(",")
)


class SessionService:
    """Creates, resolves and deletes sessions.

    The raw refresh token is returned to the client once; only its
    SHA-256 digest is stored. Sessions are never updated in place.
    """

    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.ttl = timedelta(days=settings.session_expire_days)

    async def create_session(
        self,
        user_id: UUID,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> str:
        """Create a session for ``user_id``.

        Returns:
            The raw refresh token
        """
        raw_token = generate_token()
        session_id = uuid4()
        now = datetime.now(timezone.utc)
        expires_at = now + self.ttl

        async with self.db.connection(conn) as c:
            await c.execute(
                """
                INSERT INTO sessions (id, user_id, token_hash, ip_address, user_agent, expires_at, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                session_id,
                user_id,
                hash_token(raw_token),
                ip_address,
                user_agent,
                expires_at,
                now,
            )

        logger.info(
            "session_created",
            user_id=str(user_id),
            session_id=str(session_id),
            expires_at=expires_at.isoformat(),
        )
        return raw_token

    async def get_active_session(self, raw_token: str) -> Optional[tuple[Session, User]]:
        """Resolve a refresh token to its session and current owner.

        The owner is read fresh on every lookup so callers can re-check
        the account status.

        Returns:
            (Session, User) if the token exists and has not expired; None otherwise
        """
        now = datetime.now(timezone.utc)

        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT s.id AS session_id, s.user_id AS session_user_id,
                       s.token_hash, s.ip_address, s.user_agent,
                       s.expires_at AS session_expires_at,
                       s.created_at AS session_created_at,
                       {_JOINED_USER_COLUMNS}
                FROM sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token_hash = $1
                """,
                hash_token(raw_token),
            )

        if row is None:
            logger.warning("session_not_found")
            return None

        if row["session_expires_at"] <= now:
            logger.warning("session_expired", user_id=str(row["session_user_id"]))
            return None

        session = Session(
            id=row["session_id"],
            user_id=row["session_user_id"],
            token_hash=row["token_hash"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            expires_at=row["session_expires_at"],
            created_at=row["session_created_at"],
        )
        return session, row_to_user(row)

    async def rotate_session(self, raw_token: str, user_id: UUID) -> Optional[str]:
        """Replace a session with a fresh one in a single transaction.

        The old row is deleted first; if another request already rotated
        or deleted it, nothing is created and None is returned.

        Returns:
            The new raw refresh token, or None if the old one was gone
        """
        async with self.db.transaction() as conn:
            old = await conn.fetchrow(
                """
                DELETE FROM sessions
                WHERE token_hash = $1 AND user_id = $2 AND expires_at > NOW()
                RETURNING ip_address, user_agent
                """,
                hash_token(raw_token),
                user_id,
            )

            if old is None:
                logger.warning("session_rotation_missed", user_id=str(user_id))
                return None

            new_token = await self.create_session(
                user_id,
                ip_address=old["ip_address"],
                user_agent=old["user_agent"],
                conn=conn,
            )

        logger.info("session_rotated", user_id=str(user_id))
        return new_token

    async def delete_session(self, user_id: UUID, raw_token: str) -> int:
        """Delete the session holding ``raw_token`` if it belongs to ``user_id``."""
        async with self.db.connection() as conn:
            result = await conn.execute(
                "DELETE FROM sessions WHERE user_id = $1 AND token_hash = $2",
                user_id,
                hash_token(raw_token),
            )

        deleted = affected_rows(result)
        logger.info("session_deleted", user_id=str(user_id), deleted=deleted)
        return deleted

    async def delete_all_for_user(
        self, user_id: UUID, conn: Optional[asyncpg.Connection] = None
    ) -> int:
        """Delete every session of ``user_id``."""
        async with self.db.connection(conn) as c:
            result = await c.execute(
                "DELETE FROM sessions WHERE user_id = $1",
                user_id,
            )

        deleted = affected_rows(result)
        logger.info("sessions_deleted", user_id=str(user_id), deleted=deleted)
        return deleted

    async def purge_expired(self) -> int:
        async with self.db.connection() as conn:
            result = await conn.execute("DELETE FROM sessions WHERE expires_at <= NOW()")

        purged = affected_rows(result)
        if purged:
            logger.info("expired_sessions_purged", count=purged)
        return purged
