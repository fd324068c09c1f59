"""One-time token store: email-verify and password-reset tokens."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from authflow.database import Database
from authflow.models.user import OneTimeToken, TokenPurpose
from authflow.services.opaque_tokens import affected_rows, generate_token, hash_token

logger = structlog.get_logger(__name__)


class OneTimeTokenService:
    """Issues and atomically consumes single-use tokens.

    A user has at most one outstanding token per purpose; issuing a new
    one replaces the previous row. Consumption deletes the row with a
    single ``DELETE ... RETURNING`` so two concurrent attempts can never
    both succeed.
    """

    def __init__(self, db: Database):
        self.db = db

    async def issue(
        self,
        user_id: UUID,
        purpose: TokenPurpose,
        ttl: timedelta,
        conn: Optional[asyncpg.Connection] = None,
    ) -> str:
        """Create (or replace) the user's token for ``purpose``.

        Args:
            user_id: Owning user
            purpose: What the token unlocks
            ttl: Lifetime from now
            conn: Connection of an enclosing transaction, if any

        Returns:
            The raw token to embed in the emailed link
        """
        raw_token = generate_token()
        now = datetime.now(timezone.utc)
        expires_at = now + ttl

        async with self.db.connection(conn) as c:
            await c.execute(
                """
                INSERT INTO one_time_tokens (id, user_id, token_hash, purpose, expires_at, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id, purpose)
                DO UPDATE SET id = EXCLUDED.id,
                              token_hash = EXCLUDED.token_hash,
                              expires_at = EXCLUDED.expires_at,
                              created_at = EXCLUDED.created_at
                """,
                uuid4(),
                user_id,
                hash_token(raw_token),
                purpose.value,
                expires_at,
                now,
            )

        logger.info(
            "one_time_token_issued",
            user_id=str(user_id),
            purpose=purpose.value,
            expires_at=expires_at.isoformat(),
        )
        return raw_token

    async def consume(
        self,
        conn: asyncpg.Connection,
        raw_token: str,
        purpose: TokenPurpose,
    ) -> Optional[OneTimeToken]:
        """Delete and return an unexpired token of ``purpose``.

        Must run inside the transaction that performs the guarded state
        change, so a rollback restores the token.

        Returns:
            The consumed token record, or None if absent, expired or already used
        """
        row = await conn.fetchrow(
            """
            DELETE FROM one_time_tokens
            WHERE token_hash = $1 AND purpose = $2 AND expires_at > $3
            RETURNING id, user_id, purpose, expires_at, created_at
            """,
            hash_token(raw_token),
            purpose.value,
            datetime.now(timezone.utc),
        )

        if row is None:
            logger.warning("one_time_token_rejected", purpose=purpose.value)
            return None

        logger.info(
            "one_time_token_consumed",
            user_id=str(row["user_id"]),
            purpose=purpose.value,
        )
        return OneTimeToken(
            id=row["id"],
            user_id=row["user_id"],
            purpose=TokenPurpose(row["purpose"]),
            expires_at=row["expires_at"],
            created_at=row["created_at"],
        )

    async def claim_action_token(
        self,
        jti: str,
        expires_at: datetime,
        conn: Optional[asyncpg.Connection] = None,
    ) -> bool:
        """Record a signed action token's ``jti`` as spent.

        Pass ``conn`` to make the claim part of a caller's transaction.

        Returns:
            True on the first claim, False if it was already claimed
        """
        async with self.db.connection(conn) as c:
            claimed = await c.fetchval(
                """
                INSERT INTO consumed_action_tokens (jti, expires_at)
                VALUES ($1, $2)
                ON CONFLICT (jti) DO NOTHING
                RETURNING jti
                """,
                jti,
                expires_at,
            )

        if claimed is None:
            logger.warning("action_token_replayed")
            return False
        return True

    async def purge_expired(self) -> int:
        """Delete expired one-time tokens and spent action token markers."""
        async with self.db.connection() as conn:
            tokens = await conn.execute(
                "DELETE FROM one_time_tokens WHERE expires_at <= NOW()"
            )
            markers = await conn.execute(
                "DELETE FROM consumed_action_tokens WHERE expires_at <= NOW()"
            )

        purged = affected_rows(tokens) + affected_rows(markers)
        if purged:
            logger.info("expired_one_time_tokens_purged", count=purged)
        return purged
