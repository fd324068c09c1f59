"""Password hashing with bcrypt, run off the event loop."""

import asyncio
import secrets
from typing import Optional

import bcrypt
import structlog

from authflow.config import Settings

logger = structlog.get_logger(__name__)


class PasswordHasher:
    """Salted bcrypt hashing.

    bcrypt is deliberately slow, so both hashing and verification run in
    a worker thread to keep other requests on the event loop moving.
    """

    def __init__(self, settings: Settings):
        self.rounds = settings.bcrypt_rounds
        self._dummy_hash: Optional[str] = None

    def hash_password_sync(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify_password_sync(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        A malformed stored hash, or a password bcrypt refuses (over 72
        bytes), is treated as a mismatch.
        """
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            logger.warning("password_hash_malformed")
            return False

    async def hash_password(self, password: str) -> str:
        return await asyncio.to_thread(self.hash_password_sync, password)

    async def verify_password(self, password: str, password_hash: Optional[str]) -> bool:
        """Verify ``password`` against ``password_hash``.

        When there is no stored hash (unknown user, or an account without a
        local password) a throwaway hash is checked instead so the call
        costs about the same, and False is returned.
        """
        if password_hash is None:
            await asyncio.to_thread(
                self.verify_password_sync, password, self._get_dummy_hash()
            )
            return False
        return await asyncio.to_thread(self.verify_password_sync, password, password_hash)

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hash_password_sync(secrets.token_hex(16))
        return self._dummy_hash
