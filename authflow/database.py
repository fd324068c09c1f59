"""Database connection handle and migration management."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import asyncpg
import structlog

from authflow.config import Settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


class Database:
    """Injected handle around an asyncpg pool.

    Stores receive a Database at construction time and check out a
    connection per unit of work. Callers that need several writes to
    commit together open ``transaction()`` and pass the yielded
    connection down to each store call.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def connection(
        self, conn: Optional[asyncpg.Connection] = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Yield ``conn`` when given, otherwise a pooled connection.

        Args:
            conn: Connection already checked out by an enclosing transaction
        """
        if conn is not None:
            yield conn
            return

        async with self.pool.acquire() as acquired:
            yield acquired

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Check out a connection and run the enclosed block in one transaction."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn


async def init_database(settings: Settings) -> asyncpg.Pool:
    """Create the database connection pool.

    Args:
        settings: Application settings carrying the DSN and pool bounds

    Returns:
        asyncpg connection pool
    """
    try:
        pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
        logger.info(
            "database_pool_created",
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
        return pool
    except Exception as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise


async def close_database(pool: asyncpg.Pool) -> None:
    """Close the database connection pool."""
    await pool.close()
    logger.info("database_pool_closed")


async def run_migrations(pool: asyncpg.Pool, migrations_dir: Path = MIGRATIONS_DIR) -> None:
    """Run all SQL migrations in order.

    Migrations are idempotent (IF NOT EXISTS) and can be re-run safely.
    """
    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return

    migration_files = sorted(migrations_dir.glob("*.sql"))

    if not migration_files:
        logger.info("no_migrations_found")
        return

    async with pool.acquire() as conn:
        for migration_file in migration_files:
            try:
                await conn.execute(migration_file.read_text())
                logger.info("migration_applied", file=migration_file.name)
            except Exception as e:
                logger.error(
                    "migration_failed",
                    file=migration_file.name,
                    error=str(e),
                )
                raise


async def health_check(pool: asyncpg.Pool) -> bool:
    """Check database connectivity.

    Returns:
        True if database is healthy, False otherwise
    """
    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            return result == 1
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
