"""Database connection and migration management."""

from pathlib import Path
from typing import Optional

import asyncpg
import structlog

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


class Database:
    """Owns the asyncpg connection pool for the lifetime of the process.

    Created once at startup and handed to the stores that need it.
    """

    def __init__(self, url: str, *, min_size: int = 2, max_size: int = 10):
        self.url = url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool.

        Raises:
            RuntimeError: If the pool is not initialized
        """
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool

    async def connect(self) -> asyncpg.Pool:
        """Initialize the database connection pool.

        Returns:
            asyncpg connection pool
        """
        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                self.url,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=60,
            )
            logger.info(
                "database_pool_created", min_size=self.min_size, max_size=self.max_size
            )
            return self._pool
        except Exception as e:
            logger.error("database_pool_creation_failed", error=str(e))
            raise

    async def close(self) -> None:
        """Close the database connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("database_pool_closed")

    async def run_migrations(self, migrations_dir: Path = MIGRATIONS_DIR) -> None:
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

        async with self.pool.acquire() as conn:
            for migration_file in migration_files:
                try:
                    sql = migration_file.read_text()
                    await conn.execute(sql)
                    logger.info("migration_applied", file=migration_file.name)
                except Exception as e:
                    logger.error(
                        "migration_failed",
                        file=migration_file.name,
                        error=str(e),
                    )
                    raise

    async def health_check(self) -> bool:
        """Check database connectivity.

        Returns:
            True if database is healthy, False otherwise
        """
        try:
            async with self.pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                return result == 1
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False
