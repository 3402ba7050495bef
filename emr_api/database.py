"""Process-scoped PostgreSQL connection pool.

A :class:`DatabaseRuntime` owns the two caches a warm Lambda process keeps
between invocations: the credential resolver (with its cached secret ARN) and
the connection pool. Both are created lazily and can be discarded with
:meth:`DatabaseRuntime.invalidate`; a failed initialization leaves the runtime
empty so the next request starts again from scratch.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from emr_api.aws_utils import CredentialResolver, DatabaseCredentials
from emr_api.errors import CredentialError, DatabaseUnavailableError
from emr_api.settings import Settings

logger = logging.getLogger("emr_api.db")

PoolFactory = Callable[[DatabaseCredentials, Settings], AsyncConnectionPool]


def build_pool(credentials: DatabaseCredentials, settings: Settings) -> AsyncConnectionPool:
    """Create an unopened pool of autocommit connections returning dict rows."""
    conninfo = make_conninfo(
        host=credentials.host,
        port=credentials.port,
        user=credentials.user,
        password=credentials.password,
        dbname=credentials.database,
        sslmode=settings.db_sslmode,
        connect_timeout=settings.db_connect_timeout_seconds,
    )
    return AsyncConnectionPool(
        conninfo,
        min_size=1,
        max_size=settings.db_pool_max,
        max_idle=settings.db_idle_timeout_seconds,
        timeout=settings.db_connect_timeout_seconds,
        kwargs={"autocommit": True, "row_factory": dict_row},
        name="emr-api",
        open=False,
    )


class DatabaseRuntime:
    """Lazily initialized pool plus the resolver that feeds it credentials."""

    def __init__(
        self,
        settings: Settings,
        resolver: CredentialResolver,
        *,
        pool_factory: PoolFactory = build_pool,
    ):
        self.settings = settings
        self.resolver = resolver
        self._pool_factory = pool_factory
        self._pool: Optional[AsyncConnectionPool] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseRuntime":
        resolver = CredentialResolver(
            settings.db_cluster_identifier,
            region=settings.aws_region,
            fallback_host=settings.db_cluster_endpoint,
            fallback_database=settings.db_name,
        )
        return cls(settings, resolver)

    @property
    def pool(self) -> Optional[AsyncConnectionPool]:
        return self._pool

    async def ensure_pool(self) -> AsyncConnectionPool:
        if self._pool is not None:
            return self._pool
        async with self._lock:
            if self._pool is None:
                self._pool = await self._create_pool()
        return self._pool

    async def _create_pool(self) -> AsyncConnectionPool:
        logger.info("Initializing database connection pool")
        try:
            credentials = await asyncio.to_thread(self.resolver.get_credentials)
        except CredentialError as exc:
            logger.error("Failed to resolve database credentials: %s", exc)
            raise DatabaseUnavailableError(
                "Internal Server Error: Could not connect to database.", error=str(exc)
            ) from exc

        logger.info(
            "Connecting with host=%s port=%s database=%s user=%s",
            credentials.host,
            credentials.port,
            credentials.database,
            credentials.user,
        )
        pool = self._pool_factory(credentials, self.settings)
        try:
            await pool.open(wait=True, timeout=self.settings.db_connect_timeout_seconds)
            async with pool.connection() as conn:
                cursor = await conn.execute("SELECT NOW()")
                await cursor.fetchone()
        except Exception as exc:
            logger.exception("Failed to initialize database pool")
            await _close_quietly(pool)
            raise DatabaseUnavailableError(
                "Internal Server Error: Could not connect to database.", error=str(exc)
            ) from exc
        logger.info("Database pool initialized successfully")
        return pool

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow one pooled connection; it is returned on every exit path."""
        pool = await self.ensure_pool()
        async with pool.connection() as conn:
            yield conn

    async def ping(self) -> bool:
        """Round-trip ``SELECT 1``; report reachability instead of raising."""
        try:
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
        except (psycopg.Error, DatabaseUnavailableError) as exc:
            logger.error("Health check failed to reach the database: %s", exc)
            return False
        return True

    async def invalidate(self) -> None:
        """Drop the pool and the cached secret location."""
        pool, self._pool = self._pool, None
        self.resolver.invalidate()
        if pool is not None:
            await _close_quietly(pool)

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()


async def _close_quietly(pool: AsyncConnectionPool) -> None:
    try:
        await pool.close()
    except Exception as exc:  # pragma: no cover - best effort teardown
        logger.warning("Error closing database pool: %s", exc)
