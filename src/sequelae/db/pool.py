"""Database connection pool management.

This module owns the process-wide asyncpg pool: creating it from a
``PoolConfig``, handing out connection leases with retry and exponential
backoff, reporting occupancy, and closing it at shutdown.
"""

import asyncio
import logging
import ssl
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import asyncpg
from asyncpg import Connection, Pool
from pydantic import BaseModel, Field

from sequelae.config.settings import PoolConfig, ResilienceConfig, TlsPolicy
from sequelae.models.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    PoolExhaustedError,
)

logger = logging.getLogger(__name__)

# Failures worth another checkout attempt: network, acquire timeout,
# server-side refusals (auth, too many connections), closed sockets.
_RETRYABLE_ERRORS = (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PoolStats(BaseModel):
    """Connection pool occupancy."""

    total: int = Field(default=0, ge=0, description="Open connections")
    idle: int = Field(default=0, ge=0, description="Open connections not leased")
    waiting: int = Field(default=0, ge=0, description="Checkouts waiting for a connection")


def build_ssl_context(policy: TlsPolicy) -> ssl.SSLContext | bool:
    """Translate a TLS policy into asyncpg's ``ssl`` argument.

    Args:
        policy: Resolved TLS policy.

    Returns:
        False to disable TLS, otherwise an SSL context. ``VERIFY`` checks the
        certificate chain and the hostname, ``VERIFY_CA`` only the chain, and
        ``REQUIRE_NO_VERIFY`` accepts any certificate.
    """
    if policy is TlsPolicy.OFF:
        return False

    context = ssl.create_default_context()
    if policy is TlsPolicy.REQUIRE_NO_VERIFY:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    elif policy is TlsPolicy.VERIFY_CA:
        context.check_hostname = False
    return context


async def create_pool(
    config: PoolConfig,
    init: Callable[[Connection], Awaitable[None]] | None = None,
) -> Pool:
    """Create a connection pool for the configured database.

    The pool starts empty (``min_size=0``): connections are opened on first
    checkout, so creating the pool never touches the network.

    Args:
        config: Pool configuration (connection string, sizes, timeouts, TLS).
        init: Optional coroutine run on every new connection.

    Returns:
        Pool: An asyncpg connection pool instance.

    Example:
        >>> pool = await create_pool(PoolConfig(url="postgresql://localhost/mydb"))
        >>> async with pool.acquire() as conn:
        ...     result = await conn.fetch("SELECT 1")
    """
    pool = await asyncpg.create_pool(
        dsn=config.url,
        min_size=0,
        max_size=config.max_connections,
        max_inactive_connection_lifetime=config.idle_timeout / 1000,
        timeout=config.connection_timeout / 1000,
        ssl=build_ssl_context(config.tls_policy),
        server_settings={"statement_timeout": str(config.statement_timeout)},
        init=init,
    )

    if pool is None:
        raise RuntimeError(f"Failed to create connection pool for {config.safe_dsn}")

    return pool


class PoolManager:
    """Owns the single shared connection pool of the process.

    One manager is constructed by the application's composition root and
    passed to every component that needs connections. Callers only ever hold
    leases; the manager holds the pool.

    Example:
        >>> manager = PoolManager(ResilienceConfig())
        >>> await manager.initialize(PoolConfig(url="postgresql://localhost/mydb"))
        >>> async with manager.lease() as conn:
        ...     await conn.fetchval("SELECT 1")
        >>> await manager.close()
    """

    def __init__(self, resilience_config: ResilienceConfig | None = None) -> None:
        """Initialize pool manager.

        Args:
            resilience_config: Checkout retry settings (defaults apply if None).
        """
        self.resilience_config = resilience_config or ResilienceConfig()
        self._pool: Pool | None = None
        self._config: PoolConfig | None = None
        self._waiting = 0
        self._closing = False
        # Leased connection -> the pool it was acquired from.
        self._owners: dict[Connection, Pool] = {}

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    @property
    def config(self) -> PoolConfig | None:
        return self._config

    @property
    def pool(self) -> Pool:
        """The live pool.

        Raises:
            DatabaseConnectionError: If initialize() has not been called.
        """
        if self._pool is None:
            raise DatabaseConnectionError("Pool not initialized. Call initialize() first.")
        return self._pool

    async def initialize(self, config: PoolConfig) -> None:
        """Create the pool, or keep the current one for the same connection string.

        A different connection string closes the existing pool before the new
        one is created.

        Args:
            config: Pool configuration.

        Raises:
            ConfigurationError: If no connection string is configured.
        """
        if self._pool is not None and self._config is not None:
            if self._config.url == config.url:
                logger.debug("Connection pool already initialized", extra={"dsn": config.safe_dsn})
                return
            logger.info("Connection string changed, replacing connection pool")
            await self.close()

        if not config.url:
            raise ConfigurationError("DATABASE_URL environment variable is not set")

        logger.info(
            "Creating connection pool",
            extra={
                "dsn": config.safe_dsn,
                "max_connections": config.max_connections,
                "tls_policy": str(config.tls_policy),
            },
        )
        self._pool = await create_pool(config, init=self._on_connect)
        self._config = config
        self._closing = False

    async def checkout(
        self,
        max_retries: int | None = None,
        initial_delay: float | None = None,
    ) -> Connection:
        """Acquire a connection, retrying with exponential backoff.

        There is one initial attempt plus up to ``max_retries`` retries; the
        wait before retry ``n`` (0-based) is ``initial_delay * 2**n`` seconds.
        The returned connection must be handed back with release(); prefer
        lease(), which does that on every exit path.

        Args:
            max_retries: Retries after the first attempt (config default if None).
            initial_delay: First backoff delay in seconds (config default if None).

        Returns:
            Connection: A leased connection.

        Raises:
            PoolExhaustedError: If the last attempt timed out waiting for a
                free connection.
            DatabaseConnectionError: If every attempt failed otherwise, or the
                pool is not initialized.
        """
        pool = self.pool
        if max_retries is None:
            max_retries = self.resilience_config.max_retries
        if initial_delay is None:
            initial_delay = self.resilience_config.retry_delay
        timeout = self._config.connection_timeout / 1000 if self._config else None
        attempts = max_retries + 1

        last_error: BaseException | None = None
        for attempt in range(attempts):
            self._waiting += 1
            try:
                conn = await pool.acquire(timeout=timeout)
                self._owners[conn] = pool
                return conn
            except _RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "Connection checkout failed",
                    extra={
                        "attempt": attempt + 1,
                        "max_attempts": attempts,
                        "error": str(e) or type(e).__name__,
                    },
                )
            finally:
                self._waiting -= 1

            if attempt < max_retries:
                await asyncio.sleep(initial_delay * (2**attempt))

        details = {
            "attempts": attempts,
            "error_type": type(last_error).__name__,
            "error_message": str(last_error),
        }
        if isinstance(last_error, TimeoutError):
            raise PoolExhaustedError(
                f"Timed out waiting for a database connection after {attempts} attempts",
                details=details,
            ) from last_error
        raise DatabaseConnectionError(
            f"Failed to connect to the database after {attempts} attempts: {last_error}",
            details=details,
        ) from last_error

    async def release(self, conn: Connection) -> None:
        """Return a leased connection to the pool it was acquired from.

        A pool being closed or replaced still gets its connection back, so its
        graceful close can finish instead of timing out.
        """
        pool = self._owners.pop(conn, None)
        if pool is None:
            pool = self._pool
        if pool is None:
            return
        if pool is self._pool:
            await pool.release(conn)
            return
        try:
            await pool.release(conn)
        except asyncpg.InterfaceError as e:
            # The retired pool was already terminated and took the connection with it.
            logger.debug(
                "Connection released after its pool was terminated", extra={"error": str(e)}
            )

    @asynccontextmanager
    async def lease(
        self,
        max_retries: int | None = None,
        initial_delay: float | None = None,
    ) -> AsyncIterator[Connection]:
        """Scoped checkout: the connection is released however the block exits."""
        conn = await self.checkout(max_retries=max_retries, initial_delay=initial_delay)
        try:
            yield conn
        finally:
            await self.release(conn)

    def stats(self) -> PoolStats:
        """Current pool occupancy. Never raises."""
        if self._pool is None:
            return PoolStats()
        try:
            return PoolStats(
                total=self._pool.get_size(),
                idle=self._pool.get_idle_size(),
                waiting=self._waiting,
            )
        except Exception:
            logger.debug("Pool statistics unavailable", exc_info=True)
            return PoolStats(waiting=self._waiting)

    async def close(self, timeout: float = 10.0) -> None:
        """Close the pool gracefully; no-op when not initialized.

        Leased connections are waited for up to ``timeout`` seconds, after
        which the pool is terminated.

        Args:
            timeout: Maximum time in seconds to wait for graceful shutdown.
        """
        if self._pool is None:
            return

        pool, self._pool, self._config = self._pool, None, None
        self._closing = True
        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
            logger.info("Connection pool closed gracefully")
        except TimeoutError:
            logger.warning("Graceful pool close timed out, forcing termination")
            pool.terminate()
        except Exception as e:
            logger.error(f"Error closing connection pool: {e!s}")
            pool.terminate()

    async def _on_connect(self, conn: Connection) -> None:
        conn.add_termination_listener(self._on_connection_terminated)

    def _on_connection_terminated(self, conn: Connection) -> None:
        # Not tied to any request: idle reaping, server restarts, dropped sockets.
        if not self._closing:
            logger.info("Pooled database connection closed")
