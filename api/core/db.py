"""
Async database access using asyncpg.

`ConnectionManager` owns the connection pool. The FastAPI lifespan creates one
per process, starts it on startup and closes it on shutdown (see
`api/main.py`). Handlers get it through `core.dependencies.get_manager`.

Pool lifecycle is a small state machine:

    UNINITIALIZED --start()--> AVAILABLE
    UNINITIALIZED --failure--> RETRYING(attempt) --retry--> AVAILABLE
    RETRYING(max attempts) --failure--> EXHAUSTED
    EXHAUSTED --recovery interval--> AVAILABLE, or EXHAUSTED again
    AVAILABLE --fatal driver error--> RETRYING(0) --reconnect delay--> ...
    any state --close()--> UNINITIALIZED (final)

Retries go through a `Scheduler`, so the state machine can be driven by hand
in tests.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import asyncpg

from . import schema
from .scheduling import AsyncioScheduler, ScheduledTask, Scheduler
from .settings import DatabaseSettings

logger = logging.getLogger(__name__)

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 30000

PoolFactory = Callable[[DatabaseSettings], Awaitable[asyncpg.Pool]]
SchemaInitializer = Callable[[asyncpg.Connection], Awaitable[None]]

# Errors that mean the pool's connections are gone, not that one query failed.
FATAL_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.AdminShutdownError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.InterfaceError,
)


class DatabaseUnavailableError(RuntimeError):
    pass


class PoolState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    RETRYING = "retrying"
    AVAILABLE = "available"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ManagerStatus:
    state: PoolState
    available: bool
    attempts: int
    max_attempts: int
    last_error: str | None


def backoff_delay_s(attempts: int) -> float:
    """
    Delay before the next initialization attempt after `attempts` failures.
    """
    exponent = max(attempts - 1, 0)
    return min(BACKOFF_BASE_MS * (2**exponent), BACKOFF_CAP_MS) / 1000.0


def is_fatal_error(exc: BaseException) -> bool:
    # TimeoutError is an OSError subclass; a slow acquire is not a dead pool.
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return False
    return isinstance(exc, FATAL_ERRORS)


def _describe(exc: BaseException) -> str:
    return f"{exc.__class__.__name__}: {exc}"


def command_row_count(command_status: str) -> int:
    """
    Row count from an asyncpg command tag, e.g. "INSERT 0 37" or "DELETE 12".
    """
    try:
        return int(command_status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


async def create_pool(settings: DatabaseSettings) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn=settings.dsn(),
        min_size=settings.min_size,
        max_size=settings.max_size,
        timeout=settings.connect_timeout_s,
        command_timeout=settings.query_timeout_s,
        ssl="require" if settings.ssl else None,
    )


class ConnectionManager:
    def __init__(
        self,
        settings: DatabaseSettings,
        *,
        scheduler: Scheduler | None = None,
        pool_factory: PoolFactory = create_pool,
        schema_initializer: SchemaInitializer = schema.ensure_schema,
    ) -> None:
        self._settings = settings
        self._scheduler = scheduler or AsyncioScheduler()
        self._pool_factory = pool_factory
        self._schema_initializer = schema_initializer
        self._pool: asyncpg.Pool | None = None
        self._state = PoolState.UNINITIALIZED
        self._attempts = 0
        self._last_error: str | None = None
        self._retry: ScheduledTask | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def is_available(self) -> bool:
        return self._state is PoolState.AVAILABLE and self._pool is not None

    def status(self) -> ManagerStatus:
        return ManagerStatus(
            state=self._state,
            available=self.is_available,
            attempts=self._attempts,
            max_attempts=self._settings.init_max_attempts,
            last_error=self._last_error,
        )

    async def start(self) -> None:
        if self._settings.skip_init:
            logger.warning("database_init_skipped reason=SKIP_DB_INIT")
            return
        self._closed = False
        logger.info("database_init dsn=%s", self._settings.redacted_dsn())
        await self.initialize()

    async def initialize(self) -> bool:
        """
        Run one initialization attempt: build a fresh pool and ensure the schema.

        Failures never raise; they move the state machine forward and schedule
        the next try, on the backoff curve or, once exhausted, every recovery
        interval. Nothing is scheduled after `close()`.
        """
        async with self._lock:
            if self._closed:
                return False
            self._retry = None
            self._discard_pool()

            try:
                pool = await self._pool_factory(self._settings)
            except Exception as exc:
                return self._on_init_failure(exc)

            try:
                async with pool.acquire(timeout=self._settings.acquire_timeout_s) as conn:
                    await self._schema_initializer(conn)
            except Exception as exc:
                pool.terminate()
                return self._on_init_failure(exc)

            # close() may have run while the factory or schema step was awaiting.
            if self._closed:
                pool.terminate()
                logger.info("database_init_discarded reason=closed")
                return False

            self._pool = pool
            self._state = PoolState.AVAILABLE
            self._attempts = 0
            self._last_error = None
            logger.info("database_available")
            return True

    def _on_init_failure(self, exc: Exception) -> bool:
        if self._closed:
            return False
        self._attempts += 1
        self._last_error = _describe(exc)
        max_attempts = self._settings.init_max_attempts

        if self._attempts >= max_attempts:
            # Out of fast retries: stay unavailable, but keep trying slowly.
            recovery_s = self._settings.recovery_interval_s
            if self._state is PoolState.EXHAUSTED:
                logger.warning(
                    "database_recovery_failed attempts=%s retry_in_s=%.1f error=%s",
                    self._attempts,
                    recovery_s,
                    self._last_error,
                )
            else:
                self._state = PoolState.EXHAUSTED
                logger.error(
                    "database_unavailable attempts=%s retry_in_s=%.1f error=%s",
                    self._attempts,
                    recovery_s,
                    self._last_error,
                )
            self._schedule_initialize(recovery_s)
            return False

        delay = backoff_delay_s(self._attempts)
        self._state = PoolState.RETRYING
        logger.warning(
            "database_init_failed attempt=%s/%s retry_in_s=%.1f error=%s",
            self._attempts,
            max_attempts,
            delay,
            self._last_error,
        )
        self._schedule_initialize(delay)
        return False

    def _schedule_initialize(self, delay_s: float) -> None:
        if self._closed:
            return
        if self._retry is not None:
            self._retry.cancel()
        self._retry = self._scheduler.call_later(delay_s, self._retry_initialize)

    async def _retry_initialize(self) -> None:
        await self.initialize()

    def _discard_pool(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            pool.terminate()

    def mark_broken(self, exc: BaseException) -> None:
        """
        React to a fatal driver error: go unavailable and rebuild the pool later.
        """
        if self._closed or self._state is not PoolState.AVAILABLE:
            return
        self._state = PoolState.RETRYING
        self._attempts = 0
        self._last_error = _describe(exc)
        logger.error(
            "database_connection_lost retry_in_s=%.1f error=%s",
            self._settings.reconnect_delay_s,
            self._last_error,
        )
        self._schedule_initialize(self._settings.reconnect_delay_s)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Check out a connection; it goes back to the pool on every exit path.
        """
        pool = self._pool
        if pool is None or self._state is not PoolState.AVAILABLE:
            raise DatabaseUnavailableError("Database is unavailable.")

        try:
            async with pool.acquire(timeout=self._settings.acquire_timeout_s) as conn:
                yield conn
        except Exception as exc:
            if is_fatal_error(exc):
                self.mark_broken(exc)
            raise

    async def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        """
        Run a query and return a single row as a dict (or None).
        """
        async with self.acquire() as conn:
            row = await conn.fetchrow(sql, *args)
        return dict(row) if row is not None else None

    async def ping(self) -> None:
        async with self.acquire() as conn:
            await conn.fetchval("SELECT 1")

    async def close(self) -> None:
        self._closed = True
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None

        pool, self._pool = self._pool, None
        self._state = PoolState.UNINITIALIZED
        if pool is None:
            return None
        try:
            await asyncio.wait_for(pool.close(), timeout=self._settings.query_timeout_s)
        except (asyncio.TimeoutError, TimeoutError):
            logger.warning("database_close_timeout terminating=true")
            pool.terminate()
        logger.info("database_closed")
