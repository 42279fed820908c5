"""
Async PostgreSQL connection pool built on asyncpg.

Holds the client's local database: relay preferences and participant
annotations. Connection creation retries with exponential or linear backoff.
Queries run exactly once: a broken connection (``InterfaceError``,
``ConnectionDoesNotExistError``) surfaces as
[ConnectionPoolError][relaychat.exceptions.ConnectionPoolError], and
query-level errors such as syntax errors or constraint violations propagate
unchanged.

Examples:
    ```python
    pool = Pool.from_yaml("relaychat.yaml")

    async with pool:
        rows = await pool.fetch("SELECT url, connect FROM relays")

        async with pool.transaction() as conn:
            await conn.execute("DELETE FROM relays")
    ```

See Also:
    [Store][relaychat.core.store.Store]: Facade that wraps this pool, maps
        driver errors onto the persistence hierarchy and owns the schema.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Iterable  # noqa: TC003
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Literal, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from relaychat.exceptions import ConnectionPoolError

from .logger import Logger
from .yaml import load_yaml


DEFAULT_PASSWORD_ENV = "RELAYCHAT_DB_PASSWORD"  # pragma: allowlist secret

_TRANSIENT_ERRORS = (asyncpg.InterfaceError, asyncpg.ConnectionDoesNotExistError)


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """PostgreSQL connection parameters.

    The password is never read from configuration files: it comes from the
    environment variable named by ``password_env``.
    """

    host: str = Field(default="localhost", min_length=1, description="Database hostname")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    database: str = Field(default="relaychat", min_length=1, description="Database name")
    user: str = Field(default="relaychat", min_length=1, description="Database user")
    password_env: str = Field(
        default=DEFAULT_PASSWORD_ENV,
        min_length=1,
        description="Environment variable name for database password",
    )
    password: SecretStr = Field(description="Database password (loaded from password_env)")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        """Fill ``password`` from the environment when it was not given."""
        if isinstance(data, dict) and "password" not in data:
            env_var = data.get("password_env", DEFAULT_PASSWORD_ENV)
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data = {**data, "password": SecretStr(value)}
        return data


class PoolLimitsConfig(BaseModel):
    """Connection pool size limits.

    A chat client issues a handful of small queries, so the defaults are far
    below what a server workload would use.
    """

    min_size: int = Field(default=1, ge=1, le=100, description="Minimum connections")
    max_size: int = Field(default=5, ge=1, le=200, description="Maximum connections")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before recycling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Idle timeout (seconds)"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Timeout settings for pool operations (in seconds)."""

    acquisition: float = Field(default=10.0, ge=0.1, description="Connection acquisition timeout")


class PoolRetryConfig(BaseModel):
    """Backoff between attempts to open the pool.

    Exponential: ``initial_delay * 2**attempt``; linear:
    ``initial_delay * (attempt + 1)``. Both are capped at ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Max retry attempts")
    initial_delay: float = Field(default=1.0, ge=0.1, description="Initial retry delay")
    max_delay: float = Field(default=10.0, ge=0.1, description="Maximum retry delay")
    exponential_backoff: bool = Field(default=True, description="Use exponential backoff")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class ServerSettingsConfig(BaseModel):
    """PostgreSQL session settings sent with every pooled connection.

    ``statement_timeout`` is in milliseconds (``0`` disables it).
    """

    application_name: str = Field(default="relaychat", description="Application name")
    timezone: str = Field(default="UTC", description="Timezone")
    statement_timeout: int = Field(
        default=30_000, ge=0, description="Max query execution time in milliseconds (0=unlimited)"
    )


class PoolConfig(BaseModel):
    """Aggregate configuration for the connection pool."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Async PostgreSQL connection pool manager.

    Wraps ``asyncpg.Pool`` with connect retry, single-attempt query methods
    and a transactional context manager. The pool starts
    disconnected; call [connect()][relaychat.core.pool.Pool.connect] or use
    ``async with``.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected: bool = False
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        return cls(config=PoolConfig(**config_dict))

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        if retry.exponential_backoff:
            delay = retry.initial_delay * (2**attempt)
        else:
            delay = retry.initial_delay * (attempt + 1)
        return float(min(delay, retry.max_delay))

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the asyncpg pool, retrying with backoff on failure.

        Idempotent and guarded by a lock so concurrent callers create one pool.

        Raises:
            ConnectionPoolError: If every attempt fails.
        """
        async with self._connection_lock:
            if self._is_connected:
                return

            db = self._config.database
            settings = self._config.server_settings
            limits = self._config.limits
            attempts = self._config.retry.max_attempts

            self._logger.info(
                "connection_starting", host=db.host, port=db.port, database=db.database
            )

            for attempt in range(attempts):
                try:
                    self._pool = await asyncpg.create_pool(
                        host=db.host,
                        port=db.port,
                        database=db.database,
                        user=db.user,
                        password=db.password.get_secret_value(),
                        min_size=limits.min_size,
                        max_size=limits.max_size,
                        max_queries=limits.max_queries,
                        max_inactive_connection_lifetime=limits.max_inactive_connection_lifetime,
                        timeout=self._config.timeouts.acquisition,
                        server_settings={
                            "application_name": settings.application_name,
                            "timezone": settings.timezone,
                            "statement_timeout": str(settings.statement_timeout),
                        },
                    )
                except (asyncpg.PostgresError, OSError, ConnectionError) as e:
                    if attempt + 1 >= attempts:
                        self._logger.error("connection_failed", attempts=attempt + 1, error=str(e))
                        raise ConnectionPoolError(
                            f"Failed to connect after {attempt + 1} attempts: {e}"
                        ) from e
                    delay = self._retry_delay(attempt)
                    self._logger.warning(
                        "connection_retry", attempt=attempt + 1, delay=delay, error=str(e)
                    )
                    await asyncio.sleep(delay)
                else:
                    self._is_connected = True
                    self._logger.info("connection_established")
                    return

    async def close(self) -> None:
        """Close the pool. Idempotent; state is reset even if closing raises."""
        async with self._connection_lock:
            if self._pool is None:
                return
            try:
                await self._pool.close()
                self._logger.info("connection_closed")
            finally:
                self._pool = None
                self._is_connected = False

    # -------------------------------------------------------------------------
    # Connection Acquisition
    # -------------------------------------------------------------------------

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection for the duration of an ``async with`` block.

        Raises:
            ConnectionPoolError: If the pool has not been connected yet.
        """
        if not self._is_connected or self._pool is None:
            raise ConnectionPoolError("Pool not connected. Call connect() first.")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Yield a connection inside a transaction.

        Commits on normal exit; rolls back if an exception propagates.
        """
        async with self.acquire() as conn, conn.transaction():
            yield conn

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def _run(
        self,
        operation: Literal["fetch", "fetchrow", "fetchval", "execute", "executemany"],
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
        **kwargs: Any,
    ) -> Any:
        """Run a connection method once on a borrowed connection.

        Queries are not retried; only [connect][relaychat.core.pool.Pool.connect]
        backs off.

        Raises:
            ConnectionPoolError: If the connection breaks during the call.
        """
        try:
            async with self.acquire() as conn:
                method = getattr(conn, operation)
                return await method(query, *args, timeout=timeout, **kwargs)
        except _TRANSIENT_ERRORS as e:
            self._logger.error("query_failed", operation=operation, error=str(e))
            raise ConnectionPoolError(f"{operation} failed: {e}") from e

    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        result = await self._run("fetch", query, args, timeout)
        return cast("list[asyncpg.Record]", result)

    async def fetchrow(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        result = await self._run("fetchrow", query, args, timeout)
        return cast("asyncpg.Record | None", result)

    async def fetchval(
        self,
        query: str,
        *args: Any,
        column: int = 0,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any:
        return await self._run("fetchval", query, args, timeout, column=column)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        """Execute a statement and return its status tag (e.g. ``"DELETE 3"``)."""
        result = await self._run("execute", query, args, timeout)
        return cast("str", result)

    async def executemany(
        self,
        query: str,
        rows: Iterable[tuple[Any, ...]],
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> None:
        """Execute *query* once per parameter tuple in *rows*.

        asyncpg runs the whole batch atomically on one connection.
        """
        await self._run("executemany", query, (list(rows),), timeout)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self._is_connected})"
