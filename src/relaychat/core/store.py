"""
Database facade for the client's local tables.

[Store][relaychat.core.store.Store] wraps a private
[Pool][relaychat.core.pool.Pool], applies configured timeouts, translates
driver errors into the [PersistenceError][relaychat.exceptions.PersistenceError]
hierarchy and owns the schema of the two tables the client keeps:

* ``relays(url, connect)`` -- relay preferences
  ([RelayRegistry][relaychat.services.registry.RelayRegistry])
* ``pubkey_flares(pubkey, flare)`` -- participant annotations
  ([ParticipantAnnotationCache][relaychat.services.annotations.ParticipantAnnotationCache])

Domain SQL lives with the services that own each table, not here.

Examples:
    ```python
    store = Store.from_yaml("relaychat.yaml")

    async with store:
        await store.ensure_schema()
        rows = await store.fetch("SELECT url FROM relays")
    ```
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Iterator  # noqa: TC003
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from pydantic import BaseModel, Field, field_validator

from relaychat.exceptions import ConnectionPoolError, QueryError

from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


_MIN_TIMEOUT_SECONDS = 0.1

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS relays (
        url TEXT PRIMARY KEY,
        connect INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pubkey_flares (
        pubkey TEXT PRIMARY KEY,
        flare TEXT NOT NULL
    )
    """,
)


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class StoreTimeoutsConfig(BaseModel):
    """Per-category query timeouts in seconds (``None`` waits forever)."""

    query: float | None = Field(default=30.0, description="Single query timeout")
    batch: float | None = Field(default=60.0, description="Multi-row write timeout")

    @field_validator("query", "batch", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class StoreConfig(BaseModel):
    """Aggregate configuration for the store facade."""

    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


# ---------------------------------------------------------------------------
# Store Class
# ---------------------------------------------------------------------------


class Store:
    """Query facade over a private [Pool][relaychat.core.pool.Pool].

    Every method surfaces failures as
    [ConnectionPoolError][relaychat.exceptions.ConnectionPoolError] (transient)
    or [QueryError][relaychat.exceptions.QueryError] (permanent). Each query
    runs once and is never retried.
    """

    def __init__(self, pool: Pool | None = None, config: StoreConfig | None = None) -> None:
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._logger = Logger("store")

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def pool(self) -> Pool:
        return self._pool

    @property
    def pool_config(self) -> PoolConfig:
        return self._pool.config

    @classmethod
    def from_yaml(cls, config_path: str) -> Store:
        """Build a store from the ``store`` section of a YAML file, or its root."""
        data = load_yaml(config_path)
        return cls.from_dict(data.get("store", data))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Store:
        """Build a store; the ``pool`` key configures the pool, the rest the store."""
        pool = Pool.from_dict(config_dict["pool"]) if "pool" in config_dict else None
        store_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_dict) if store_dict else None
        return cls(pool=pool, config=config)

    # -------------------------------------------------------------------------
    # Error Translation
    # -------------------------------------------------------------------------

    @contextlib.contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except asyncpg.PostgresError as e:
            self._logger.error("query_error", operation=operation, error=str(e))
            raise QueryError(f"{operation} failed: {e}") from e
        except (asyncpg.InterfaceError, OSError, TimeoutError) as e:
            self._logger.error("connection_error", operation=operation, error=str(e))
            raise ConnectionPoolError(f"{operation} failed: {e}") from e

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self._config.timeouts.query

    # -------------------------------------------------------------------------
    # Generic Query Facade
    # -------------------------------------------------------------------------

    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        with self._translate_errors("fetch"):
            return await self._pool.fetch(query, *args, timeout=self._timeout(timeout))

    async def fetchrow(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        with self._translate_errors("fetchrow"):
            return await self._pool.fetchrow(query, *args, timeout=self._timeout(timeout))

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:  # noqa: ASYNC109
        with self._translate_errors("fetchval"):
            return await self._pool.fetchval(query, *args, timeout=self._timeout(timeout))

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        with self._translate_errors("execute"):
            return await self._pool.execute(query, *args, timeout=self._timeout(timeout))

    async def executemany(
        self,
        query: str,
        args_list: list[tuple[Any, ...]],
        *,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> None:
        t = timeout if timeout is not None else self._config.timeouts.batch
        with self._translate_errors("executemany"):
            await self._pool.executemany(query, args_list, timeout=t)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Yield a connection inside a transaction.

        Commits on normal exit and rolls back when the block raises. Driver
        errors raised inside the block surface as persistence errors after
        the rollback; any other exception propagates unchanged.

        Examples:
            ```python
            async with store.transaction() as conn:
                await conn.execute("DELETE FROM relays")
                await conn.executemany("INSERT INTO relays ...", rows)
            ```
        """
        with self._translate_errors("transaction"):
            async with self._pool.transaction() as conn:
                yield conn

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create the ``relays`` and ``pubkey_flares`` tables if missing."""
        async with self.transaction() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        self._logger.debug("schema_ready", tables=2)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        await self._pool.connect()
        self._logger.debug("store_opened")

    async def close(self) -> None:
        self._logger.debug("store_closing")
        await self._pool.close()

    async def __aenter__(self) -> Store:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._pool.config.database
        return f"Store(host={db.host}, database={db.database}, connected={self._pool.is_connected})"
