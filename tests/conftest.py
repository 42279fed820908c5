"""
Pytest configuration and shared fixtures for relaychat tests.

Provides:
- Mock fixtures for asyncpg, Pool and Store
- A fake nostr-sdk client and client factory for session tests
- Custom pytest markers for test categorization
"""

from __future__ import annotations

import logging
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from relaychat.core.pool import DatabaseConfig, Pool, PoolConfig
from relaychat.core.store import Store


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Database Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """A mock asyncpg connection with a working transaction context manager."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="OK")
    conn.executemany = AsyncMock()

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=conn)
    transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=transaction)

    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    pool = MagicMock()
    pool.close = AsyncMock()

    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=acquire)

    return pool


@pytest.fixture
def pool_config() -> PoolConfig:
    return PoolConfig(
        database=DatabaseConfig(
            host="localhost",
            port=5432,
            database="test_db",
            user="test_user",
            password="test_password",
        )
    )


@pytest.fixture
def mock_pool(mock_asyncpg_pool: MagicMock, pool_config: PoolConfig) -> Pool:
    """A connected Pool whose asyncpg pool is a mock."""
    pool = Pool(config=pool_config)
    pool._pool = mock_asyncpg_pool
    pool._is_connected = True
    return pool


@pytest.fixture
def mock_store(mock_pool: Pool) -> Store:
    return Store(pool=mock_pool)


@pytest.fixture
def pool_config_dict() -> dict[str, Any]:
    return {
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "test_db",
            "user": "test_user",
            "password": "test_password",
        },
        "limits": {"min_size": 1, "max_size": 4},
        "timeouts": {"acquisition": 5.0},
        "retry": {
            "max_attempts": 2,
            "initial_delay": 0.1,
            "max_delay": 0.2,
            "exponential_backoff": True,
        },
    }


# ============================================================================
# Nostr Client Fakes
# ============================================================================


class FakeRelay:
    def __init__(self, connected: bool) -> None:
        self.connected = connected

    def is_connected(self) -> bool:
        return self.connected


class FakeClient:
    """Stand-in for ``nostr_sdk.Client`` recording the calls a session makes.

    Relays listed in ``reachable`` report connected once ``connect()`` ran.
    """

    def __init__(self, reachable: set[str] | None = None) -> None:
        self.reachable = set(reachable or ())
        self.added: list[str] = []
        self.connected = False
        self.shutdown_called = False
        self.events: list[Any] = []
        self.sent: list[Any] = []
        self.send_output: Any = MagicMock(success={"wss://a"}, failed={})

    async def add_relay(self, url: Any) -> bool:
        self.added.append(str(url))
        return True

    async def connect(self) -> None:
        self.connected = True

    async def wait_for_connection(self, timeout: Any) -> None:
        return None

    async def relay(self, url: Any) -> FakeRelay:
        key = str(url).rstrip("/")
        return FakeRelay(self.connected and key in self.reachable)

    async def fetch_events(self, event_filter: Any, timeout: Any) -> MagicMock:
        events = MagicMock()
        events.to_vec.return_value = list(self.events)
        return events

    async def send_event_builder(self, builder: Any) -> Any:
        self.sent.append(builder)
        return self.send_output

    async def shutdown(self) -> None:
        self.shutdown_called = True


class FakeClientFactory:
    """Async callable building ``FakeClient`` objects and remembering them."""

    def __init__(self, reachable: set[str] | None = None) -> None:
        self.reachable = set(reachable or ())
        self.clients: list[FakeClient] = []
        self.calls: list[tuple[Any, Any]] = []

    async def __call__(self, keys: Any = None, proxy_url: Any = None) -> FakeClient:
        self.calls.append((keys, proxy_url))
        client = FakeClient(self.reachable)
        self.clients.append(client)
        return client


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


# ============================================================================
# Helper Functions
# ============================================================================


def create_mock_record(data: dict[str, Any]) -> MagicMock:
    """Create a mock asyncpg Record from a dictionary."""
    record = MagicMock()
    record.__getitem__ = lambda _, key: data[key]
    record.get = lambda key, default=None: data.get(key, default)
    record.keys = lambda: data.keys()
    record.values = lambda: data.values()
    record.items = lambda: data.items()
    return record


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests requiring database"
    )
    config.addinivalue_line("markers", "unit: marks tests as unit tests (no external dependencies)")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
