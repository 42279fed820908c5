"""Core layer: storage, logging, configuration loading and metrics.

Sits in the middle of the diamond DAG -- depends only on
[relaychat.models][relaychat.models] and is depended upon by
[relaychat.services][relaychat.services].

Attributes:
    Pool: Async PostgreSQL connection pool with retry/backoff.
        See [Pool][relaychat.core.pool.Pool].
    Store: Query facade over the pool that maps driver errors onto the
        persistence hierarchy and creates the client's tables.
        Services use [Store][relaychat.core.store.Store], never
        [Pool][relaychat.core.pool.Pool] directly.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    load_yaml: Safe YAML loading with ``yaml.safe_load()``.

Examples:
    ```python
    from relaychat.core import Store

    store = Store.from_yaml("relaychat.yaml")
    async with store:
        await store.ensure_schema()
    ```
"""

from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CLIENT_INFO,
    SESSION_GENERATION,
    SESSION_REBUILDS_TOTAL,
    SESSION_RELAYS,
    SESSION_STATE,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .store import Store, StoreConfig, StoreTimeoutsConfig
from .yaml import load_yaml


__all__ = [
    "CLIENT_INFO",
    "SESSION_GENERATION",
    "SESSION_REBUILDS_TOTAL",
    "SESSION_RELAYS",
    "SESSION_STATE",
    "DatabaseConfig",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PoolTimeoutsConfig",
    "ServerSettingsConfig",
    "Store",
    "StoreConfig",
    "StoreTimeoutsConfig",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
