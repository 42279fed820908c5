"""
Prometheus metrics for the connection session and their HTTP exposition.

Metric objects are module-level singletons. The
[ConnectionSessionManager][relaychat.services.session.ConnectionSessionManager]
updates them on every session swap and state transition; the
[MetricsServer][relaychat.core.metrics.MetricsServer] serves them to a
Prometheus scraper while ``relaychat connect`` runs.

Architecture:
    CLIENT_INFO:             Static client identity, set once at startup.
    SESSION_STATE:           Enum of the current session's lifecycle state.
    SESSION_RELAYS:          Relay counts, labelled ``configured`` / ``connected``.
    SESSION_GENERATION:      Generation number of the current session.
    SESSION_REBUILDS_TOTAL:  Sessions built, labelled by reason.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Enum,
    Gauge,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field

from relaychat.models.constants import SessionState


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True.
    """

    enabled: bool = Field(default=False, description="Enable metrics endpoint")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Session Metrics
# ---------------------------------------------------------------------------

CLIENT_INFO = Info(
    "relaychat_client",
    "Client identity and version",
)

SESSION_STATE = Enum(
    "relaychat_session_state",
    "Lifecycle state of the current connection session",
    states=[state.value for state in SessionState],
)

SESSION_RELAYS = Gauge(
    "relaychat_session_relays",
    "Relays bound to the current session",
    ["status"],
)

SESSION_GENERATION = Gauge(
    "relaychat_session_generation",
    "Generation number of the current session (increments on every rebuild)",
)

SESSION_REBUILDS_TOTAL = Counter(
    "relaychat_session_rebuilds",
    "Connection sessions built",
    ["reason"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """aiohttp server exposing the Prometheus exposition format.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... client runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind the endpoint; no-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use.
        """
        if not self._config.enabled or self._runner is not None:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

    async def stop(self) -> None:
        """Release the port. Idempotent."""
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a [MetricsServer][relaychat.core.metrics.MetricsServer].

    The caller owns the returned server and must ``stop()`` it on shutdown.
    """
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
