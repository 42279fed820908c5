"""
The single live connection session to the configured relay set.

A [ConnectionSession][relaychat.services.session.ConnectionSession] wraps one
``nostr_sdk.Client`` bound to a fixed list of relay URLs. It is never
mutated in place: when the relay set changes, the
[ConnectionSessionManager][relaychat.services.session.ConnectionSessionManager]
builds a new session, swaps its current reference, and retires the old one
in the background. Consumers that must keep using one session across awaits
hold a [lease()][relaychat.services.session.ConnectionSessionManager.lease];
a retired session closes only after its last lease is released.

Connectivity is reported as [SessionState][relaychat.models.constants.SessionState],
never raised: a session whose relays are all unreachable, or that was built
with none, is ``degraded`` and may recover.

Examples:
    ```python
    manager = ConnectionSessionManager(SessionConfig())
    async with manager:
        await manager.load(registry)
        async with manager.lease() as session:
            events = await session.fetch_events(thread_filter(thread_id))
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from nostr_sdk import Filter, Kind, PublicKey, RelayUrl

from relaychat.core.logger import Logger
from relaychat.core.metrics import (
    SESSION_GENERATION,
    SESSION_REBUILDS_TOTAL,
    SESSION_RELAYS,
    SESSION_STATE,
)
from relaychat.exceptions import (
    ConnectivityError,
    InvalidInputError,
    NotInitializedError,
    PublishingError,
    RelayTimeoutError,
    SessionClosedError,
)
from relaychat.models.constants import EventKind, SessionState
from relaychat.models.relay import Relay
from relaychat.utils.keys import normalize_public_key
from relaychat.utils.protocol import client_tag, create_client, verify_event

from .configs import SessionConfig


if TYPE_CHECKING:
    from nostr_sdk import Client, Event, EventBuilder, Keys, SendEventOutput

    from .registry import RelayRegistry


ClientFactory = Callable[["Keys | None", "str | None"], Awaitable["Client"]]
StateListener = Callable[["ConnectionSession", SessionState], None]

VALIDATION_RATIO_DECAY = 0.99


def eligible_relay_urls(relay_urls: Iterable[str], *, allow_overlay: bool = True) -> list[str]:
    """Filter *relay_urls* down to the ones a session can connect to.

    Keeps valid ``ws``/``wss`` URLs in normalized form, drops everything
    else, and removes duplicates while preserving first-seen order. Overlay
    relays (Tor, I2P, Lokinet) are kept only when *allow_overlay* is set.

    Raises:
        InvalidInputError: If *relay_urls* is a single string.
    """
    if isinstance(relay_urls, (str, bytes)):
        raise InvalidInputError("relay_urls must be a collection of URLs, not a single string")

    seen: dict[str, None] = {}
    for raw in relay_urls:
        relay = Relay.try_parse(raw)
        if relay is None or (relay.is_overlay and not allow_overlay):
            continue
        seen.setdefault(relay.url, None)
    return list(seen)


class ConnectionSession:
    """One ``nostr_sdk.Client`` bound to a fixed relay set.

    Created by the manager and started with ``start()``; the connect attempt
    and the status monitor run in one background task.
    """

    def __init__(
        self,
        relay_urls: Iterable[str],
        config: SessionConfig,
        *,
        keys: Keys | None = None,
        client_factory: ClientFactory = create_client,
        generation: int = 0,
        on_state_change: StateListener | None = None,
    ) -> None:
        self._relay_urls: tuple[str, ...] = tuple(relay_urls)
        self._config = config
        self._keys = keys
        self._client_factory = client_factory
        self._generation = generation
        self._on_state_change = on_state_change
        self._logger = Logger("session")

        self._state = SessionState.DISCONNECTED
        self._client: Client | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self._retired = False
        self._leases = 0
        self._statuses: dict[str, bool] = dict.fromkeys(self._relay_urls, False)

        self._validation_ratio = config.initial_validation_ratio
        self._random = random.Random()
        self._profiles: dict[str, tuple[float, dict[str, Any] | None]] = {}

    def __repr__(self) -> str:
        return (
            f"ConnectionSession(generation={self._generation}, state={self._state}, "
            f"relays={len(self._relay_urls)})"
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def relay_urls(self) -> tuple[str, ...]:
        return self._relay_urls

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def client(self) -> Client | None:
        """The underlying client, once built."""
        return self._client

    @property
    def is_degraded(self) -> bool:
        return self._state == SessionState.DEGRADED

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_retired(self) -> bool:
        return self._retired

    @property
    def leases(self) -> int:
        return self._leases

    @property
    def validation_ratio(self) -> float:
        return self._validation_ratio

    def connected_count(self) -> int:
        return sum(self._statuses.values())

    def relay_statuses(self) -> dict[str, str]:
        """Per-URL ``"connected"`` / ``"disconnected"`` as of the last poll."""
        return {url: "connected" if up else "disconnected" for url, up in self._statuses.items()}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        self._logger.info(
            "session_state_changed",
            generation=self._generation,
            previous=previous,
            state=state,
            connected=self.connected_count(),
            relays=len(self._relay_urls),
        )
        if self._on_state_change is not None:
            self._on_state_change(self, state)

    def start(self) -> None:
        """Begin connecting in the background. Must be called on a running loop."""
        if self._closed:
            raise SessionClosedError(f"session {self._generation} is closed")
        if self._task is not None:
            return
        self._set_state(SessionState.CONNECTING)
        self._task = asyncio.create_task(self._run(), name=f"relaychat-session-{self._generation}")

    async def _run(self) -> None:
        try:
            if await self._open():
                await self._monitor()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # nostr-sdk FFI raises its own error types
            self._logger.error("session_failed", generation=self._generation, error=str(e))
            self._ready.set()
            self._set_state(SessionState.DEGRADED)

    async def _open(self) -> bool:
        if not self._relay_urls:
            self._logger.warning("session_without_relays", generation=self._generation)
            self._ready.set()
            self._set_state(SessionState.DEGRADED)
            return False

        timeout = self._config.connect_timeout
        try:
            async with asyncio.timeout(timeout):
                client = await self._start_client()
                await client.wait_for_connection(timedelta(seconds=timeout))
        except TimeoutError:
            self._logger.debug("connect_timed_out", generation=self._generation, timeout_s=timeout)
        self._ready.set()

        await self._refresh_statuses()
        if self.connected_count():
            self._set_state(SessionState.CONNECTED)
        else:
            self._logger.warning(
                "session_degraded", generation=self._generation, timeout_s=timeout
            )
            self._set_state(SessionState.DEGRADED)
        return self._client is not None

    async def _start_client(self) -> Client:
        client = await self._client_factory(self._keys, self._config.proxy_url)
        self._client = client

        for url in self._relay_urls:
            try:
                await client.add_relay(RelayUrl.parse(url))
            except Exception as e:  # nostr-sdk FFI raises its own error types
                self._logger.warning("relay_rejected", url=url, error=str(e))

        await client.connect()
        self._ready.set()
        return client

    async def _refresh_statuses(self) -> None:
        client = self._client
        if client is None:
            return
        for url in self._relay_urls:
            try:
                relay = await client.relay(RelayUrl.parse(url))
                self._statuses[url] = bool(relay.is_connected())
            except Exception:  # nostr-sdk FFI raises its own error types
                self._statuses[url] = False

    async def _monitor(self) -> None:
        while True:
            await asyncio.sleep(self._config.status_interval)
            await self._refresh_statuses()
            if self.connected_count():
                self._set_state(SessionState.CONNECTED)
            elif self._state == SessionState.CONNECTED:
                self._set_state(SessionState.RECONNECTING)

    async def _cancel_task(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    async def close(self) -> None:
        """Cancel in-flight work and shut the client down. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._ready.set()
        await self._cancel_task()

        client, self._client = self._client, None
        if client is not None:
            # nostr-sdk Rust FFI can raise arbitrary exception types during shutdown.
            with contextlib.suppress(Exception):
                await client.shutdown()

        self._statuses = dict.fromkeys(self._relay_urls, False)
        self._set_state(SessionState.DISCONNECTED)
        self._logger.info("session_closed", generation=self._generation)

    # -------------------------------------------------------------------------
    # Leases
    # -------------------------------------------------------------------------

    def acquire(self) -> None:
        if self._closed:
            raise SessionClosedError(f"session {self._generation} is closed")
        self._leases += 1

    def release(self) -> asyncio.Task[None] | None:
        """Drop one lease; closes a retired session when the last lease goes."""
        self._leases = max(0, self._leases - 1)
        if self._retired and self._leases == 0 and not self._closed:
            return asyncio.create_task(self.close())
        return None

    def retire(self) -> asyncio.Task[None] | None:
        """Mark the session superseded.

        A connect attempt still in flight is cancelled at once and the session
        is left degraded. The client is closed now if nothing holds a lease,
        otherwise when the last lease is released.

        Returns:
            The task closing the session, or ``None`` when closing is deferred.
        """
        if self._retired:
            return None
        self._retired = True
        self._logger.debug("session_retired", generation=self._generation, leases=self._leases)
        if self._leases == 0:
            return asyncio.create_task(self.close())
        if self._state == SessionState.CONNECTING:
            return asyncio.create_task(self._abandon_connect())
        return None

    async def _abandon_connect(self) -> None:
        await self._cancel_task()
        if not self._closed and self._state == SessionState.CONNECTING:
            self._ready.set()
            self._set_state(SessionState.DEGRADED)

    # -------------------------------------------------------------------------
    # Relay I/O
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"session {self._generation} is closed")

    async def _wait_ready(self, timeout: float) -> Client | None:  # noqa: ASYNC109
        self._ensure_open()
        try:
            async with asyncio.timeout(timeout):
                await self._ready.wait()
        except TimeoutError:
            raise RelayTimeoutError(
                f"session {self._generation} not ready after {timeout}s"
            ) from None
        self._ensure_open()
        return self._client

    def _should_verify(self) -> bool:
        return self._random.random() < self._validation_ratio

    def _accept(self, event: Event) -> bool:
        if not self._should_verify():
            return True
        if verify_event(event):
            self._validation_ratio = max(
                self._config.lowest_validation_ratio,
                self._validation_ratio * VALIDATION_RATIO_DECAY,
            )
            return True
        self._validation_ratio = self._config.initial_validation_ratio
        self._logger.warning("event_rejected", generation=self._generation, reason="bad_signature")
        return False

    async def fetch_events(self, event_filter: Filter, timeout: float | None = None) -> list[Event]:  # noqa: ASYNC109
        """Fetch stored events matching *event_filter* from the session's relays.

        Waits up to *timeout* (default ``connect_timeout``) for the client to
        be ready. A sampled fraction of events is signature-checked; the
        fraction decays while events verify and resets to the initial ratio
        on the first bad one. Failing events are dropped.

        Raises:
            RelayTimeoutError: If the client is not ready in time.
            SessionClosedError: If the session is closed.
            ConnectivityError: If the client fails the request.
        """
        wait = timeout if timeout is not None else self._config.connect_timeout
        client = await self._wait_ready(wait)
        if client is None:
            return []

        try:
            events = await client.fetch_events(event_filter, timedelta(seconds=wait))
        except Exception as e:  # nostr-sdk FFI raises its own error types
            raise ConnectivityError(f"fetch failed: {e}") from e

        return [event for event in events.to_vec() if self._accept(event)]

    async def publish(self, builder: EventBuilder) -> SendEventOutput:
        """Sign *builder* with the session's keys and send it to its relays.

        Adds the ``client`` tag when ``client_name`` is configured.

        Raises:
            PublishingError: If there is no client, the send fails, or no
                relay accepted the event.
        """
        client = await self._wait_ready(self._config.connect_timeout)
        if client is None:
            raise PublishingError(f"session {self._generation} has no relays to publish to")

        if self._config.client_name:
            builder = builder.tags([client_tag(self._config.client_name)])

        try:
            output = await client.send_event_builder(builder)
        except Exception as e:  # nostr-sdk FFI raises its own error types
            raise PublishingError(f"send failed: {e}") from e

        if not output.success:
            raise PublishingError(f"no relay accepted the event: {dict(output.failed)}")
        self._logger.debug("event_published", accepted=len(output.success))
        return output

    async def fetch_profile(self, pubkey: str, *, refresh: bool = False) -> dict[str, Any] | None:
        """Return the newest kind-0 metadata of *pubkey* as a dict, or ``None``.

        Results (including misses) are cached for ``profile_refresh_interval``
        seconds.
        """
        key = normalize_public_key(pubkey)
        now = time.monotonic()
        cached = self._profiles.get(key)
        if cached is not None and not refresh:
            fetched_at, cached_profile = cached
            if now - fetched_at < self._config.profile_refresh_interval:
                return cached_profile

        event_filter = (
            Filter()
            .author(PublicKey.parse(key))
            .kind(Kind(int(EventKind.SET_METADATA)))
            .limit(1)
        )
        events = await self.fetch_events(event_filter)
        latest = max(events, key=lambda e: e.created_at().as_secs(), default=None)

        profile: dict[str, Any] | None = None
        if latest is not None:
            try:
                parsed = json.loads(latest.content())
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                profile = parsed

        self._profiles[key] = (now, profile)
        return profile


class ConnectionSessionManager:
    """Owns the current [ConnectionSession][relaychat.services.session.ConnectionSession].

    Only the manager writes the current-session reference. Swaps happen
    without an intervening ``await`` so they are atomic on the event loop,
    and the most recent relay-set request always wins.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        keys: Keys | None = None,
        client_factory: ClientFactory = create_client,
    ) -> None:
        self._config = config or SessionConfig()
        self._keys = keys
        self._client_factory = client_factory
        self._current: ConnectionSession | None = None
        self._generation = 0
        self._requests = 0
        self._listeners: list[StateListener] = []
        self._retiring: set[asyncio.Task[None]] = set()
        self._logger = Logger("session_manager")

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_initialized(self) -> bool:
        return self._current is not None and not self._current.is_closed

    def current(self) -> ConnectionSession:
        """Return the current session.

        Raises:
            NotInitializedError: Before ``initialize()`` or after ``close()``.
        """
        if self._current is None:
            raise NotInitializedError("connection session not initialized; call initialize() first")
        return self._current

    # -------------------------------------------------------------------------
    # Session Swaps
    # -------------------------------------------------------------------------

    def _install(self, relay_urls: Iterable[str], reason: str) -> ConnectionSession:
        urls = eligible_relay_urls(relay_urls, allow_overlay=self._config.proxy_url is not None)
        self._generation += 1
        session = ConnectionSession(
            urls,
            self._config,
            keys=self._keys,
            client_factory=self._client_factory,
            generation=self._generation,
            on_state_change=self._on_session_state,
        )

        previous, self._current = self._current, session

        SESSION_REBUILDS_TOTAL.labels(reason=reason).inc()
        SESSION_GENERATION.set(self._generation)
        SESSION_RELAYS.labels(status="configured").set(len(urls))
        SESSION_RELAYS.labels(status="connected").set(0)
        self._logger.info(
            "session_started", generation=self._generation, relays=len(urls), reason=reason
        )

        session.start()
        if previous is not None:
            self._track(previous.retire())
        return session

    def _track(self, task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    async def initialize(self, relay_urls: Iterable[str]) -> ConnectionSession:
        """Create and start the first session; later calls return the current one."""
        if self._current is not None and not self._current.is_closed:
            return self._current
        self._requests += 1
        return self._install(relay_urls, reason="initialize")

    async def set_relays(self, relay_urls: Iterable[str]) -> ConnectionSession:
        """Replace the current session with one bound to *relay_urls*.

        Returns as soon as the new session is installed and connecting; the
        previous session is retired in the background.
        """
        self._requests += 1
        return self._install(relay_urls, reason="relays_changed")

    async def load(self, registry: RelayRegistry) -> ConnectionSession:
        """Initialize from the registry's auto-connect relays."""
        urls = await registry.autoconnect_urls()
        return await self.initialize(urls)

    async def reload(self, registry: RelayRegistry) -> ConnectionSession:
        """Rebuild the session from the registry.

        If another ``reload()`` or ``set_relays()`` starts while the registry
        is being read, this call is abandoned and the newer session returned.
        """
        self._requests += 1
        ticket = self._requests
        urls = await registry.autoconnect_urls()
        if ticket != self._requests:
            self._logger.debug("reload_superseded", ticket=ticket, latest=self._requests)
            return self.current()
        return self._install(urls, reason="reload")

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[ConnectionSession]:
        """Hold the current session for the duration of the block.

        The session stays open for the block even if it is superseded
        meanwhile.
        """
        session = self.current()
        session.acquire()
        try:
            yield session
        finally:
            self._track(session.release())

    # -------------------------------------------------------------------------
    # State Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, callback: StateListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: StateListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(callback)

    def _on_session_state(self, session: ConnectionSession, state: SessionState) -> None:
        if session is not self._current:
            return
        SESSION_STATE.state(state.value)
        SESSION_RELAYS.labels(status="connected").set(session.connected_count())
        for callback in list(self._listeners):
            try:
                callback(session, state)
            except Exception:
                self._logger.exception("listener_failed", state=state)

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the current session and wait for retiring ones to finish."""
        session = self._current
        if session is not None:
            # Cleared only after the close so listeners see the final state.
            try:
                await session.close()
            finally:
                self._current = None
        if self._retiring:
            await asyncio.gather(*self._retiring, return_exceptions=True)
        self._logger.info("session_manager_closed", generation=self._generation)

    async def __aenter__(self) -> ConnectionSessionManager:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
