"""
Unit tests for services.session module.

Tests:
- eligible_relay_urls() filtering
- ConnectionSession connect flow and state transitions
- Degraded sessions (no relays, unreachable relays, client failure)
- fetch_events() readiness, closed sessions and sampled verification
- publish() client tag and failure reporting
- fetch_profile() parsing and caching
- ConnectionSessionManager swaps, supersede, leases and listeners
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from nostr_sdk import Keys

from relaychat.exceptions import (
    ConnectivityError,
    InvalidInputError,
    NotInitializedError,
    PublishingError,
    RelayTimeoutError,
    SessionClosedError,
)
from relaychat.models.constants import SessionState
from relaychat.services.configs import SessionConfig
from relaychat.services.session import (
    ConnectionSession,
    ConnectionSessionManager,
    eligible_relay_urls,
)


FAST = SessionConfig(
    relays=["wss://a"],
    connect_timeout=0.5,
    status_interval=0.05,
    initial_validation_ratio=1.0,
    lowest_validation_ratio=0.5,
)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


def make_event(valid: bool = True, content: str = "{}", created_at: int = 1) -> MagicMock:
    event = MagicMock()
    event.verify.return_value = valid
    event.content.return_value = content
    event.created_at.return_value.as_secs.return_value = created_at
    return event


@pytest.fixture
def reachable_factory(client_factory):
    client_factory.reachable = {"wss://a", "wss://b"}
    return client_factory


@pytest.fixture
async def session(reachable_factory):
    s = ConnectionSession(["wss://a"], FAST, client_factory=reachable_factory, generation=1)
    s.start()
    await wait_until(lambda: s.state == SessionState.CONNECTED)
    yield s
    await s.close()


class TestEligibleRelayUrls:
    def test_filters_and_normalizes(self):
        urls = ["wss://A.example.com", "https://x.example.com", "garbage", "ws://b.example.com:80"]
        assert eligible_relay_urls(urls) == ["wss://a.example.com", "ws://b.example.com"]

    def test_dedupes_in_order(self):
        assert eligible_relay_urls(["wss://b", "wss://a", "wss://b/"]) == ["wss://b", "wss://a"]

    def test_non_strings_dropped(self):
        assert eligible_relay_urls([None, 5, "wss://a"]) == ["wss://a"]

    def test_bare_string_rejected(self):
        with pytest.raises(InvalidInputError):
            eligible_relay_urls("wss://a")

    def test_undecodable_urls_dropped(self):
        assert eligible_relay_urls(["wss://a.com/\udcff", "wss://\ud800.com", "wss://a"]) == ["wss://a"]

    def test_overlay_relays_need_proxy(self):
        urls = ["wss://abc.onion", "wss://a", "ws://relay.i2p"]
        assert eligible_relay_urls(urls, allow_overlay=False) == ["wss://a"]
        assert eligible_relay_urls(urls) == ["wss://abc.onion", "wss://a", "ws://relay.i2p"]


class TestConnectFlow:
    async def test_connects(self, session, reachable_factory):
        client = reachable_factory.clients[0]
        assert [url.rstrip("/") for url in client.added] == ["wss://a"]
        assert client.connected
        assert session.connected_count() == 1
        assert session.relay_statuses() == {"wss://a": "connected"}
        assert not session.is_degraded

    async def test_starts_connecting(self, reachable_factory):
        s = ConnectionSession(["wss://a"], FAST, client_factory=reachable_factory)
        assert s.state == SessionState.DISCONNECTED
        s.start()
        assert s.state == SessionState.CONNECTING
        await s.close()

    async def test_passes_keys_and_proxy(self, reachable_factory):
        keys = Keys.generate()
        config = FAST.model_copy(update={"proxy_url": "socks5://127.0.0.1:9050"})
        s = ConnectionSession(["wss://a"], config, keys=keys, client_factory=reachable_factory)
        s.start()
        await wait_until(lambda: reachable_factory.calls)
        assert reachable_factory.calls[0] == (keys, "socks5://127.0.0.1:9050")
        await s.close()

    async def test_no_relays_is_degraded(self, client_factory):
        s = ConnectionSession([], FAST, client_factory=client_factory)
        s.start()
        await wait_until(lambda: s.is_degraded)
        assert client_factory.clients == []
        assert await s.fetch_events(MagicMock()) == []
        await s.close()

    async def test_unreachable_is_degraded(self, client_factory):
        s = ConnectionSession(["wss://down"], FAST, client_factory=client_factory)
        s.start()
        await wait_until(lambda: s.is_degraded)
        assert s.relay_statuses() == {"wss://down": "disconnected"}
        await s.close()

    async def test_factory_failure_is_degraded(self):
        factory = AsyncMock(side_effect=RuntimeError("ffi exploded"))
        s = ConnectionSession(["wss://a"], FAST, client_factory=factory)
        s.start()
        await wait_until(lambda: s.is_degraded)
        await s.close()

    async def test_hanging_connect_is_degraded(self, client_factory):
        async def hang():
            await asyncio.sleep(3600)

        async def factory(keys, proxy_url):
            client = await client_factory(keys, proxy_url)
            client.connect = hang
            return client

        config = FAST.model_copy(update={"connect_timeout": 0.1})
        s = ConnectionSession(["wss://a"], config, client_factory=factory)
        s.start()
        await wait_until(lambda: s.is_degraded, timeout=1.0)
        assert await s.fetch_events(MagicMock(), timeout=0.05) == []
        await s.close()

    async def test_hanging_factory_is_degraded(self):
        async def factory(keys, proxy_url):
            await asyncio.sleep(3600)

        config = FAST.model_copy(update={"connect_timeout": 0.1})
        s = ConnectionSession(["wss://a"], config, client_factory=factory)
        s.start()
        await wait_until(lambda: s.is_degraded, timeout=1.0)
        assert s.client is None
        assert s.relay_statuses() == {"wss://a": "disconnected"}
        await s.close()

    async def test_retired_while_leased_and_connecting(self):
        async def factory(keys, proxy_url):
            await asyncio.sleep(3600)

        s = ConnectionSession(["wss://a"], FAST, client_factory=factory)
        s.start()
        s.acquire()
        task = s.retire()
        assert task is not None
        await task
        assert s.state == SessionState.DEGRADED
        assert not s.is_closed
        assert await s.fetch_events(MagicMock(), timeout=0.05) == []
        closing = s.release()
        assert closing is not None
        await closing
        assert s.is_closed

    async def test_reconnecting_then_recovered(self, session, reachable_factory):
        client = reachable_factory.clients[0]
        client.reachable.clear()
        await wait_until(lambda: session.state == SessionState.RECONNECTING)
        client.reachable.add("wss://a")
        await wait_until(lambda: session.state == SessionState.CONNECTED)

    async def test_degraded_recovers(self, client_factory):
        s = ConnectionSession(["wss://a"], FAST, client_factory=client_factory)
        s.start()
        await wait_until(lambda: s.is_degraded)
        client_factory.clients[0].reachable.add("wss://a")
        await wait_until(lambda: s.state == SessionState.CONNECTED)
        await s.close()

    async def test_state_callback(self, reachable_factory):
        seen = []
        s = ConnectionSession(
            ["wss://a"],
            FAST,
            client_factory=reachable_factory,
            on_state_change=lambda sess, state: seen.append(state),
        )
        s.start()
        await wait_until(lambda: s.state == SessionState.CONNECTED)
        await s.close()
        assert seen == [
            SessionState.CONNECTING,
            SessionState.CONNECTED,
            SessionState.DISCONNECTED,
        ]


class TestClose:
    async def test_close_shuts_down_client(self, session, reachable_factory):
        await session.close()
        assert session.is_closed
        assert session.state == SessionState.DISCONNECTED
        assert session.client is None
        assert reachable_factory.clients[0].shutdown_called

    async def test_close_idempotent(self, session):
        await session.close()
        await session.close()
        assert session.is_closed

    async def test_shutdown_error_suppressed(self, session, reachable_factory):
        reachable_factory.clients[0].shutdown = AsyncMock(side_effect=RuntimeError("ffi"))
        await session.close()
        assert session.is_closed

    async def test_closed_session_rejects_io(self, session):
        await session.close()
        with pytest.raises(SessionClosedError):
            await session.fetch_events(MagicMock())
        with pytest.raises(SessionClosedError):
            session.start()
        with pytest.raises(SessionClosedError):
            session.acquire()


class TestFetchEvents:
    async def test_returns_events(self, session, reachable_factory):
        events = [make_event(), make_event()]
        reachable_factory.clients[0].events = events
        assert await session.fetch_events(MagicMock()) == events

    async def test_invalid_event_dropped_and_ratio_reset(self, session, reachable_factory):
        good, bad = make_event(), make_event(valid=False)
        reachable_factory.clients[0].events = [good, good, bad]
        assert await session.fetch_events(MagicMock()) == [good, good]
        assert session.validation_ratio == 1.0

    async def test_ratio_decays_to_floor(self, session, reachable_factory):
        reachable_factory.clients[0].events = [make_event()]
        await session.fetch_events(MagicMock())
        assert session.validation_ratio == pytest.approx(0.99)

        session._validation_ratio = 0.505
        await session.fetch_events(MagicMock())
        assert session.validation_ratio == 0.5

    async def test_unsampled_events_skip_verification(self, session, reachable_factory):
        event = make_event(valid=False)
        reachable_factory.clients[0].events = [event]
        session._validation_ratio = 0.0
        assert await session.fetch_events(MagicMock()) == [event]
        event.verify.assert_not_called()

    async def test_client_failure(self, session, reachable_factory):
        reachable_factory.clients[0].fetch_events = AsyncMock(side_effect=RuntimeError("io"))
        with pytest.raises(ConnectivityError, match="fetch failed"):
            await session.fetch_events(MagicMock())

    async def test_not_ready_times_out(self):
        blocker = asyncio.Event()

        async def slow_factory(keys, proxy_url):
            await blocker.wait()

        s = ConnectionSession(["wss://a"], FAST, client_factory=slow_factory)
        s.start()
        with pytest.raises(RelayTimeoutError):
            await s.fetch_events(MagicMock(), timeout=0.05)
        await s.close()


class TestPublish:
    async def test_adds_client_tag(self, session, reachable_factory):
        builder = MagicMock()
        output = await session.publish(builder)
        builder.tags.assert_called_once()
        tag = builder.tags.call_args.args[0][0]
        assert tag.as_vec() == ["client", "relaychat"]
        assert reachable_factory.clients[0].sent == [builder.tags.return_value]
        assert output.success == {"wss://a"}

    async def test_no_tag_when_disabled(self, reachable_factory):
        config = FAST.model_copy(update={"client_name": None})
        s = ConnectionSession(["wss://a"], config, client_factory=reachable_factory)
        s.start()
        builder = MagicMock()
        await s.publish(builder)
        builder.tags.assert_not_called()
        await s.close()

    async def test_rejected_everywhere(self, session, reachable_factory):
        reachable_factory.clients[0].send_output = MagicMock(success=set(), failed={"wss://a": "blocked"})
        with pytest.raises(PublishingError, match="no relay accepted"):
            await session.publish(MagicMock())

    async def test_send_error(self, session, reachable_factory):
        reachable_factory.clients[0].send_event_builder = AsyncMock(side_effect=RuntimeError("x"))
        with pytest.raises(PublishingError, match="send failed"):
            await session.publish(MagicMock())

    async def test_no_relays(self, client_factory):
        s = ConnectionSession([], FAST, client_factory=client_factory)
        s.start()
        with pytest.raises(PublishingError, match="no relays"):
            await s.publish(MagicMock())
        await s.close()


class TestFetchProfile:
    async def test_newest_metadata(self, session, reachable_factory):
        pubkey = Keys.generate().public_key().to_hex()
        reachable_factory.clients[0].events = [
            make_event(content=json.dumps({"name": "old"}), created_at=1),
            make_event(content=json.dumps({"name": "new"}), created_at=5),
        ]
        assert await session.fetch_profile(pubkey) == {"name": "new"}

    async def test_cached(self, session, reachable_factory):
        pubkey = Keys.generate().public_key().to_hex()
        client = reachable_factory.clients[0]
        client.events = [make_event(content='{"name": "alice"}')]
        await session.fetch_profile(pubkey)
        client.events = [make_event(content='{"name": "changed"}')]
        assert await session.fetch_profile(pubkey) == {"name": "alice"}
        assert await session.fetch_profile(pubkey, refresh=True) == {"name": "changed"}

    @pytest.mark.parametrize("content", ["not json", "[1, 2]"])
    async def test_bad_content(self, session, reachable_factory, content):
        reachable_factory.clients[0].events = [make_event(content=content)]
        assert await session.fetch_profile(Keys.generate().public_key().to_bech32()) is None

    async def test_missing(self, session):
        assert await session.fetch_profile(Keys.generate().public_key().to_hex()) is None

    async def test_invalid_key(self, session):
        with pytest.raises(InvalidInputError):
            await session.fetch_profile("nope")


class TestManager:
    @pytest.fixture
    async def manager(self, reachable_factory):
        m = ConnectionSessionManager(FAST, client_factory=reachable_factory)
        yield m
        await m.close()

    async def test_current_before_initialize(self, manager):
        assert manager.is_initialized is False
        with pytest.raises(NotInitializedError):
            manager.current()

    async def test_initialize(self, manager):
        session = await manager.initialize(["wss://a"])
        assert manager.current() is session
        assert session.state in (SessionState.CONNECTING, SessionState.CONNECTED)
        assert session.generation == 1
        await wait_until(lambda: session.state == SessionState.CONNECTED)

    async def test_initialize_idempotent(self, manager):
        first = await manager.initialize(["wss://a"])
        assert await manager.initialize(["wss://b"]) is first
        assert manager.generation == 1

    async def test_initialize_filters_urls(self, manager):
        session = await manager.initialize(["wss://a", "http://nope", "wss://a"])
        assert session.relay_urls == ("wss://a",)

    async def test_overlay_relays_follow_proxy_setting(self, reachable_factory):
        urls = ["wss://abc.onion", "wss://a"]
        async with ConnectionSessionManager(FAST, client_factory=reachable_factory) as plain:
            assert (await plain.initialize(urls)).relay_urls == ("wss://a",)
        proxied_config = FAST.model_copy(update={"proxy_url": "socks5://127.0.0.1:9050"})
        async with ConnectionSessionManager(proxied_config, client_factory=reachable_factory) as proxied:
            assert (await proxied.initialize(urls)).relay_urls == ("wss://abc.onion", "wss://a")

    async def test_undecodable_urls_do_not_fail_set_relays(self, manager):
        session = await manager.set_relays(["wss://\ud800.com"])
        assert session.relay_urls == ()
        await wait_until(lambda: session.is_degraded)

    async def test_set_relays_swaps_and_retires(self, manager):
        first = await manager.initialize(["wss://a"])
        second = await manager.set_relays(["wss://b"])
        assert manager.current() is second
        assert second.generation == 2
        assert first.is_retired
        await wait_until(lambda: first.is_closed)
        assert not second.is_closed

    async def test_last_set_relays_wins(self, manager):
        await manager.initialize(["wss://a"])
        await asyncio.gather(manager.set_relays(["wss://a"]), manager.set_relays(["wss://b"]))
        assert manager.current().relay_urls == ("wss://b",)

    async def test_lease_delays_close(self, manager):
        await manager.initialize(["wss://a"])
        async with manager.lease() as leased:
            assert leased.leases == 1
            await manager.set_relays(["wss://b"])
            await asyncio.sleep(0.05)
            assert leased.is_retired
            assert not leased.is_closed
        await wait_until(lambda: leased.is_closed)
        assert manager.current() is not leased

    async def test_lease_requires_initialize(self, manager):
        with pytest.raises(NotInitializedError):
            async with manager.lease():
                pass

    async def test_load_uses_autoconnect(self, manager):
        registry = MagicMock()
        registry.autoconnect_urls = AsyncMock(return_value=["wss://a", "wss://b"])
        session = await manager.load(registry)
        assert session.relay_urls == ("wss://a", "wss://b")

    async def test_reload_superseded(self, manager):
        await manager.initialize(["wss://a"])
        gate = asyncio.Event()

        async def slow_urls():
            await gate.wait()
            return ["wss://old"]

        registry = MagicMock()
        registry.autoconnect_urls = slow_urls
        reload_task = asyncio.create_task(manager.reload(registry))
        await asyncio.sleep(0)
        newer = await manager.set_relays(["wss://b"])
        gate.set()
        assert await reload_task is newer
        assert manager.current().relay_urls == ("wss://b",)

    async def test_zero_relays_degraded(self, manager):
        session = await manager.set_relays([])
        await wait_until(lambda: session.is_degraded)
        assert manager.current() is session

    async def test_listeners_only_hear_current(self, manager):
        seen = []

        def listener(session, state):
            seen.append((session.generation, state))

        manager.add_listener(listener)
        first = await manager.initialize(["wss://a"])
        await wait_until(lambda: first.state == SessionState.CONNECTED)
        await manager.set_relays(["wss://b"])
        await wait_until(lambda: first.is_closed)

        assert (1, SessionState.CONNECTED) in seen
        assert (1, SessionState.DISCONNECTED) not in seen

        manager.remove_listener(listener)
        manager.remove_listener(listener)

    async def test_listener_errors_logged(self, manager):
        manager.add_listener(MagicMock(side_effect=RuntimeError("listener bug")))
        session = await manager.initialize(["wss://a"])
        await wait_until(lambda: session.state == SessionState.CONNECTED)

    async def test_close(self, reachable_factory):
        manager = ConnectionSessionManager(FAST, client_factory=reachable_factory)
        async with manager:
            session = await manager.initialize(["wss://a"])
        assert session.is_closed
        with pytest.raises(NotInitializedError):
            manager.current()
