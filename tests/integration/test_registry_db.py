"""Integration tests for RelayRegistry against a real PostgreSQL database."""

from __future__ import annotations

import asyncio

import pytest

from relaychat.exceptions import QueryError
from relaychat.models import RelayEntry
from relaychat.services.registry import RelayRegistry
from relaychat.services.session import eligible_relay_urls


pytestmark = pytest.mark.integration


@pytest.fixture
def registry(store):
    return RelayRegistry(store)


class TestSchema:
    async def test_ensure_schema_idempotent(self, store):
        await store.ensure_schema()
        tables = await store.fetch(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = 'public' ORDER BY table_name"
        )
        assert [row["table_name"] for row in tables] == ["pubkey_flares", "relays"]


class TestReplaceAll:
    async def test_empty_registry(self, registry):
        assert await registry.list() == []
        assert await registry.autoconnect_urls() == []

    async def test_list_order(self, registry):
        await registry.replace_all(["wss://b", "wss://a"], ["wss://c"])
        assert await registry.list() == [
            RelayEntry("wss://a", connect=True),
            RelayEntry("wss://b", connect=True),
            RelayEntry("wss://c", connect=False),
        ]
        assert await registry.autoconnect_urls() == ["wss://a", "wss://b"]

    async def test_replaces_previous_set(self, registry):
        await registry.replace_all(["wss://a", "wss://b"], [])
        await registry.replace_all(["wss://c"], ["wss://a"])
        assert await registry.list() == [RelayEntry("wss://c"), RelayEntry("wss://a", connect=False)]

    async def test_both_sets_stored_ignored(self, registry):
        await registry.replace_all(["wss://a"], ["wss://a"])
        assert await registry.list() == [RelayEntry("wss://a", connect=False)]

    async def test_invalid_urls_stored_but_not_eligible(self, registry):
        await registry.replace_all(["not a relay", "wss://a"], [])
        urls = await registry.autoconnect_urls()
        assert urls == ["not a relay", "wss://a"]
        assert eligible_relay_urls(urls) == ["wss://a"]

    async def test_failed_replace_keeps_previous_set(self, registry, store):
        await registry.replace_all(["wss://a"], [])
        with pytest.raises(QueryError):
            async with store.transaction() as conn:
                await conn.execute("DELETE FROM relays")
                await conn.execute("INSERT INTO relays (url, connect) VALUES ($1, NULL)", "wss://z")
        assert await registry.list() == [RelayEntry("wss://a")]

    async def test_concurrent_replace_never_mixes(self, registry):
        sets = [[f"wss://set{i}-{j}" for j in range(5)] for i in range(4)]
        await asyncio.gather(*(registry.replace_all(s, []) for s in sets))
        urls = await registry.autoconnect_urls()
        assert any(urls == sorted(s) for s in sets)

    async def test_reset(self, registry):
        await registry.replace_all(["wss://x"], ["wss://y"])
        await registry.reset(["wss://default"])
        assert await registry.list() == [RelayEntry("wss://default")]


class TestSingleWrites:
    async def test_add_upserts(self, registry):
        await registry.add("relay.example.com")
        await registry.add("wss://relay.example.com", connect=False)
        assert await registry.list() == [RelayEntry("wss://relay.example.com", connect=False)]

    async def test_set_connect_and_remove(self, registry):
        await registry.replace_all(["wss://a"], [])
        assert await registry.set_connect("wss://a", False) is True
        assert await registry.autoconnect_urls() == []
        assert await registry.set_connect("wss://missing", True) is False
        assert await registry.remove("wss://a") is True
        assert await registry.remove("wss://a") is False
