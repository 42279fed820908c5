"""Persisted relay preferences.

The [RelayRegistry][relaychat.services.registry.RelayRegistry] owns the
``relays`` table: which relays the client auto-connects to and which ones
the user explicitly ignores. It stores URLs as given; whether a URL is
usable for a connection is decided when the session's relay set is built
([eligible_relay_urls][relaychat.services.session.eligible_relay_urls]).

Writes are serialized by an ``asyncio.Lock`` and
[replace_all()][relaychat.services.registry.RelayRegistry.replace_all] runs in
a single transaction, so readers see either the previous relay set or the
new one, never a mix. Storage failures propagate to the caller unretried.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING

from relaychat.core.logger import Logger
from relaychat.exceptions import InvalidInputError
from relaychat.models.constants import DEFAULT_RELAYS
from relaychat.models.relay import Relay
from relaychat.models.relay_entry import RelayEntry

from .queries import (
    delete_relay_entry,
    fetch_autoconnect_urls,
    fetch_relay_entries,
    replace_relay_entries_in,
    update_relay_connect,
    upsert_relay_entry,
)


if TYPE_CHECKING:
    from relaychat.core.store import Store


def _collect_urls(urls: Iterable[str], name: str) -> list[str]:
    if isinstance(urls, (str, bytes)):
        raise InvalidInputError(f"{name} must be a collection of URLs, not a single string")
    collected: list[str] = []
    for url in urls:
        if not isinstance(url, str):
            raise InvalidInputError(f"{name} entries must be str, got {type(url).__name__}")
        if "\x00" in url:
            raise InvalidInputError(f"{name} entry contains null bytes")
        collected.append(url)
    return collected


def build_relay_entries(autoconnect: Iterable[str], blacklist: Iterable[str]) -> list[RelayEntry]:
    """Merge the two URL sets into one entry per URL.

    A URL present in both sets is stored once, as ignored. Order follows
    first appearance, autoconnect URLs first.
    """
    connect_urls = _collect_urls(autoconnect, "autoconnect")
    ignored_urls = _collect_urls(blacklist, "blacklist")
    ignored = set(ignored_urls)

    entries: dict[str, RelayEntry] = {}
    for url in connect_urls:
        entries.setdefault(url, RelayEntry(url, connect=url not in ignored))
    for url in ignored_urls:
        entries.setdefault(url, RelayEntry(url, connect=False))
    return list(entries.values())


class RelayRegistry:
    """Relay preferences backed by the ``relays`` table.

    Examples:
        ```python
        registry = RelayRegistry(store)
        await registry.replace_all(["wss://a.example"], ["wss://spam.example"])
        await registry.list()
        # [RelayEntry(url='wss://a.example', connect=True),
        #  RelayEntry(url='wss://spam.example', connect=False)]
        ```
    """

    def __init__(self, store: Store) -> None:
        self._store = store
        self._write_lock = asyncio.Lock()
        self._logger = Logger("registry")

    async def list(self) -> list[RelayEntry]:
        """Return every persisted relay, connect-enabled first, then by URL."""
        return await fetch_relay_entries(self._store)

    async def autoconnect_urls(self) -> list[str]:
        """Return the URLs marked for auto-connect, sorted."""
        return await fetch_autoconnect_urls(self._store)

    async def replace_all(self, autoconnect: Iterable[str], blacklist: Iterable[str]) -> list[RelayEntry]:
        """Atomically replace the whole relay set.

        Deletes every row and inserts the autoconnect URLs with
        ``connect=True`` and the blacklist URLs with ``connect=False`` in one
        transaction. Concurrent calls run one after the other.

        Returns:
            The entries written.

        Raises:
            InvalidInputError: If an argument is a bare string or holds a
                non-string or null-byte URL. Nothing is written.
            PersistenceError: If the transaction fails; the previous relay
                set is left intact.
        """
        entries = build_relay_entries(autoconnect, blacklist)
        timeout = self._store.config.timeouts.batch

        async with self._write_lock:
            async with self._store.transaction() as conn:
                await replace_relay_entries_in(conn, entries, timeout=timeout)

        self._logger.info(
            "relays_replaced",
            total=len(entries),
            connect=sum(1 for e in entries if e.connect),
            ignored=sum(1 for e in entries if not e.connect),
        )
        return entries

    async def add(self, url: str, *, connect: bool = True) -> RelayEntry:
        """Validate and store a single relay, overwriting its previous preference.

        A bare host gets a ``wss://`` prefix.

        Raises:
            InvalidInputError: If the URL is not a valid ws/wss relay URL.
        """
        relay = Relay.parse(url)
        entry = RelayEntry(relay.url, connect=connect)
        async with self._write_lock:
            await upsert_relay_entry(self._store, entry)
        self._logger.info("relay_added", url=entry.url, connect=entry.connect)
        return entry

    async def remove(self, url: str) -> bool:
        """Delete a relay row. Returns whether a row existed."""
        _collect_urls([url], "url")
        async with self._write_lock:
            removed = await delete_relay_entry(self._store, url)
        self._logger.info("relay_removed", url=url, removed=removed)
        return removed

    async def set_connect(self, url: str, connect: bool) -> bool:
        """Toggle a relay between auto-connect and ignored.

        Returns:
            ``False`` when the URL is not in the registry.
        """
        _collect_urls([url], "url")
        if not isinstance(connect, bool):
            raise InvalidInputError(f"connect must be a bool, got {type(connect).__name__}")
        async with self._write_lock:
            updated = await update_relay_connect(self._store, url, connect)
        self._logger.info("relay_toggled", url=url, connect=connect, updated=updated)
        return updated

    async def reset(self, defaults: Iterable[str] = DEFAULT_RELAYS) -> list[RelayEntry]:
        """Replace the relay set with *defaults*, all marked for auto-connect."""
        return await self.replace_all(defaults, [])
