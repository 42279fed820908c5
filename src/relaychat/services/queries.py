"""SQL for the ``relays`` and ``pubkey_flares`` tables.

Every statement the services run lives here. Each function takes a
[Store][relaychat.core.store.Store] (or, for the ``*_in`` variants, a
connection already inside a transaction) and returns typed results.

- **Relay queries**: ``fetch_relay_entries``, ``fetch_autoconnect_urls``,
  ``upsert_relay_entry``, ``delete_relay_entry``, ``update_relay_connect``,
  ``replace_relay_entries_in``
- **Annotation queries**: ``fetch_annotations``, ``fetch_annotation``,
  ``upsert_annotation``, ``delete_annotation``, ``delete_all_annotations``

Warning:
    Errors are not caught here: they reach the caller as
    [PersistenceError][relaychat.exceptions.PersistenceError] subclasses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relaychat.models.annotation import ParticipantAnnotation, ParticipantAnnotationDbParams
from relaychat.models.relay_entry import RelayEntry, RelayEntryDbParams


if TYPE_CHECKING:
    from collections.abc import Sequence

    import asyncpg

    from relaychat.core.store import Store


def _affected_rows(status: str) -> int:
    """Row count from a command status tag such as ``"DELETE 3"``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


# =============================================================================
# Relay queries
# =============================================================================


async def fetch_relay_entries(store: Store) -> list[RelayEntry]:
    """All persisted relays, connect-enabled first, then by URL."""
    rows = await store.fetch("SELECT url, connect FROM relays ORDER BY connect DESC, url ASC")
    return [RelayEntry.from_db_params(RelayEntryDbParams(row["url"], row["connect"])) for row in rows]


async def fetch_autoconnect_urls(store: Store) -> list[str]:
    rows = await store.fetch("SELECT url FROM relays WHERE connect <> 0 ORDER BY url ASC")
    return [row["url"] for row in rows]


async def upsert_relay_entry(store: Store, entry: RelayEntry) -> None:
    await store.execute(
        """
        INSERT INTO relays (url, connect) VALUES ($1, $2)
        ON CONFLICT (url) DO UPDATE SET connect = EXCLUDED.connect
        """,
        *entry.to_db_params(),
    )


async def delete_relay_entry(store: Store, url: str) -> bool:
    status = await store.execute("DELETE FROM relays WHERE url = $1", url)
    return _affected_rows(status) > 0


async def update_relay_connect(store: Store, url: str, connect: bool) -> bool:
    status = await store.execute(
        "UPDATE relays SET connect = $2 WHERE url = $1", url, int(connect)
    )
    return _affected_rows(status) > 0


async def replace_relay_entries_in(
    conn: asyncpg.Connection[asyncpg.Record],
    entries: Sequence[RelayEntry],
    *,
    timeout: float | None = None,  # noqa: ASYNC109
) -> None:
    """Delete every relay row and insert *entries*, on a transactional connection."""
    await conn.execute("DELETE FROM relays", timeout=timeout)
    if entries:
        await conn.executemany(
            "INSERT INTO relays (url, connect) VALUES ($1, $2)",
            [tuple(entry.to_db_params()) for entry in entries],
            timeout=timeout,
        )


# =============================================================================
# Annotation queries
# =============================================================================


async def fetch_annotations(store: Store) -> list[ParticipantAnnotation]:
    rows = await store.fetch("SELECT pubkey, flare FROM pubkey_flares ORDER BY pubkey ASC")
    return [
        ParticipantAnnotation.from_db_params(ParticipantAnnotationDbParams(row["pubkey"], row["flare"]))
        for row in rows
    ]


async def fetch_annotation(store: Store, pubkey: str) -> str | None:
    return await store.fetchval("SELECT flare FROM pubkey_flares WHERE pubkey = $1", pubkey)


async def upsert_annotation(store: Store, annotation: ParticipantAnnotation) -> None:
    await store.execute(
        """
        INSERT INTO pubkey_flares (pubkey, flare) VALUES ($1, $2)
        ON CONFLICT (pubkey) DO UPDATE SET flare = EXCLUDED.flare
        """,
        *annotation.to_db_params(),
    )


async def delete_annotation(store: Store, pubkey: str) -> bool:
    status = await store.execute("DELETE FROM pubkey_flares WHERE pubkey = $1", pubkey)
    return _affected_rows(status) > 0


async def delete_all_annotations(store: Store) -> int:
    status = await store.execute("DELETE FROM pubkey_flares")
    return _affected_rows(status)
