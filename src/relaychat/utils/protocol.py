"""Nostr client construction and thread addressing helpers over nostr-sdk.

Attributes:
    create_client: Client factory with optional signer and SOCKS5 proxy.
    thread_filter: ``Filter`` selecting a thread's events by ``#d`` tag.
    thread_tag: ``d`` tag carrying a thread identifier on published events.
    client_tag: ``client`` tag naming this application on published events.
    verify_event: Signature check that never raises.

Note:
    When a proxy is configured, overlay relays (Tor, I2P, Lokinet) are
    reached through it with ``ConnectionTarget.ONION`` while clearnet relays
    keep connecting directly.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from ipaddress import ip_address
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from nostr_sdk import (
    Client,
    ClientBuilder,
    ClientOptions,
    Connection,
    ConnectionMode,
    ConnectionTarget,
    Filter,
    Kind,
    NostrSigner,
    Tag,
)

from relaychat.models.constants import EventKind


if TYPE_CHECKING:
    from nostr_sdk import Event, Keys


logger = logging.getLogger(__name__)

DEFAULT_PROXY_PORT = 9050


async def _resolve_proxy(proxy_url: str) -> tuple[str, int]:
    parsed = urlparse(proxy_url)
    host = (parsed.hostname or "127.0.0.1").strip("[]")
    port = parsed.port or DEFAULT_PROXY_PORT

    # nostr-sdk requires an IP address, not a hostname
    try:
        ip_address(host)
    except ValueError:
        host = await asyncio.to_thread(socket.gethostbyname, host)
    return host, port


async def create_client(keys: Keys | None = None, proxy_url: str | None = None) -> Client:
    """Build a ``nostr_sdk.Client``; relays are added by the caller.

    Args:
        keys: Signing keys (``None`` = read-only client).
        proxy_url: SOCKS5 proxy used for overlay relays,
            e.g. ``socks5://127.0.0.1:9050``.
    """
    builder = ClientBuilder()

    if keys is not None:
        builder = builder.signer(NostrSigner.keys(keys))

    if proxy_url is not None:
        host, port = await _resolve_proxy(proxy_url)
        logger.debug("proxy_configured host=%s port=%s", host, port)
        conn = Connection().mode(ConnectionMode.PROXY(host, port)).target(ConnectionTarget.ONION)
        builder = builder.opts(ClientOptions().connection(conn))

    return builder.build()


def thread_filter(
    thread_id: str,
    kind: int = EventKind.GIFT_WRAP,
    *,
    limit: int | None = None,
) -> Filter:
    """Return a filter for events of *kind* whose ``d`` tag is *thread_id*."""
    event_filter = Filter().kind(Kind(int(kind))).identifier(thread_id)
    if limit is not None:
        event_filter = event_filter.limit(limit)
    return event_filter


def thread_tag(thread_id: str) -> Tag:
    """Return the ``["d", thread_id]`` tag that files an event under a thread."""
    return Tag.identifier(thread_id)


def client_tag(name: str) -> Tag:
    """Return the ``["client", name]`` tag identifying this application."""
    return Tag.parse(["client", name])


def verify_event(event: Event) -> bool:
    """Return whether *event* carries a valid id and signature."""
    try:
        return bool(event.verify())
    except (ValueError, TypeError, OverflowError):
        return False
