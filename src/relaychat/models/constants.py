"""Shared constants for the models layer.

Defines enumerations and defaults used across the models, utils, and
services layers. Placing them here avoids circular dependencies between
packages.

See Also:
    [relaychat.models.relay][]: Uses [NetworkType][relaychat.models.constants.NetworkType]
        to classify relay URLs during construction.
    [relaychat.models.thread][]: Uses ``DEFAULT_SALT`` when no salt is given.
    [relaychat.services.session][]: Publishes
        [SessionState][relaychat.models.constants.SessionState] transitions.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


DEFAULT_SALT = "nostr-tools"
"""Salt appended to the participant list when deriving thread identifiers."""

ENV_THREAD_SALT = "RELAYCHAT_THREAD_SALT"
"""Environment variable overriding ``DEFAULT_SALT``."""

DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.nostr.band",
)
"""Relays used when the registry is reset or the configuration names none."""


class NetworkType(StrEnum):
    """Network type enum for relay classification.

    Each relay URL is classified into exactly one network type during
    [Relay][relaychat.models.relay.Relay] construction. Overlay networks
    require a SOCKS5 proxy to be reachable.

    Attributes:
        CLEARNET: Public internet or local host.
        TOR: Tor hidden service identified by a ``.onion`` hostname.
        I2P: I2P eepsite identified by a ``.i2p`` hostname.
        LOKI: Lokinet service identified by a ``.loki`` hostname.
    """

    CLEARNET = "clearnet"
    TOR = "tor"
    I2P = "i2p"
    LOKI = "loki"


class SessionState(StrEnum):
    """Lifecycle state of a [ConnectionSession][relaychat.services.session.ConnectionSession].

    ```text
    disconnected -> connecting -> connected <-> reconnecting
                         |            ^
                         v            |
                      degraded -------+
    ```

    Any state moves to ``DISCONNECTED`` on explicit shutdown.

    Attributes:
        DISCONNECTED: Not started, or closed.
        CONNECTING: Connection attempts in flight, none succeeded yet.
        CONNECTED: At least one relay connected.
        RECONNECTING: Was connected, every relay dropped, the client is
            retrying in the background.
        DEGRADED: The connect timeout elapsed with zero connected relays,
            or the session was built with zero usable relays. The session
            stays usable and may recover.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"


class EventKind(IntEnum):
    """Nostr event kinds used by the chat client.

    Attributes:
        SET_METADATA: Kind 0 -- user profile metadata (NIP-01).
        PRIVATE_DIRECT_MESSAGE: Kind 14 -- NIP-17 chat message (sealed).
        GIFT_WRAP: Kind 1059 -- NIP-59 gift wrap carrying thread messages,
            addressed by the thread identifier in its ``d`` tag.
    """

    SET_METADATA = 0
    PRIVATE_DIRECT_MESSAGE = 14
    GIFT_WRAP = 1059
