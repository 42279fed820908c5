"""Services layer: relay preferences, participant annotations, the connection
session and thread addressing.

Sits at the top of the diamond DAG and depends on
[relaychat.core][relaychat.core], [relaychat.utils][relaychat.utils] and
[relaychat.models][relaychat.models].

Attributes:
    RelayRegistry: Persisted relay set with connect/ignore preferences.
    ParticipantAnnotationCache: Persisted per-pubkey labels.
    ConnectionSession: One ``nostr_sdk.Client`` bound to a fixed relay set.
    ConnectionSessionManager: Owns and swaps the current session.
    ThreadAddressing: Thread identifiers, filters and tags with the
        configured salt.
    AppConfig: Top-level configuration model.
"""

from .annotations import ParticipantAnnotationCache
from .configs import AppConfig, SessionConfig, StoreSettings, ThreadConfig
from .registry import RelayRegistry, build_relay_entries
from .session import ConnectionSession, ConnectionSessionManager, eligible_relay_urls
from .threads import ThreadAddressing


__all__ = [
    "AppConfig",
    "ConnectionSession",
    "ConnectionSessionManager",
    "ParticipantAnnotationCache",
    "RelayRegistry",
    "SessionConfig",
    "StoreSettings",
    "ThreadAddressing",
    "ThreadConfig",
    "build_relay_entries",
    "eligible_relay_urls",
]
