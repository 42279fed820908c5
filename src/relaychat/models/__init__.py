"""Pure frozen dataclasses and functions with zero I/O.

The models layer is the foundation of the diamond DAG. It depends only on
the standard library, ``rfc3986`` for URL parsing, and the dependency-free
[relaychat.exceptions][] module. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``
so invalid instances never escape the constructor.

Attributes:
    derive_thread_id: SHA-256 thread identifier over a participant set.
    ThreadId: Typed wrapper around a derived thread identifier.
    Relay: Validated ws/wss relay URL with
        [NetworkType][relaychat.models.constants.NetworkType] detection.
    RelayEntry: Persisted relay URL plus connect/ignore preference.
    ParticipantAnnotation: Local label attached to a public key.
    SessionState: Lifecycle states of a connection session.

See Also:
    [relaychat.models.thread][]: Thread identifier derivation.
    [relaychat.models.relay][]: Relay URL validation.
    [relaychat.models.constants][]: Shared constants and enumerations.
"""

from .annotation import ParticipantAnnotation, ParticipantAnnotationDbParams
from .constants import (
    DEFAULT_RELAYS,
    DEFAULT_SALT,
    ENV_THREAD_SALT,
    EventKind,
    NetworkType,
    SessionState,
)
from .relay import Relay, normalize_relay_input
from .relay_entry import RelayEntry, RelayEntryDbParams
from .thread import ThreadId, derive_thread_id


__all__ = [
    "DEFAULT_RELAYS",
    "DEFAULT_SALT",
    "ENV_THREAD_SALT",
    "EventKind",
    "NetworkType",
    "ParticipantAnnotation",
    "ParticipantAnnotationDbParams",
    "Relay",
    "RelayEntry",
    "RelayEntryDbParams",
    "SessionState",
    "ThreadId",
    "derive_thread_id",
    "normalize_relay_input",
]
