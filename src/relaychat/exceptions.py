"""relaychat exception hierarchy.

Provides typed exceptions for all error categories so callers can tell
bad input from persistence failures and connectivity problems, and so
``CancelledError`` is never swallowed by a broad ``except``.

This module has no imports and sits outside the layered package graph:
models, core, utils, and services all raise from it.

Exception hierarchy:

```text
RelayChatError (base -- never raised directly)
├── ConfigurationError       -- config validation, missing keys, bad YAML
├── InvalidInputError        -- empty participant set, malformed relay URL
├── NotInitializedError      -- session requested before initialize()
├── PersistenceError         -- storage failures, surfaced to the caller
│   ├── ConnectionPoolError  -- transient: pool exhausted, network blip
│   └── QueryError           -- permanent: bad SQL, constraint violation
├── ConnectivityError        -- relay/session connectivity failures
│   ├── RelayTimeoutError    -- client not ready before the deadline
│   └── SessionClosedError   -- operation on a closed session
└── PublishingError          -- event broadcast failures
```

Note:
    A session with zero connected relays is *not* an error. It is reported
    through [SessionState.DEGRADED][relaychat.models.constants.SessionState]
    because partial relay availability is a normal operating condition.
"""

from __future__ import annotations


class RelayChatError(Exception):
    """Base exception for all relaychat errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration and input
# ---------------------------------------------------------------------------


class ConfigurationError(RelayChatError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


class InvalidInputError(RelayChatError, ValueError):
    """Caller passed a value the operation cannot accept.

    Raised synchronously and never masked as a default value. Subclasses
    ``ValueError`` so generic validation handlers still catch it.
    """


class NotInitializedError(RelayChatError):
    """The connection session was requested before it was initialized."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class PersistenceError(RelayChatError):
    """Base for all storage errors.

    Propagated to the immediate caller; the registry and annotation cache
    never retry on their own.
    """


class ConnectionPoolError(PersistenceError):
    """Transient storage error: pool not connected, exhausted, or unreachable.

    Callers may retry after a backoff.
    """


class QueryError(PersistenceError):
    """Permanent storage error: bad SQL, constraint violation, data integrity.

    Callers should NOT retry -- the query itself is wrong.
    """


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(RelayChatError):
    """Base for relay and session connectivity errors."""


class RelayTimeoutError(ConnectivityError):
    """The session's client did not become ready before the deadline."""


class SessionClosedError(ConnectivityError):
    """An operation was attempted on a session that has been closed."""


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class PublishingError(RelayChatError):
    """Failed to broadcast a Nostr event to the session's relays."""
