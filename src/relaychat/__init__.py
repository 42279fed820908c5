r"""relaychat -- core of a Nostr chat client.

Derives deterministic thread identifiers from participant sets, persists
relay preferences and per-participant labels, and owns the single live
connection session to the configured relays.

Imports flow strictly downward through a **diamond DAG**:

```text
              services         Registry, annotations, session manager, threads
             /        \
          core        utils    Storage, logging, metrics | keys, nostr-sdk helpers
             \        /
              models           Pure frozen dataclasses and thread id derivation
```

``relaychat.exceptions`` has no imports and is shared by every layer.

Note:
    Top-level imports (``from relaychat import derive_thread_id``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("relaychat")

__all__ = [
    "AppConfig",
    "ConnectionSession",
    "ConnectionSessionManager",
    "Logger",
    "ParticipantAnnotationCache",
    "Pool",
    "Relay",
    "RelayEntry",
    "RelayRegistry",
    "SessionConfig",
    "SessionState",
    "Store",
    "ThreadAddressing",
    "ThreadId",
    "derive_thread_id",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Logger": ("relaychat.core", "Logger"),
    "Pool": ("relaychat.core", "Pool"),
    "Store": ("relaychat.core", "Store"),
    "Relay": ("relaychat.models", "Relay"),
    "RelayEntry": ("relaychat.models", "RelayEntry"),
    "SessionState": ("relaychat.models", "SessionState"),
    "ThreadId": ("relaychat.models", "ThreadId"),
    "derive_thread_id": ("relaychat.models", "derive_thread_id"),
    "AppConfig": ("relaychat.services", "AppConfig"),
    "ConnectionSession": ("relaychat.services", "ConnectionSession"),
    "ConnectionSessionManager": ("relaychat.services", "ConnectionSessionManager"),
    "ParticipantAnnotationCache": ("relaychat.services", "ParticipantAnnotationCache"),
    "RelayRegistry": ("relaychat.services", "RelayRegistry"),
    "SessionConfig": ("relaychat.services", "SessionConfig"),
    "ThreadAddressing": ("relaychat.services", "ThreadAddressing"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'relaychat' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
