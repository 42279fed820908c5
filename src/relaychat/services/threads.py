"""Thread addressing for the local user.

[ThreadAddressing][relaychat.services.threads.ThreadAddressing] turns the
participants a user picks (``npub1`` or hex keys) into the canonical thread
identifier, and into the ``#d`` filter and ``d`` tag used to read and file
the thread's events on relays.
"""

from __future__ import annotations

from collections.abc import Iterable

from nostr_sdk import Filter, Tag

from relaychat.exceptions import InvalidInputError
from relaychat.models.constants import EventKind
from relaychat.models.thread import ThreadId
from relaychat.utils.keys import normalize_public_key
from relaychat.utils.protocol import thread_filter, thread_tag

from .configs import ThreadConfig


class ThreadAddressing:
    """Derive thread identifiers with the configured salt.

    Args:
        config: Salt and whether to add the local user to every thread.
        self_pubkey: The local user's public key (``npub1`` or hex), added
            to every participant set when ``config.include_self`` is set.

    Examples:
        ```python
        threads = ThreadAddressing(ThreadConfig(), self_pubkey=my_npub)
        thread = threads.thread_id([alice_npub, bob_hex])
        events = await session.fetch_events(threads.filter([alice_npub, bob_hex]))
        ```
    """

    def __init__(self, config: ThreadConfig | None = None, self_pubkey: str | None = None) -> None:
        self._config = config or ThreadConfig()
        self._self_pubkey = normalize_public_key(self_pubkey) if self_pubkey is not None else None

    @property
    def salt(self) -> str:
        return self._config.salt

    @property
    def self_pubkey(self) -> str | None:
        return self._self_pubkey

    def participants(self, pubkeys: Iterable[str]) -> list[str]:
        """Normalize *pubkeys* to hex, adding the local user when configured.

        Raises:
            InvalidInputError: If *pubkeys* is a single string or a key is invalid.
        """
        if isinstance(pubkeys, (str, bytes)):
            raise InvalidInputError("pubkeys must be a collection of keys, not a single string")
        keys = [normalize_public_key(pk) for pk in pubkeys]
        if self._config.include_self and self._self_pubkey is not None:
            keys.append(self._self_pubkey)
        return keys

    def thread_id(self, pubkeys: Iterable[str]) -> ThreadId:
        return ThreadId.derive(self.participants(pubkeys), self._config.salt)

    def filter(
        self,
        pubkeys: Iterable[str],
        kind: int = EventKind.GIFT_WRAP,
        *,
        limit: int | None = None,
    ) -> Filter:
        """``#d`` filter selecting the thread's events of *kind*."""
        return thread_filter(str(self.thread_id(pubkeys)), kind, limit=limit)

    def tag(self, pubkeys: Iterable[str]) -> Tag:
        """``d`` tag filing a new event under the thread."""
        return thread_tag(str(self.thread_id(pubkeys)))
