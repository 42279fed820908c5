"""
Deterministic, content-addressed identifiers for multi-party threads.

A thread is identified by the SHA-256 digest of its participant set: the
public keys are de-duplicated and sorted, the salt is appended as the final
element, and the list is joined with ``":"`` before hashing. The same set of
participants therefore always maps to the same identifier regardless of the
order in which the keys were supplied, and every client sharing the salt
agrees on it without coordination.

The identifier is used verbatim as the ``d`` tag of the thread's events.

See Also:
    [relaychat.services.threads.ThreadAddressing][]: Resolves the configured
        salt and normalizes participant keys before calling
        [derive_thread_id][relaychat.models.thread.derive_thread_id].
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass

from relaychat.exceptions import InvalidInputError

from .constants import DEFAULT_SALT


THREAD_ID_SEPARATOR = ":"


def _canonical_participants(pubkeys: Iterable[str]) -> list[str]:
    # A bare string is iterable and would be split into characters.
    if isinstance(pubkeys, (str, bytes)):
        raise InvalidInputError("pubkeys must be a collection of keys, not a single string")
    try:
        keys = set(pubkeys)
    except TypeError as e:
        raise InvalidInputError(f"pubkeys must be iterable: {e}") from None

    for key in keys:
        if not isinstance(key, str):
            raise InvalidInputError(f"pubkey must be a str, got {type(key).__name__}")
        if not key:
            raise InvalidInputError("pubkey must not be empty")
        if "\x00" in key:
            raise InvalidInputError("pubkey contains null bytes")
        if THREAD_ID_SEPARATOR in key:
            raise InvalidInputError(f"pubkey must not contain '{THREAD_ID_SEPARATOR}'")

    if not keys:
        raise InvalidInputError("cannot derive a thread id from an empty participant set")
    return sorted(keys)


def derive_thread_id(pubkeys: Iterable[str], salt: str = DEFAULT_SALT) -> str:
    """Derive the thread identifier for a set of participant public keys.

    Keys are treated as opaque strings; normalization (npub decoding, hex
    lowercasing) is the caller's responsibility.

    Args:
        pubkeys: Participant public keys. Order and duplicates are ignored.
        salt: Shared salt appended after the sorted keys.

    Returns:
        64-character lowercase hexadecimal SHA-256 digest.

    Raises:
        InvalidInputError: If the key set is empty, a key is not a
            non-empty string or contains the ``":"`` separator, or *salt*
            is not a string.

    Examples:
        ```python
        derive_thread_id(["bKey", "aKey"], "s") == derive_thread_id(["aKey", "bKey"], "s")
        # True
        ```
    """
    if not isinstance(salt, str):
        raise InvalidInputError(f"salt must be a str, got {type(salt).__name__}")
    if "\x00" in salt:
        raise InvalidInputError("salt contains null bytes")

    parts = _canonical_participants(pubkeys)
    parts.append(salt)
    payload = THREAD_ID_SEPARATOR.join(parts).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


@dataclass(frozen=True, slots=True)
class ThreadId:
    """Typed wrapper around a derived thread identifier.

    Attributes:
        value: 64-character lowercase hex digest.
        participants: Sorted, de-duplicated participant keys it was derived from.
        salt: Salt used during derivation.
    """

    value: str
    participants: tuple[str, ...]
    salt: str

    @classmethod
    def derive(cls, pubkeys: Iterable[str], salt: str = DEFAULT_SALT) -> ThreadId:
        """Derive a ``ThreadId`` and keep the canonical participant list with it."""
        # Materialize once so generators are not consumed twice.
        if not isinstance(pubkeys, (str, bytes)):
            try:
                pubkeys = list(pubkeys)
            except TypeError as e:
                raise InvalidInputError(f"pubkeys must be iterable: {e}") from None
        value = derive_thread_id(pubkeys, salt)
        return cls(value=value, participants=tuple(sorted(set(pubkeys))), salt=salt)

    def __str__(self) -> str:
        return self.value
