"""Local labels ("flares") attached to participants' public keys.

[ParticipantAnnotationCache][relaychat.services.annotations.ParticipantAnnotationCache]
is a thin, validated map over the ``pubkey_flares`` table. Writes are
last-write-wins with no merging and are serialized by an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from relaychat.core.logger import Logger
from relaychat.exceptions import InvalidInputError
from relaychat.models.annotation import ParticipantAnnotation

from .queries import (
    delete_all_annotations,
    delete_annotation,
    fetch_annotation,
    fetch_annotations,
    upsert_annotation,
)


if TYPE_CHECKING:
    from relaychat.core.store import Store


def _check_pubkey(pubkey: str) -> None:
    if not isinstance(pubkey, str):
        raise InvalidInputError(f"pubkey must be a str, got {type(pubkey).__name__}")
    if not pubkey or "\x00" in pubkey:
        raise InvalidInputError("pubkey must be a non-empty string without null bytes")


class ParticipantAnnotationCache:
    """Per-participant labels backed by the ``pubkey_flares`` table."""

    def __init__(self, store: Store) -> None:
        self._store = store
        self._write_lock = asyncio.Lock()
        self._logger = Logger("annotations")

    async def get_all(self) -> dict[str, str]:
        """Return every annotation as ``{pubkey: label}``."""
        return {a.pubkey: a.label for a in await fetch_annotations(self._store)}

    async def get(self, pubkey: str) -> str | None:
        _check_pubkey(pubkey)
        return await fetch_annotation(self._store, pubkey)

    async def set(self, pubkey: str, label: str) -> ParticipantAnnotation:
        """Store *label* for *pubkey*, replacing any previous label."""
        annotation = ParticipantAnnotation(pubkey, label)
        async with self._write_lock:
            await upsert_annotation(self._store, annotation)
        self._logger.debug("annotation_set", pubkey=pubkey)
        return annotation

    async def delete(self, pubkey: str) -> bool:
        """Remove the label for *pubkey*. Returns whether one existed."""
        _check_pubkey(pubkey)
        async with self._write_lock:
            removed = await delete_annotation(self._store, pubkey)
        self._logger.debug("annotation_deleted", pubkey=pubkey, removed=removed)
        return removed

    async def clear(self) -> int:
        """Remove every label. Returns the number of rows removed."""
        async with self._write_lock:
            removed = await delete_all_annotations(self._store)
        self._logger.info("annotations_cleared", removed=removed)
        return removed
