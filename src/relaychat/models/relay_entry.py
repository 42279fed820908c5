"""Persisted relay preference rows.

A [RelayEntry][relaychat.models.relay_entry.RelayEntry] is one row of the
``relays`` table: a URL and whether the client should connect to it. URLs
are stored verbatim; eligibility for connecting is decided later, when the
session's relay set is built.

See Also:
    [relaychat.services.registry.RelayRegistry][]: Reads and writes these rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

from relaychat.exceptions import InvalidInputError

from ._validation import validate_bool, validate_str_no_null


class RelayEntryDbParams(NamedTuple):
    """Positional parameters for the ``relays`` table, in column order."""

    url: str
    connect: int


@dataclass(frozen=True, slots=True)
class RelayEntry:
    """A relay URL with its connect preference.

    Attributes:
        url: Relay URL as persisted.
        connect: ``True`` to auto-connect, ``False`` for an explicitly
            ignored relay.
    """

    url: str
    connect: bool = True

    def __post_init__(self) -> None:
        try:
            validate_str_no_null(self.url, "url")
            validate_bool(self.connect, "connect")
        except (TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from None

    @property
    def ignored(self) -> bool:
        return not self.connect

    def to_db_params(self) -> RelayEntryDbParams:
        return RelayEntryDbParams(url=self.url, connect=int(self.connect))

    @classmethod
    def from_db_params(cls, params: RelayEntryDbParams) -> RelayEntry:
        """Rebuild an entry from a row; any non-zero ``connect`` means connect."""
        return cls(url=params.url, connect=bool(params.connect))
