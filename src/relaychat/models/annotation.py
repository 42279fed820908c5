"""Local, per-participant labels ("flares") keyed by public key.

Annotations are private to this client: they are never published and are
overwritten on every write (last write wins).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

from relaychat.exceptions import InvalidInputError

from ._validation import validate_str_no_null, validate_str_not_empty


class ParticipantAnnotationDbParams(NamedTuple):
    """Positional parameters for the ``pubkey_flares`` table, in column order."""

    pubkey: str
    flare: str


@dataclass(frozen=True, slots=True)
class ParticipantAnnotation:
    """A label attached to a participant's public key.

    Attributes:
        pubkey: Participant public key (opaque, non-empty).
        label: Free-form label; may be empty.

    Raises:
        InvalidInputError: If either field is not a string, contains null
            bytes, or the pubkey is empty.
    """

    pubkey: str
    label: str

    def __post_init__(self) -> None:
        try:
            validate_str_not_empty(self.pubkey, "pubkey")
            validate_str_no_null(self.label, "label")
        except (TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from None

    def to_db_params(self) -> ParticipantAnnotationDbParams:
        return ParticipantAnnotationDbParams(pubkey=self.pubkey, flare=self.label)

    @classmethod
    def from_db_params(cls, params: ParticipantAnnotationDbParams) -> ParticipantAnnotation:
        return cls(pubkey=params.pubkey, label=params.flare)
