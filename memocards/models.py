"""
Domain data classes shared by the scheduler, store, and session controller.

These are plain values. Persistence rows live in memocards.db.models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum

from .clock import to_utc
from .errors import InvalidInputError


class Grade(IntEnum):
    """Ordinal review grade. FAIL is the only failing grade."""

    FAIL = 0
    HARD = 1
    GOOD = 2
    EASY = 3

    @property
    def is_passing(self) -> bool:
        return self is not Grade.FAIL

    @classmethod
    def parse(cls, value: Grade | int | str) -> Grade:
        """
        Coerce user input into a Grade.

        Accepts a Grade, an int 0-3, a digit string, or a case-insensitive
        grade name ("fail", "Hard", ...).

        Raises:
            InvalidInputError: if the value is not on the scale
        """
        if isinstance(value, Grade):
            return value
        if isinstance(value, bool):
            raise InvalidInputError(f"Invalid grade: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidInputError(f"Grade out of range 0-3: {value}") from None
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls.parse(int(text))
            try:
                return cls[text.upper()]
            except KeyError:
                raise InvalidInputError(f"Unknown grade: {value!r}") from None
        raise InvalidInputError(f"Invalid grade: {value!r}")


@dataclass(frozen=True)
class SchedulingState:
    """Spaced-repetition state owned by exactly one card."""

    ease_factor: float
    interval_days: int
    repetitions: int
    due_at: datetime
    lapses: int = 0
    last_reviewed_at: datetime | None = None

    def is_due(self, as_of: datetime) -> bool:
        return self.due_at <= to_utc(as_of)


@dataclass
class Card:
    """A memorization card with its current scheduling state."""

    id: int
    front: str
    back: str
    created_at: datetime
    updated_at: datetime
    state: SchedulingState
    version: int = 1


@dataclass(frozen=True)
class ReviewLogEntry:
    """One immutable line of the review audit trail."""

    card_id: int
    reviewed_at: datetime
    grade: Grade
    resulting_interval: int
    id: int | None = None


@dataclass
class Deck:
    """A named membership set of card ids. Decks never own cards."""

    id: str
    name: str
    created_at: datetime
    card_ids: tuple[int, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.card_ids)


@dataclass(frozen=True)
class Attachment:
    """
    A file linked to one or more cards.

    Files are stored once per distinct content; `ref_count` is the number of
    cards linking to it and the file is dropped when it reaches zero.
    """

    id: str
    ext: str
    data: bytes
    ref_count: int = 1

    @property
    def filename(self) -> str:
        return f"{self.id}.{self.ext}" if self.ext else self.id


@dataclass(frozen=True)
class CardDraft:
    """A card to be inserted in bulk, e.g. by a deck import."""

    front: str
    back: str = ""
    state: SchedulingState | None = None
    # (original file name, content) pairs
    attachments: tuple[tuple[str, bytes], ...] = ()
