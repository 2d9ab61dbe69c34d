"""
Deck Manager.

Thin layer over CardStore membership operations. Decks only group card ids;
creating, grading, and deleting cards happens elsewhere.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from .clock import to_utc
from .errors import InvalidInputError, NotFoundError
from .models import Deck
from .state_store import CardStore

# Shortest id prefix accepted by resolve()
MIN_PREFIX_LENGTH = 4


@dataclass
class DeckSummary:
    """Card counts for one deck."""

    deck: Deck
    total: int
    due: int


class DeckManager:
    """Named groupings of cards, looked up by id, id prefix, or name."""

    def __init__(self, store: CardStore):
        self.store = store

    def create(self, name: str) -> Deck:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError("Deck name must be a non-empty string")
        deck_id = self.store.create_deck(name)
        return self.store.get_deck(deck_id)

    def get(self, deck_id: str) -> Deck:
        return self.store.get_deck(deck_id)

    def list_all(self) -> list[Deck]:
        return self.store.list_decks()

    def resolve(self, ref: str) -> Deck:
        """
        Find a deck from user input.

        Tries an exact id, then a unique id prefix, then a unique
        case-insensitive name.

        Raises:
            NotFoundError: nothing matches
            InvalidInputError: more than one deck matches
        """
        ref = (ref or "").strip()
        if not ref:
            raise InvalidInputError("Deck reference must not be empty")

        decks = self.store.list_decks()
        for deck in decks:
            if deck.id == ref:
                return deck

        candidates: list[Deck] = []
        if len(ref) >= MIN_PREFIX_LENGTH:
            candidates = [d for d in decks if d.id.startswith(ref.lower())]
        if not candidates:
            candidates = [d for d in decks if d.name.lower() == ref.lower()]

        if not candidates:
            raise NotFoundError("deck", ref)
        if len(candidates) > 1:
            ids = ", ".join(d.id[:8] for d in candidates)
            raise InvalidInputError(f"'{ref}' matches several decks ({ids}); use an id")
        return candidates[0]

    def add_cards(self, deck_id: str, card_ids: Iterable[int]) -> int:
        """
        Add cards to a deck, skipping existing members.

        Returns:
            Number of cards newly added
        """
        added = sum(1 for card_id in card_ids if self.store.add_to_deck(deck_id, card_id))
        logger.info(f"Added {added} cards to deck {deck_id}")
        return added

    def remove_card(self, deck_id: str, card_id: int) -> bool:
        return self.store.remove_from_deck(deck_id, card_id)

    def rename(self, deck_id: str, name: str) -> Deck:
        self.store.rename_deck(deck_id, name)
        return self.store.get_deck(deck_id)

    def delete(self, deck_id: str) -> None:
        self.store.delete_deck(deck_id)

    def summaries(self, as_of: datetime | None = None) -> list[DeckSummary]:
        """Total and due counts for every deck, ordered like list_decks()."""
        as_of = to_utc(as_of) if as_of else self.store.clock.now()
        return [
            DeckSummary(
                deck=deck,
                total=len(deck),
                due=self.store.count_due(deck_id=deck.id, as_of=as_of),
            )
            for deck in self.store.list_decks()
        ]
