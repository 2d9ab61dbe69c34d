"""
FlashcardEngine - front-end operations over one card store.

Wires a CardStore, an SM2Scheduler and a Clock together so front ends
(the CLI, tests, embedding applications) never touch the scheduler or the
store's versioning protocol directly.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from loguru import logger

from .clock import Clock, SystemClock, to_utc
from .config import Settings, get_settings
from .decks import DeckManager
from .errors import InvalidInputError, NotFoundError
from .models import Attachment, Card, Grade, SchedulingState
from .scheduler import SchedulerConfig, SM2Scheduler
from .session import ReviewSession, commit_review
from .state_store import CardStore


class FlashcardEngine:
    """
    Facade for creating, reviewing and organizing cards.

    Usage:
        engine = FlashcardEngine.from_settings()
        card_id = engine.create_card("bonjour", "hello")
        engine.grade_card(card_id, Grade.GOOD)
        engine.close()
    """

    def __init__(
        self,
        store: CardStore,
        scheduler: SM2Scheduler | None = None,
        clock: Clock | None = None,
        *,
        session_limit: int = 50,
    ):
        self.store = store
        self.scheduler = scheduler or SM2Scheduler()
        self.clock = clock or store.clock
        self.session_limit = session_limit
        self.decks = DeckManager(store)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
    ) -> FlashcardEngine:
        """Build an engine from environment configuration."""
        settings = settings or get_settings()
        clock = clock or SystemClock()
        config = SchedulerConfig.from_settings(settings)
        store = CardStore(
            settings.database_url,
            clock=clock,
            initial_ease=config.initial_ease,
            echo=settings.echo_sql,
        )
        return cls(store, SM2Scheduler(config), clock, session_limit=settings.session_limit)

    # =========================================================================
    # Cards
    # =========================================================================

    def create_card(self, front: str, back: str = "", *, deck_id: str | None = None) -> int:
        """Create a card, optionally inside a deck. An unknown deck writes nothing."""
        return self.store.create_card(front, back, deck_id=deck_id)

    def get_card(self, card_id: int) -> Card:
        return self.store.get_card(card_id)

    def edit_card(self, card_id: int, *, front: str | None = None, back: str | None = None) -> Card:
        return self.store.edit_card(card_id, front=front, back=back)

    def delete_card(self, card_id: int, *, purge_history: bool = False) -> None:
        self.store.delete_card(card_id, purge_history=purge_history)

    def attach_file(self, card_id: int, path: str | Path) -> Attachment:
        """Attach the file at path to a card."""
        path = Path(path)
        if not path.is_file():
            raise NotFoundError("file", str(path))
        try:
            data = path.read_bytes()
        except OSError as e:
            raise InvalidInputError(f"Cannot read {path}: {e}") from e
        return self.store.get_attachment(self.store.attach_file(card_id, path.name, data))

    def detach_file(self, card_id: int, file_id: str) -> bool:
        return self.store.detach_file(card_id, file_id)

    def attachments(self, card_id: int) -> list[Attachment]:
        return self.store.card_attachments(card_id)

    def list_due(
        self,
        deck_id: str | None = None,
        as_of: datetime | None = None,
        limit: int = 100,
    ) -> list[int]:
        as_of = to_utc(as_of) if as_of else self.clock.now()
        return self.store.get_due_cards(deck_id=deck_id, as_of=as_of, limit=limit)

    def grade_card(
        self,
        card_id: int,
        grade: Grade | int | str,
        reviewed_at: datetime | None = None,
    ) -> SchedulingState:
        """
        Grade one card outside of a session.

        Args:
            card_id: Card to grade
            grade: Review grade
            reviewed_at: Review instant (defaults to now)

        Returns:
            The committed scheduling state
        """
        grade = Grade.parse(grade)
        reviewed_at = to_utc(reviewed_at) if reviewed_at else self.clock.now()
        card = self.store.get_card(card_id)
        state = commit_review(self.store, self.scheduler, card, grade, reviewed_at)
        logger.info(f"Card {card_id} graded {grade.name}, next due {state.due_at.isoformat()}")
        return state

    # =========================================================================
    # Decks
    # =========================================================================

    def create_deck(self, name: str) -> str:
        return self.decks.create(name).id

    def add_to_deck(self, deck_id: str, card_id: int) -> bool:
        return self.store.add_to_deck(deck_id, card_id)

    def remove_from_deck(self, deck_id: str, card_id: int) -> bool:
        return self.store.remove_from_deck(deck_id, card_id)

    # =========================================================================
    # Sessions
    # =========================================================================

    def start_session(
        self,
        deck_id: str | None = None,
        limit: int | None = None,
        as_of: datetime | None = None,
    ) -> ReviewSession:
        """Create and start a review session over the currently due cards."""
        limit = self.session_limit if limit is None else limit
        if limit < 1:
            raise InvalidInputError(f"Session limit must be >= 1, got {limit}")
        session = ReviewSession(self.store, self.scheduler, self.clock, deck_id=deck_id, limit=limit)
        session.start(as_of)
        return session

    def close(self) -> None:
        self.store.close()
