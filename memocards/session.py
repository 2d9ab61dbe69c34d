"""
Review Session Controller.

Orchestrates one bounded review session:

    IDLE -> ACTIVE -> (per card: PRESENTED -> GRADED -> COMMITTED) -> COMPLETE

The due queue is snapshotted when the session starts; cards that become due
afterwards wait for the next session. Cancelling only drops the in-memory
queue, since nothing is written for a card until it is graded.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from loguru import logger

from .clock import Clock, SystemClock, to_utc
from .errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    ReviewConflictError,
    StoreIOError,
)
from .models import Card, Grade, ReviewLogEntry, SchedulingState
from .scheduler import SM2Scheduler
from .state_store import CardStore


def commit_review(
    store: CardStore,
    scheduler: SM2Scheduler,
    card: Card,
    grade: Grade,
    reviewed_at: datetime,
) -> SchedulingState:
    """
    Schedule a review and persist it, retrying once on a version conflict.

    On conflict the card is re-read and the same grade is rescheduled from
    its fresh state. A second conflict raises ReviewConflictError instead
    of looping. NotFoundError and StoreIOError propagate unchanged.

    Returns:
        The committed scheduling state
    """
    for attempt in (1, 2):
        result = scheduler.schedule(card.state, grade, reviewed_at)
        entry = ReviewLogEntry(
            card_id=card.id,
            reviewed_at=reviewed_at,
            grade=grade,
            resulting_interval=result.interval,
        )
        try:
            store.apply_review(card.id, result.state, entry, expected_version=card.version)
            return result.state
        except ConflictError as e:
            if attempt == 2:
                raise ReviewConflictError(card.id, e.expected_version, e.actual_version) from e
            logger.warning(f"Card {card.id} changed during review, rescheduling from fresh state")
            card = store.get_card(card.id)

    raise AssertionError("unreachable")


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


class CardPhase(str, Enum):
    PRESENTED = "presented"
    GRADED = "graded"
    COMMITTED = "committed"


@dataclass
class SessionSummary:
    """Counts for a finished (or in-progress) session."""

    reviewed: int
    failed: int
    skipped: int
    remaining: int

    @property
    def accuracy_percent(self) -> float:
        if self.reviewed == 0:
            return 0.0
        return (self.reviewed - self.failed) * 100.0 / self.reviewed


class ReviewSession:
    """
    One review session over a snapshot of due cards.

    All collaborators are passed in; several sessions can run side by side
    against the same store.
    """

    def __init__(
        self,
        store: CardStore,
        scheduler: SM2Scheduler,
        clock: Clock | None = None,
        *,
        deck_id: str | None = None,
        limit: int = 50,
    ):
        if limit < 1:
            raise InvalidInputError(f"Session limit must be >= 1, got {limit}")
        self.store = store
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.deck_id = deck_id
        self.limit = limit
        self.session_id = uuid.uuid4().hex[:8]

        self.status = SessionStatus.IDLE
        self.current_card: Card | None = None
        self.phase: CardPhase | None = None
        self._queue: deque[int] = deque()
        self.reviewed = 0
        self.failed = 0
        self.skipped = 0

    @property
    def remaining(self) -> int:
        """Cards still queued, including the one currently presented."""
        pending = 1 if self.current_card is not None else 0
        return len(self._queue) + pending

    def _require(self, *allowed: SessionStatus) -> None:
        if self.status not in allowed:
            raise InvalidInputError(f"Session is {self.status.value}")

    def start(self, as_of: datetime | None = None) -> int:
        """
        Snapshot the due queue and activate the session.

        Returns:
            Number of cards queued
        """
        self._require(SessionStatus.IDLE)
        as_of = to_utc(as_of) if as_of else self.clock.now()
        due_ids = self.store.get_due_cards(deck_id=self.deck_id, as_of=as_of, limit=self.limit)
        self._queue = deque(due_ids)
        self.status = SessionStatus.ACTIVE if due_ids else SessionStatus.COMPLETE

        logger.info(f"Session {self.session_id} started with {len(due_ids)} due cards")
        return len(due_ids)

    def next_card(self) -> Card | None:
        """
        Present the next card.

        A presented but uncommitted card is returned again. Cards deleted
        since the snapshot are skipped.

        Returns:
            The card to show, or None once the session is complete
        """
        if self.status is SessionStatus.COMPLETE:
            return None
        self._require(SessionStatus.ACTIVE)

        if self.current_card is not None:
            return self.current_card

        while self._queue:
            card_id = self._queue.popleft()
            try:
                card = self.store.get_card(card_id)
            except NotFoundError:
                self.skipped += 1
                logger.warning(f"Card {card_id} was deleted mid-session, skipping")
                continue
            self.current_card = card
            self.phase = CardPhase.PRESENTED
            return card

        self._complete()
        return None

    def grade(
        self,
        grade: Grade | int | str,
        reviewed_at: datetime | None = None,
    ) -> SchedulingState | None:
        """
        Grade the presented card and commit the result.

        Args:
            grade: Review grade
            reviewed_at: Review instant (defaults to now)

        Returns:
            The new scheduling state, or None if the card was deleted
            concurrently and has been skipped

        Raises:
            InvalidInputError: bad grade, or no card presented
            ReviewConflictError: the card kept changing under us
            StoreIOError: the commit failed; the card stays presented
        """
        self._require(SessionStatus.ACTIVE)
        if self.current_card is None:
            raise InvalidInputError("No card is presented")
        grade = Grade.parse(grade)
        reviewed_at = to_utc(reviewed_at) if reviewed_at else self.clock.now()

        card = self.current_card
        self.phase = CardPhase.GRADED
        try:
            state = commit_review(self.store, self.scheduler, card, grade, reviewed_at)
        except NotFoundError:
            self.skipped += 1
            logger.warning(f"Card {card.id} was deleted before its review was saved, skipping")
            self._advance()
            return None
        except (StoreIOError, ConflictError, InvalidInputError):
            self.phase = CardPhase.PRESENTED
            raise

        self.phase = CardPhase.COMMITTED
        self.reviewed += 1
        if not grade.is_passing:
            self.failed += 1
        logger.debug(f"Session {self.session_id}: card {card.id} graded {grade.name}")
        self._advance()
        return state

    def _advance(self) -> None:
        self.current_card = None
        self.phase = None
        if not self._queue:
            self._complete()

    def _complete(self) -> None:
        self.status = SessionStatus.COMPLETE
        logger.info(
            f"Session {self.session_id} complete: {self.reviewed} reviewed, "
            f"{self.failed} failed, {self.skipped} skipped"
        )

    def cancel(self) -> SessionSummary:
        """Drop the remaining queue. Nothing durable is lost."""
        summary = self.summary()
        self._queue.clear()
        self.current_card = None
        self.phase = None
        self.status = SessionStatus.CANCELLED
        logger.info(f"Session {self.session_id} cancelled with {summary.remaining} cards left")
        return summary

    def abort(self) -> SessionSummary:
        """End the session after an unrecoverable storage failure."""
        summary = self.summary()
        self._queue.clear()
        self.current_card = None
        self.phase = None
        self.status = SessionStatus.ABORTED
        logger.error(f"Session {self.session_id} aborted with {summary.remaining} cards left")
        return summary

    def summary(self) -> SessionSummary:
        return SessionSummary(
            reviewed=self.reviewed,
            failed=self.failed,
            skipped=self.skipped,
            remaining=self.remaining,
        )
