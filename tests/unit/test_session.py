"""
Unit tests for the review session controller.

Covers the session state machine, the snapshot queue, conflict retries,
and behavior when cards disappear or storage fails mid-session.

Run: pytest tests/unit/test_session.py -v
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from memocards.errors import (
    ConflictError,
    InvalidInputError,
    ReviewConflictError,
    StoreIOError,
)
from memocards.models import Grade, ReviewLogEntry
from memocards.session import (
    CardPhase,
    ReviewSession,
    SessionStatus,
    commit_review,
)

DAY = timedelta(days=1)


@pytest.fixture
def cards(store):
    return [store.create_card(f"front {i}", f"back {i}") for i in range(3)]


@pytest.fixture
def session(store, scheduler, clock, cards):
    return ReviewSession(store, scheduler, clock)


class TestLifecycle:
    """IDLE -> ACTIVE -> COMPLETE."""

    def test_starts_idle(self, session):
        assert session.status is SessionStatus.IDLE
        with pytest.raises(InvalidInputError):
            session.next_card()

    def test_full_pass(self, session, store, cards):
        assert session.start() == 3
        assert session.status is SessionStatus.ACTIVE

        seen = []
        while (card := session.next_card()) is not None:
            seen.append(card.id)
            session.grade(Grade.GOOD)

        assert seen == cards
        assert session.status is SessionStatus.COMPLETE
        summary = session.summary()
        assert (summary.reviewed, summary.failed, summary.skipped, summary.remaining) == (3, 0, 0, 0)
        assert all(store.get_card(c).state.repetitions == 1 for c in cards)

    def test_completes_after_last_grade(self, session):
        session.start()
        for _ in range(3):
            session.next_card()
            session.grade("good")
        assert session.status is SessionStatus.COMPLETE
        assert session.next_card() is None

    def test_nothing_due_completes_immediately(self, store, scheduler, clock):
        session = ReviewSession(store, scheduler, clock)
        assert session.start() == 0
        assert session.status is SessionStatus.COMPLETE
        assert session.next_card() is None

    def test_cannot_start_twice(self, session):
        session.start()
        with pytest.raises(InvalidInputError):
            session.start()

    def test_invalid_limit(self, store, scheduler, clock):
        with pytest.raises(InvalidInputError):
            ReviewSession(store, scheduler, clock, limit=0)

    def test_limit_bounds_queue(self, store, scheduler, clock, cards):
        session = ReviewSession(store, scheduler, clock, limit=2)
        assert session.start() == 2
        assert session.remaining == 2

    def test_deck_filter(self, store, scheduler, clock, cards):
        deck_id = store.create_deck("D")
        store.add_to_deck(deck_id, cards[2])
        session = ReviewSession(store, scheduler, clock, deck_id=deck_id)

        session.start()
        assert session.next_card().id == cards[2]


class TestCardPhases:
    """PRESENTED -> GRADED -> COMMITTED."""

    def test_presented_card_is_repeated(self, session):
        session.start()
        first = session.next_card()
        assert session.phase is CardPhase.PRESENTED
        assert session.next_card().id == first.id

    def test_grade_without_card(self, session):
        session.start()
        with pytest.raises(InvalidInputError):
            session.grade(Grade.GOOD)

    def test_invalid_grade_leaves_card_presented(self, session, store):
        session.start()
        card = session.next_card()
        with pytest.raises(InvalidInputError):
            session.grade(7)

        assert session.phase is CardPhase.PRESENTED
        assert store.get_card(card.id).version == 1
        assert session.next_card().id == card.id

    def test_fail_counts(self, session):
        session.start()
        session.next_card()
        session.grade(Grade.FAIL)
        session.next_card()
        session.grade(Grade.EASY)

        summary = session.summary()
        assert summary.reviewed == 2
        assert summary.failed == 1
        assert summary.remaining == 1
        assert summary.accuracy_percent == 50.0


class TestSnapshotQueue:
    """The due queue is fixed when the session starts."""

    def test_new_cards_not_injected(self, session, store):
        session.start()
        store.create_card("late arrival")

        count = 0
        while session.next_card() is not None:
            session.grade(Grade.GOOD)
            count += 1
        assert count == 3

    def test_deleted_card_is_skipped(self, session, store, cards):
        session.start()
        store.delete_card(cards[1])

        seen = []
        while (card := session.next_card()) is not None:
            seen.append(card.id)
            session.grade(Grade.GOOD)

        assert seen == [cards[0], cards[2]]
        assert session.summary().skipped == 1

    def test_card_deleted_while_presented(self, session, store, cards):
        session.start()
        card = session.next_card()
        store.delete_card(card.id)

        assert session.grade(Grade.GOOD) is None
        assert session.summary().skipped == 1
        assert session.next_card().id == cards[1]


class TestConflicts:
    """Concurrent writes to a presented card."""

    def test_single_conflict_is_retried(self, session, store, scheduler, clock):
        session.start()
        card = session.next_card()
        # Another writer reviews the card after it was presented
        commit_review(store, scheduler, store.get_card(card.id), Grade.HARD, clock.now())

        state = session.grade(Grade.GOOD)

        assert state is not None
        assert store.get_card(card.id).version == 3
        assert [e.grade for e in store.get_review_log(card.id)] == [Grade.HARD, Grade.GOOD]
        # Rescheduled from the other writer's state, not the stale one
        assert state.repetitions == 2

    def test_repeated_conflict_surfaces(self, session, store, monkeypatch):
        session.start()
        card = session.next_card()

        def always_conflict(card_id, new_state, log_entry, *, expected_version):
            raise ConflictError(card_id, expected_version, expected_version + 1)

        monkeypatch.setattr(store, "apply_review", always_conflict)

        with pytest.raises(ReviewConflictError):
            session.grade(Grade.GOOD)
        assert session.phase is CardPhase.PRESENTED
        assert session.status is SessionStatus.ACTIVE


class TestStorageFailures:
    """StoreIOError keeps the card presented and can end in abort()."""

    def test_io_error_keeps_card(self, session, store, monkeypatch):
        session.start()
        card = session.next_card()

        def broken(session_, entry):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        original = store._append_log
        monkeypatch.setattr(store, "_append_log", broken)

        with pytest.raises(StoreIOError):
            session.grade(Grade.GOOD)
        assert session.phase is CardPhase.PRESENTED
        assert store.get_card(card.id).version == 1

        # Storage recovers; the same card can be graded again
        monkeypatch.setattr(store, "_append_log", original)
        assert session.next_card().id == card.id
        session.grade(Grade.GOOD)
        assert store.get_card(card.id).version == 2

    def test_abort(self, session):
        session.start()
        session.next_card()
        summary = session.abort()

        assert session.status is SessionStatus.ABORTED
        assert summary.remaining == 3
        with pytest.raises(InvalidInputError):
            session.next_card()


class TestCancel:
    """Cancelling loses nothing durable."""

    def test_cancel_keeps_committed_reviews(self, session, store, cards):
        session.start()
        session.next_card()
        session.grade(Grade.GOOD)
        session.next_card()

        summary = session.cancel()

        assert session.status is SessionStatus.CANCELLED
        assert summary.reviewed == 1
        assert summary.remaining == 2
        assert store.get_card(cards[0]).version == 2
        assert store.get_card(cards[1]).version == 1
        with pytest.raises(InvalidInputError):
            session.grade(Grade.GOOD)

    def test_independent_sessions(self, store, scheduler, clock, cards):
        first = ReviewSession(store, scheduler, clock)
        second = ReviewSession(store, scheduler, clock)
        first.start()
        second.start()

        first.next_card()
        first.grade(Grade.GOOD)
        first.cancel()

        assert second.status is SessionStatus.ACTIVE
        assert second.remaining == 3


class TestCommitReview:
    """commit_review outside of a session."""

    def test_commits(self, store, scheduler, clock):
        card_id = store.create_card("q")
        state = commit_review(store, scheduler, store.get_card(card_id), Grade.GOOD, clock.now())

        assert store.get_card(card_id).state == state
        log = store.get_review_log(card_id)
        assert log == [ReviewLogEntry(card_id, clock.now(), Grade.GOOD, 1, id=log[0].id)]

    def test_review_dated_before_concurrent_review(self, store, scheduler, clock):
        """After a conflict the re-read baseline may postdate our review."""
        card_id = store.create_card("q")
        stale = store.get_card(card_id)
        commit_review(store, scheduler, stale, Grade.GOOD, clock.now() + DAY)

        with pytest.raises(InvalidInputError):
            commit_review(store, scheduler, stale, Grade.GOOD, clock.now())
