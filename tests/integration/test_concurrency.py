"""
Integration Tests for concurrent writers on a file-backed store.

Threads share one CardStore, each on its own pooled SQLite connection:
1. Reviews of different cards all land
2. Reviews racing on one card have exactly one winner
3. Two stores opened on the same file see each other's versions
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from memocards.clock import FixedClock
from memocards.errors import ConflictError
from memocards.models import Grade, ReviewLogEntry
from memocards.scheduler import SM2Scheduler
from memocards.state_store import CardStore

pytestmark = pytest.mark.integration

WRITERS = 4


def _stale_write(store, scheduler, card, at, barrier):
    """Apply a GOOD review computed from `card`, starting with the other writers."""
    result = scheduler.schedule(card.state, Grade.GOOD, at)
    entry = ReviewLogEntry(card.id, at, Grade.GOOD, result.interval)
    barrier.wait()
    try:
        return store.apply_review(card.id, result.state, entry, expected_version=card.version)
    except ConflictError as e:
        return e


@pytest.fixture
def file_store(db_file_url):
    store = CardStore(db_file_url, clock=FixedClock())
    yield store
    store.close()


class TestConcurrentReviews:
    """Several threads writing through one store."""

    def test_different_cards_never_conflict(self, file_store):
        scheduler = SM2Scheduler()
        now = file_store.clock.now()
        cards = [file_store.get_card(file_store.create_card(f"q{i}")) for i in range(WRITERS)]
        barrier = threading.Barrier(WRITERS)

        with ThreadPoolExecutor(max_workers=WRITERS) as pool:
            outcomes = list(
                pool.map(lambda card: _stale_write(file_store, scheduler, card, now, barrier), cards)
            )

        assert outcomes == [2] * WRITERS
        for card in cards:
            assert file_store.get_card(card.id).version == 2
            assert len(file_store.get_review_log(card.id)) == 1

    def test_same_card_has_one_winner(self, file_store):
        scheduler = SM2Scheduler()
        now = file_store.clock.now()
        card = file_store.get_card(file_store.create_card("q"))
        barrier = threading.Barrier(WRITERS)

        with ThreadPoolExecutor(max_workers=WRITERS) as pool:
            outcomes = list(
                pool.map(lambda _: _stale_write(file_store, scheduler, card, now, barrier), range(WRITERS))
            )

        assert outcomes.count(2) == 1
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(conflicts) == WRITERS - 1
        assert all(c.actual_version == 2 for c in conflicts)
        assert file_store.get_card(card.id).version == 2
        assert len(file_store.get_review_log(card.id)) == 1

    def test_two_stores_on_one_file(self, db_file_url):
        scheduler = SM2Scheduler()
        clock = FixedClock()
        first = CardStore(db_file_url, clock=clock)
        second = CardStore(db_file_url, clock=clock)
        try:
            card = first.get_card(first.create_card("q"))
            barrier = threading.Barrier(2)

            with ThreadPoolExecutor(max_workers=2) as pool:
                outcomes = list(
                    pool.map(
                        lambda store: _stale_write(store, scheduler, card, clock.now(), barrier),
                        [first, second],
                    )
                )

            assert outcomes.count(2) == 1
            assert sum(isinstance(o, ConflictError) for o in outcomes) == 1
            assert second.get_card(card.id).version == 2
            assert len(first.get_review_log(card.id)) == 1
        finally:
            first.close()
            second.close()
