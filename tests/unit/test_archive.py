"""
Unit tests for deck archives and store backups.

Run: pytest tests/unit/test_archive.py -v
"""

import io
import json
import tarfile

import pytest
from sqlalchemy.exc import OperationalError

from memocards.archive import (
    archive_filename,
    backup_store,
    export_deck,
    import_deck,
    read_deck_archive,
    restore_store,
)
from memocards.errors import InvalidInputError, NotFoundError, StoreIOError
from memocards.models import Grade
from memocards.session import commit_review
from memocards.state_store import CardStore


def _write_archive(path, payload: bytes, member: str = "deck"):
    info = tarfile.TarInfo(member)
    info.size = len(payload)
    with tarfile.open(path, "w:gz") as tar:
        tar.addfile(info, io.BytesIO(payload))
    return path


@pytest.fixture
def french(store, scheduler, clock):
    """A deck with two cards, one of them reviewed."""
    deck_id = store.create_deck("French verbs")
    first = store.create_card("être", "to be")
    second = store.create_card("avoir", "to have")
    store.add_to_deck(deck_id, first)
    store.add_to_deck(deck_id, second)
    commit_review(store, scheduler, store.get_card(first), Grade.GOOD, clock.now())
    return deck_id


class TestDeckArchives:
    """export_deck / import_deck."""

    def test_filename(self):
        assert archive_filename("French verbs") == "French_verbs.deck"
        assert archive_filename("a/b") == "a_b.deck"

    def test_export_writes_deck_member(self, store, french, tmp_path):
        path = export_deck(store, french, tmp_path)

        assert path.name == "French_verbs.deck"
        with tarfile.open(path, "r:gz") as tar:
            data = json.loads(tar.extractfile("deck").read())
        assert data["name"] == "French verbs"
        assert [c["front"] for c in data["cards"]] == ["être", "avoir"]
        assert data["cards"][0]["scheduling"]["repetitions"] == 1

    def test_export_without_scheduling(self, store, french, tmp_path):
        archive = read_deck_archive(export_deck(store, french, tmp_path, include_scheduling=False))
        assert all(card.scheduling is None for card in archive.cards)

    def test_import_starts_fresh(self, store, french, tmp_path, clock):
        path = export_deck(store, french, tmp_path)
        other = CardStore("sqlite://", clock=clock)
        try:
            deck_id = import_deck(other, path)
            deck = other.get_deck(deck_id)

            assert deck.name == "French verbs"
            assert len(deck) == 2
            cards = [other.get_card(card_id) for card_id in deck.card_ids]
            assert {c.front for c in cards} == {"être", "avoir"}
            assert all(c.state.repetitions == 0 for c in cards)
            assert other.get_review_log() == []
        finally:
            other.close()

    def test_import_seeds_scheduling(self, store, french, tmp_path, clock):
        path = export_deck(store, french, tmp_path)
        other = CardStore("sqlite://", clock=clock)
        try:
            deck = other.get_deck(import_deck(other, path, seed_scheduling=True))
            states = {other.get_card(c).front: other.get_card(c).state for c in deck.card_ids}

            original = store.get_card(store.get_deck(french).card_ids[0]).state
            assert states["être"] == original
            assert states["avoir"].repetitions == 0
        finally:
            other.close()

    def test_import_into_same_store_creates_new_deck(self, store, french, tmp_path):
        deck_id = import_deck(store, export_deck(store, french, tmp_path))
        assert deck_id != french
        assert store.count_cards() == 4

    def test_attachments_travel_in_storage(self, store, french, tmp_path, clock):
        first, second = store.get_deck(french).card_ids
        picture = store.attach_file(first, "etre.png", b"picture")
        store.attach_file(second, "etre.png", b"picture")
        sound = store.attach_file(second, "avoir.ogg", b"sound")

        path = export_deck(store, french, tmp_path)
        with tarfile.open(path, "r:gz") as tar:
            names = sorted(tar.getnames())
        assert names == sorted(["deck", "storage", f"storage/{picture}.png", f"storage/{sound}.ogg"])

        other = CardStore("sqlite://", clock=clock)
        try:
            deck = other.get_deck(import_deck(other, path))
            by_front = {other.get_card(c).front: c for c in deck.card_ids}
            assert [a.data for a in other.card_attachments(by_front["être"])] == [b"picture"]
            assert {a.data for a in other.card_attachments(by_front["avoir"])} == {b"picture", b"sound"}
            assert other.get_attachment(picture).ref_count == 2
        finally:
            other.close()

    def test_missing_storage_file(self, store, tmp_path):
        payload = b'{"id": "abc", "name": "D", "cards": [{"front": "q", "files": ["gone.png"]}]}'
        path = _write_archive(tmp_path / "x.deck", payload)
        with pytest.raises(InvalidInputError):
            import_deck(store, path)
        assert store.count_cards() == 0

    def test_failed_import_leaves_nothing(self, store, french, tmp_path, monkeypatch):
        path = export_deck(store, french, tmp_path)
        other = CardStore("sqlite://")
        original = other._insert_card
        calls = {"n": 0}

        def failing_insert(session, front, back, state, now):
            calls["n"] += 1
            if calls["n"] == 2:
                raise OperationalError("INSERT INTO cards", {}, Exception("disk full"))
            return original(session, front, back, state, now)

        monkeypatch.setattr(other, "_insert_card", failing_insert)
        try:
            with pytest.raises(StoreIOError):
                import_deck(other, path)
            assert other.list_decks() == []
            assert other.count_cards() == 0
        finally:
            other.close()

    def test_missing_file(self, store, tmp_path):
        with pytest.raises(NotFoundError):
            import_deck(store, tmp_path / "missing.deck")

    def test_not_a_tarball(self, store, tmp_path):
        path = tmp_path / "bad.deck"
        path.write_text("plain text")
        with pytest.raises(InvalidInputError):
            import_deck(store, path)
        assert store.list_decks() == []

    def test_missing_member(self, store, tmp_path):
        path = _write_archive(tmp_path / "x.deck", b"{}", member="other")
        with pytest.raises(InvalidInputError):
            import_deck(store, path)

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b'{"id": "abc"}',
            b'{"id": "abc", "name": "D", "cards": [{"front": ""}]}',
            b'{"id": "abc", "name": "D", "cards": [{"front": "q", "scheduling": '
            b'{"ease_factor": 0.5, "interval_days": 1, "repetitions": 1, "due_at": "2024-01-01T00:00:00Z"}}]}',
            b'{"format": 2, "id": "abc", "name": "D"}',
        ],
    )
    def test_malformed_payload(self, store, tmp_path, payload):
        path = _write_archive(tmp_path / "x.deck", payload)
        with pytest.raises(InvalidInputError):
            import_deck(store, path)
        assert store.list_decks() == []
        assert store.count_cards() == 0


class TestBackups:
    """backup_store / restore_store."""

    def test_round_trip(self, store, french, tmp_path, clock):
        path = backup_store(store, tmp_path / "backups" / "cards.json")
        restored = CardStore("sqlite://", clock=clock)
        try:
            assert restore_store(restored, path) == 2
            assert restored.get_due_cards() == store.get_due_cards()
            assert restored.get_deck(french).card_ids == store.get_deck(french).card_ids
            assert restored.get_review_log() == store.get_review_log()
        finally:
            restored.close()

    def test_restore_after_deleting_every_card(self, store, french, tmp_path):
        """Leftover review history makes the store non-empty."""
        path = backup_store(store, tmp_path / "cards.json")
        store.delete_deck(french)
        for card_id in store.list_card_ids():
            store.delete_card(card_id)

        with pytest.raises(InvalidInputError, match="empty store"):
            restore_store(store, path)
        assert store.count_cards() == 0

    def test_restore_missing(self, store, tmp_path):
        with pytest.raises(NotFoundError):
            restore_store(store, tmp_path / "nope.json")

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_restore_garbage(self, store, tmp_path, content):
        path = tmp_path / "bad.json"
        path.write_text(content)
        with pytest.raises(InvalidInputError):
            restore_store(store, path)
