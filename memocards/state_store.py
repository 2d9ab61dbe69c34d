"""
SQLAlchemy Card Store for memocards.

Provides durable, crash-consistent persistence for:
- Cards and their SM-2 scheduling state (one row, one version stamp)
- The append-only review log
- Deck membership
- File attachments, shared between cards and reference counted

Every public mutating method runs in exactly one transaction. Writes to a
card are serialized with optimistic versioning: apply_review only succeeds if
the caller's version is still current, so reviews of different cards never
block each other and the loser of a same-card race gets ConflictError.

A store may be shared between threads. File databases give each thread its
own pooled connection; an in-memory database has a single connection, so the
store runs its transactions one at a time.

Database location: ~/.memocards/cards.db (see Settings.database_url)
"""

from __future__ import annotations

import base64
import hashlib
import threading
import uuid
from collections.abc import Generator, Iterable
from contextlib import contextmanager, nullcontext
from datetime import datetime
from pathlib import PurePath
from typing import Any

from loguru import logger
from sqlalchemy import Engine, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from .clock import Clock, SystemClock, to_utc
from .db import (
    CardFileRow,
    CardRow,
    DeckMembershipRow,
    DeckRow,
    FileRow,
    ReviewLogRow,
    create_store_engine,
    init_db,
    make_session_factory,
    session_scope,
)
from .errors import ConflictError, InvalidInputError, NotFoundError, StoreIOError
from .models import Attachment, Card, CardDraft, Deck, Grade, ReviewLogEntry, SchedulingState
from .scheduler import EASE_FLOOR

SNAPSHOT_FORMAT = 1
MAX_ATTACHMENT_BYTES = 50 * 1024 * 1024


def _validate_content(front: Any, back: Any) -> None:
    if not isinstance(front, str) or not front.strip():
        raise InvalidInputError("Card front must be a non-empty string")
    if not isinstance(back, str):
        raise InvalidInputError("Card back must be a string")


def _validate_state(state: SchedulingState) -> None:
    if state.ease_factor < EASE_FLOOR:
        raise InvalidInputError(f"ease_factor {state.ease_factor} is below {EASE_FLOOR}")
    if state.interval_days < 0 or state.repetitions < 0 or state.lapses < 0:
        raise InvalidInputError("interval, repetitions and lapses must be non-negative")


def _validate_deck_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError("Deck name must be a non-empty string")
    return name.strip()


def _validate_file(name: Any, data: Any) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError("Attachment name must be a non-empty string")
    if not isinstance(data, (bytes, bytearray)):
        raise InvalidInputError("Attachment content must be bytes")
    if len(data) > MAX_ATTACHMENT_BYTES:
        raise InvalidInputError(f"Attachment '{name}' exceeds {MAX_ATTACHMENT_BYTES} bytes")


def _file_ext(name: str) -> str:
    """Extension without the dot, lower-cased ("" if there is none)."""
    return PurePath(name).suffix.lstrip(".").lower()[:32]


def _state_values(state: SchedulingState) -> dict[str, Any]:
    return {
        "ease_factor": state.ease_factor,
        "interval_days": state.interval_days,
        "repetitions": state.repetitions,
        "lapses": state.lapses,
        "due_at": to_utc(state.due_at),
        "last_reviewed_at": to_utc(state.last_reviewed_at) if state.last_reviewed_at else None,
    }


def _card_from_row(row: CardRow) -> Card:
    return Card(
        id=row.id,
        front=row.front,
        back=row.back,
        created_at=row.created_at,
        updated_at=row.updated_at,
        state=SchedulingState(
            ease_factor=row.ease_factor,
            interval_days=row.interval_days,
            repetitions=row.repetitions,
            due_at=row.due_at,
            lapses=row.lapses,
            last_reviewed_at=row.last_reviewed_at,
        ),
        version=row.version,
    )


def _log_from_row(row: ReviewLogRow) -> ReviewLogEntry:
    return ReviewLogEntry(
        card_id=row.card_id,
        reviewed_at=row.reviewed_at,
        grade=Grade(row.grade),
        resulting_interval=row.resulting_interval,
        id=row.id,
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return to_utc(datetime.fromisoformat(value)) if value else None

def _attachment_from_row(row: FileRow) -> Attachment:
    return Attachment(id=row.id, ext=row.ext, data=bytes(row.data), ref_count=row.ref_count)


class CardStore:
    """
    Transactional store for cards, scheduling state, review log and decks.

    Usage:
        store = CardStore("sqlite:///cards.db")
        card_id = store.create_card("front", "back")
        card = store.get_card(card_id)
        store.apply_review(card_id, new_state, entry, expected_version=card.version)
        store.close()

    For testing:
        store = CardStore("sqlite://", clock=FixedClock())
    """

    DEFAULT_DATABASE_URL = "sqlite:///~/.memocards/cards.db"

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: Engine | None = None,
        clock: Clock | None = None,
        initial_ease: float = 2.5,
        echo: bool = False,
    ):
        """
        Initialize the card store.

        Args:
            database_url: SQLAlchemy URL (defaults to ~/.memocards/cards.db)
            engine: Pre-built engine; overrides database_url
            clock: Source of creation/update timestamps
            initial_ease: Ease factor given to new cards
            echo: Log emitted SQL
        """
        if initial_ease < EASE_FLOOR:
            raise InvalidInputError(f"initial_ease must be >= {EASE_FLOOR}")
        self.clock = clock or SystemClock()
        self.initial_ease = initial_ease
        try:
            self.engine = engine or create_store_engine(
                database_url or self.DEFAULT_DATABASE_URL, echo=echo
            )
            init_db(self.engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Card store unavailable: {e}")
            raise StoreIOError(f"Cannot open card store: {e}") from e
        self._session_factory = make_session_factory(self.engine)
        # A StaticPool is one shared connection: one transaction at a time
        self._lock = threading.RLock() if isinstance(self.engine.pool, StaticPool) else nullcontext()

        logger.info(f"CardStore initialized at {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def _transaction(self, action: str) -> Generator[Session, None, None]:
        """One atomic unit of work; storage failures surface as StoreIOError."""
        try:
            with self._lock, session_scope(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"{action} failed: {e}")
            raise StoreIOError(f"{action} failed: {e}") from e

    # =========================================================================
    # Card Operations
    # =========================================================================

    def _new_state(self, now: datetime) -> SchedulingState:
        return SchedulingState(
            ease_factor=self.initial_ease,
            interval_days=0,
            repetitions=0,
            due_at=now,
        )

    def _insert_card(
        self, session: Session, front: str, back: str, state: SchedulingState, now: datetime
    ) -> int:
        row = CardRow(front=front, back=back, created_at=now, updated_at=now, version=1,
                      **_state_values(state))
        session.add(row)
        session.flush()
        return row.id

    def create_card(
        self,
        front: str,
        back: str = "",
        *,
        state: SchedulingState | None = None,
        deck_id: str | None = None,
    ) -> int:
        """
        Create a card together with its scheduling state.

        Args:
            front: Prompt side content
            back: Answer side content
            state: Seeded scheduling state (imports); defaults to a new,
                immediately due card
            deck_id: Also make the card a member of this deck

        Returns:
            The new card id

        Raises:
            NotFoundError: deck_id does not exist (nothing is written)
        """
        _validate_content(front, back)
        now = self.clock.now()
        if state is None:
            state = self._new_state(now)
        _validate_state(state)

        with self._transaction("create_card") as session:
            if deck_id is not None and session.get(DeckRow, deck_id) is None:
                raise NotFoundError("deck", deck_id)
            card_id = self._insert_card(session, front, back, state, now)
            if deck_id is not None:
                session.add(DeckMembershipRow(deck_id=deck_id, card_id=card_id))

        logger.debug(f"Created card {card_id}" + (f" in deck {deck_id}" if deck_id else ""))
        return card_id

    def get_card(self, card_id: int) -> Card:
        """
        Read a card and its current version.

        Raises:
            NotFoundError: if the card does not exist
        """
        with self._transaction("get_card") as session:
            row = session.get(CardRow, card_id)
            if row is None:
                raise NotFoundError("card", card_id)
            return _card_from_row(row)

    def edit_card(self, card_id: int, *, front: str | None = None, back: str | None = None) -> Card:
        """Change card content. Scheduling state and version are untouched."""
        with self._transaction("edit_card") as session:
            row = session.get(CardRow, card_id)
            if row is None:
                raise NotFoundError("card", card_id)
            new_front = row.front if front is None else front
            new_back = row.back if back is None else back
            _validate_content(new_front, new_back)
            row.front = new_front
            row.back = new_back
            row.updated_at = self.clock.now()
            session.flush()
            return _card_from_row(row)

    def delete_card(self, card_id: int, *, purge_history: bool = False) -> None:
        """
        Delete a card, its scheduling state, deck memberships and its links to
        attachments (files no other card uses are dropped).

        Review log entries are kept unless purge_history is set.
        """
        with self._transaction("delete_card") as session:
            if session.get(CardRow, card_id) is None:
                raise NotFoundError("card", card_id)
            file_ids = session.scalars(
                select(CardFileRow.file_id).where(CardFileRow.card_id == card_id)
            ).all()
            session.execute(delete(CardFileRow).where(CardFileRow.card_id == card_id))
            for file_id in file_ids:
                self._release_file(session, file_id)
            session.execute(delete(DeckMembershipRow).where(DeckMembershipRow.card_id == card_id))
            session.execute(delete(CardRow).where(CardRow.id == card_id))
            if purge_history:
                session.execute(delete(ReviewLogRow).where(ReviewLogRow.card_id == card_id))

        logger.info(f"Deleted card {card_id}" + (" (history purged)" if purge_history else ""))

    def list_card_ids(self) -> list[int]:
        with self._transaction("list_card_ids") as session:
            return list(session.scalars(select(CardRow.id).order_by(CardRow.id)))

    def count_cards(self) -> int:
        with self._transaction("count_cards") as session:
            return session.scalar(select(func.count()).select_from(CardRow)) or 0

    # =========================================================================
    # Due Queries
    # =========================================================================

    def _due_filter(self, session: Session, stmt, deck_id: str | None, as_of: datetime):
        if deck_id is not None:
            if session.get(DeckRow, deck_id) is None:
                raise NotFoundError("deck", deck_id)
            stmt = stmt.join(DeckMembershipRow, DeckMembershipRow.card_id == CardRow.id).where(
                DeckMembershipRow.deck_id == deck_id
            )
        return stmt.where(CardRow.due_at <= as_of)

    def get_due_cards(
        self,
        deck_id: str | None = None,
        as_of: datetime | None = None,
        limit: int = 100,
    ) -> list[int]:
        """
        Get card ids that are due for review.

        Args:
            deck_id: Only cards in this deck
            as_of: Cut-off instant (defaults to now)
            limit: Maximum ids to return

        Returns:
            Card ids ordered by due_at, oldest first, ties broken by id
        """
        if not isinstance(limit, int) or limit < 0:
            raise InvalidInputError(f"limit must be a non-negative integer, got {limit!r}")
        as_of = to_utc(as_of) if as_of else self.clock.now()

        with self._transaction("get_due_cards") as session:
            stmt = self._due_filter(session, select(CardRow.id), deck_id, as_of)
            stmt = stmt.order_by(CardRow.due_at.asc(), CardRow.id.asc()).limit(limit)
            return list(session.scalars(stmt))

    def count_due(self, deck_id: str | None = None, as_of: datetime | None = None) -> int:
        """Count cards due at as_of (defaults to now)."""
        as_of = to_utc(as_of) if as_of else self.clock.now()
        with self._transaction("count_due") as session:
            stmt = self._due_filter(
                session, select(func.count()).select_from(CardRow), deck_id, as_of
            )
            return session.scalar(stmt) or 0

    # =========================================================================
    # Review Operations
    # =========================================================================

    def apply_review(
        self,
        card_id: int,
        new_state: SchedulingState,
        log_entry: ReviewLogEntry,
        *,
        expected_version: int,
    ) -> int:
        """
        Atomically overwrite a card's scheduling state and append its log entry.

        Args:
            card_id: The reviewed card
            new_state: Scheduler output to persist
            log_entry: Review record to append
            expected_version: Version the caller read before scheduling

        Returns:
            The card's new version

        Raises:
            NotFoundError: the card was deleted
            ConflictError: the card changed since expected_version
            StoreIOError: the write could not be made durable
        """
        if log_entry.card_id != card_id:
            raise InvalidInputError(
                f"Log entry is for card {log_entry.card_id}, not card {card_id}"
            )
        _validate_state(new_state)

        with self._transaction("apply_review") as session:
            result = session.execute(
                update(CardRow)
                .where(CardRow.id == card_id, CardRow.version == expected_version)
                .values(version=CardRow.version + 1, **_state_values(new_state))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = session.scalar(select(CardRow.version).where(CardRow.id == card_id))
                if current is None:
                    raise NotFoundError("card", card_id)
                raise ConflictError(card_id, expected_version, current)
            self._append_log(session, log_entry)

        logger.debug(
            f"Applied review to card {card_id}: version {expected_version} -> {expected_version + 1}"
        )
        return expected_version + 1

    def _append_log(self, session: Session, entry: ReviewLogEntry) -> None:
        session.add(
            ReviewLogRow(
                card_id=entry.card_id,
                reviewed_at=to_utc(entry.reviewed_at),
                grade=int(entry.grade),
                resulting_interval=entry.resulting_interval,
            )
        )
        session.flush()

    def get_review_log(
        self,
        card_id: int | None = None,
        limit: int | None = None,
    ) -> list[ReviewLogEntry]:
        """
        Get review history, oldest first.

        Args:
            card_id: Only entries for this card (deleted cards included)
            limit: Keep only the most recent `limit` entries
        """
        with self._transaction("get_review_log") as session:
            stmt = select(ReviewLogRow)
            if card_id is not None:
                stmt = stmt.where(ReviewLogRow.card_id == card_id)
            if limit is not None:
                stmt = stmt.order_by(ReviewLogRow.reviewed_at.desc(), ReviewLogRow.id.desc()).limit(limit)
                return [_log_from_row(r) for r in reversed(session.scalars(stmt).all())]
            stmt = stmt.order_by(ReviewLogRow.reviewed_at.asc(), ReviewLogRow.id.asc())
            return [_log_from_row(r) for r in session.scalars(stmt)]

    def purge_review_log(self, card_id: int) -> int:
        """Delete all review history of a card. Returns entries removed."""
        with self._transaction("purge_review_log") as session:
            result = session.execute(delete(ReviewLogRow).where(ReviewLogRow.card_id == card_id))
            removed = result.rowcount or 0
        logger.info(f"Purged {removed} review log entries for card {card_id}")
        return removed

    # =========================================================================
    # Deck Operations
    # =========================================================================

    def _deck_from_row(self, session: Session, row: DeckRow) -> Deck:
        card_ids = session.scalars(
            select(DeckMembershipRow.card_id)
            .where(DeckMembershipRow.deck_id == row.id)
            .order_by(DeckMembershipRow.card_id)
        ).all()
        return Deck(id=row.id, name=row.name, created_at=row.created_at, card_ids=tuple(card_ids))

    def create_deck(self, name: str) -> str:
        name = _validate_deck_name(name)
        deck_id = uuid.uuid4().hex
        with self._transaction("create_deck") as session:
            session.add(DeckRow(id=deck_id, name=name, created_at=self.clock.now()))
        logger.info(f"Created deck '{name}' ({deck_id})")
        return deck_id

    def create_deck_with_cards(self, name: str, drafts: Iterable[CardDraft]) -> str:
        """
        Create a deck already holding new cards, all in one transaction.

        Every draft is validated before anything is written, and a storage
        failure part way through leaves neither the deck nor any of its cards.

        Returns:
            The new deck id
        """
        name = _validate_deck_name(name)
        now = self.clock.now()
        prepared: list[tuple[CardDraft, SchedulingState]] = []
        for draft in drafts:
            _validate_content(draft.front, draft.back)
            state = draft.state if draft.state is not None else self._new_state(now)
            _validate_state(state)
            for file_name, data in draft.attachments:
                _validate_file(file_name, data)
            prepared.append((draft, state))

        deck_id = uuid.uuid4().hex
        with self._transaction("create_deck_with_cards") as session:
            session.add(DeckRow(id=deck_id, name=name, created_at=now))
            session.flush()
            for draft, state in prepared:
                card_id = self._insert_card(session, draft.front, draft.back, state, now)
                session.add(DeckMembershipRow(deck_id=deck_id, card_id=card_id))
                for file_name, data in draft.attachments:
                    self._link_file(session, card_id, file_name, bytes(data))

        logger.info(f"Created deck '{name}' ({deck_id}) with {len(prepared)} cards")
        return deck_id

    def get_deck(self, deck_id: str) -> Deck:
        with self._transaction("get_deck") as session:
            row = session.get(DeckRow, deck_id)
            if row is None:
                raise NotFoundError("deck", deck_id)
            return self._deck_from_row(session, row)

    def list_decks(self) -> list[Deck]:
        """All decks ordered by name, then id."""
        with self._transaction("list_decks") as session:
            rows = session.scalars(select(DeckRow).order_by(DeckRow.name, DeckRow.id)).all()
            return [self._deck_from_row(session, row) for row in rows]

    def rename_deck(self, deck_id: str, name: str) -> None:
        name = _validate_deck_name(name)
        with self._transaction("rename_deck") as session:
            row = session.get(DeckRow, deck_id)
            if row is None:
                raise NotFoundError("deck", deck_id)
            row.name = name

    def delete_deck(self, deck_id: str) -> None:
        """Delete a deck. Its cards are left alone."""
        with self._transaction("delete_deck") as session:
            if session.get(DeckRow, deck_id) is None:
                raise NotFoundError("deck", deck_id)
            session.execute(delete(DeckMembershipRow).where(DeckMembershipRow.deck_id == deck_id))
            session.execute(delete(DeckRow).where(DeckRow.id == deck_id))
        logger.info(f"Deleted deck {deck_id}")

    def add_to_deck(self, deck_id: str, card_id: int) -> bool:
        """
        Add a card to a deck.

        Returns:
            False if the card was already a member
        """
        with self._transaction("add_to_deck") as session:
            if session.get(DeckRow, deck_id) is None:
                raise NotFoundError("deck", deck_id)
            if session.get(CardRow, card_id) is None:
                raise NotFoundError("card", card_id)
            if session.get(DeckMembershipRow, (deck_id, card_id)) is not None:
                return False
            session.add(DeckMembershipRow(deck_id=deck_id, card_id=card_id))
            return True

    def remove_from_deck(self, deck_id: str, card_id: int) -> bool:
        """
        Remove a card from a deck.

        Returns:
            False if the card was not a member
        """
        with self._transaction("remove_from_deck") as session:
            if session.get(DeckRow, deck_id) is None:
                raise NotFoundError("deck", deck_id)
            result = session.execute(
                delete(DeckMembershipRow).where(
                    DeckMembershipRow.deck_id == deck_id, DeckMembershipRow.card_id == card_id
                )
            )
            return bool(result.rowcount)

    def decks_for_card(self, card_id: int) -> list[str]:
        with self._transaction("decks_for_card") as session:
            if session.get(CardRow, card_id) is None:
                raise NotFoundError("card", card_id)
            return list(
                session.scalars(
                    select(DeckMembershipRow.deck_id)
                    .where(DeckMembershipRow.card_id == card_id)
                    .order_by(DeckMembershipRow.deck_id)
                )
            )

    # =========================================================================
    # Attachments
    # =========================================================================

    def _link_file(self, session: Session, card_id: int, name: str, data: bytes) -> str:
        file_id = hashlib.sha256(data).hexdigest()
        if session.get(CardFileRow, (card_id, file_id)) is not None:
            return file_id
        row = session.get(FileRow, file_id)
        if row is None:
            session.add(FileRow(id=file_id, ext=_file_ext(name), data=data, ref_count=1))
            session.flush()
        else:
            row.ref_count += 1
        session.add(CardFileRow(card_id=card_id, file_id=file_id))
        session.flush()
        return file_id

    def _release_file(self, session: Session, file_id: str) -> None:
        row = session.get(FileRow, file_id)
        if row is None:
            return
        if row.ref_count <= 1:
            session.delete(row)
        else:
            row.ref_count -= 1
        session.flush()

    def attach_file(self, card_id: int, name: str, data: bytes) -> str:
        """
        Link a file to a card.

        Identical content is stored once and shared; attaching the same
        content to the same card twice is a no-op.

        Args:
            card_id: Card to attach to
            name: Original file name (only its extension is kept)
            data: File content

        Returns:
            The attachment id (sha256 hex digest of the content)
        """
        _validate_file(name, data)
        with self._transaction("attach_file") as session:
            if session.get(CardRow, card_id) is None:
                raise NotFoundError("card", card_id)
            file_id = self._link_file(session, card_id, name, bytes(data))
        logger.info(f"Attached {name} ({len(data)} bytes) to card {card_id} as {file_id[:12]}")
        return file_id

    def detach_file(self, card_id: int, file_id: str) -> bool:
        """
        Unlink a file from a card, dropping it once no card uses it.

        Returns:
            False if the file was not attached to the card
        """
        with self._transaction("detach_file") as session:
            if session.get(CardRow, card_id) is None:
                raise NotFoundError("card", card_id)
            result = session.execute(
                delete(CardFileRow).where(CardFileRow.card_id == card_id, CardFileRow.file_id == file_id)
            )
            if not result.rowcount:
                return False
            self._release_file(session, file_id)
            return True

    def get_attachment(self, file_id: str) -> Attachment:
        with self._transaction("get_attachment") as session:
            row = session.get(FileRow, file_id)
            if row is None:
                raise NotFoundError("attachment", file_id)
            return _attachment_from_row(row)

    def card_attachments(self, card_id: int) -> list[Attachment]:
        """Attachments of a card, ordered by id."""
        with self._transaction("card_attachments") as session:
            if session.get(CardRow, card_id) is None:
                raise NotFoundError("card", card_id)
            rows = session.scalars(
                select(FileRow)
                .join(CardFileRow, CardFileRow.file_id == FileRow.id)
                .where(CardFileRow.card_id == card_id)
                .order_by(FileRow.id)
            ).all()
            return [_attachment_from_row(row) for row in rows]

    # =========================================================================
    # Snapshots
    # =========================================================================

    def dump(self) -> dict[str, Any]:
        """
        Serialize the entire store into JSON-compatible data.

        Ids, versions and history are preserved so load() reproduces the
        same due ordering.
        """
        with self._transaction("dump") as session:
            cards = [
                {
                    "id": r.id,
                    "front": r.front,
                    "back": r.back,
                    "created_at": _iso(r.created_at),
                    "updated_at": _iso(r.updated_at),
                    "ease_factor": r.ease_factor,
                    "interval_days": r.interval_days,
                    "repetitions": r.repetitions,
                    "lapses": r.lapses,
                    "due_at": _iso(r.due_at),
                    "last_reviewed_at": _iso(r.last_reviewed_at),
                    "version": r.version,
                }
                for r in session.scalars(select(CardRow).order_by(CardRow.id))
            ]
            decks = [
                {
                    "id": d.id,
                    "name": d.name,
                    "created_at": _iso(d.created_at),
                    "card_ids": [m.card_id for m in sorted(d.memberships, key=lambda m: m.card_id)],
                }
                for d in session.scalars(select(DeckRow).order_by(DeckRow.id))
            ]
            review_log = [
                {
                    "id": r.id,
                    "card_id": r.card_id,
                    "reviewed_at": _iso(r.reviewed_at),
                    "grade": r.grade,
                    "resulting_interval": r.resulting_interval,
                }
                for r in session.scalars(select(ReviewLogRow).order_by(ReviewLogRow.id))
            ]
            links: dict[str, list[int]] = {}
            for link in session.scalars(select(CardFileRow).order_by(CardFileRow.card_id)):
                links.setdefault(link.file_id, []).append(link.card_id)
            files = [
                {
                    "id": f.id,
                    "ext": f.ext,
                    "data": base64.b64encode(f.data).decode("ascii"),
                    "card_ids": links.get(f.id, []),
                }
                for f in session.scalars(select(FileRow).order_by(FileRow.id))
            ]
        return {
            "format": SNAPSHOT_FORMAT,
            "exported_at": _iso(self.clock.now()),
            "cards": cards,
            "decks": decks,
            "review_log": review_log,
            "files": files,
        }

    def load(self, snapshot: dict[str, Any]) -> int:
        """
        Restore a dump() snapshot into this store.

        The store must hold no cards, decks, review history or attachments;
        otherwise InvalidInputError is raised and nothing is written.

        Returns:
            Number of cards restored
        """
        if snapshot.get("format") != SNAPSHOT_FORMAT:
            raise InvalidInputError(f"Unsupported snapshot format: {snapshot.get('format')!r}")

        try:
            cards = [
                CardRow(
                    id=int(c["id"]),
                    front=c["front"],
                    back=c["back"],
                    created_at=_parse_iso(c["created_at"]),
                    updated_at=_parse_iso(c["updated_at"]),
                    ease_factor=float(c["ease_factor"]),
                    interval_days=int(c["interval_days"]),
                    repetitions=int(c["repetitions"]),
                    lapses=int(c["lapses"]),
                    due_at=_parse_iso(c["due_at"]),
                    last_reviewed_at=_parse_iso(c.get("last_reviewed_at")),
                    version=int(c["version"]),
                )
                for c in snapshot.get("cards", [])
            ]
            decks = [
                (DeckRow(id=d["id"], name=d["name"], created_at=_parse_iso(d["created_at"])),
                 [int(cid) for cid in d.get("card_ids", [])])
                for d in snapshot.get("decks", [])
            ]
            log = [
                ReviewLogRow(
                    id=int(r["id"]),
                    card_id=int(r["card_id"]),
                    reviewed_at=_parse_iso(r["reviewed_at"]),
                    grade=int(Grade.parse(r["grade"])),
                    resulting_interval=int(r["resulting_interval"]),
                )
                for r in snapshot.get("review_log", [])
            ]
            files = []
            for f in snapshot.get("files", []):
                data = base64.b64decode(f["data"], validate=True)
                card_ids = [int(cid) for cid in f["card_ids"]]
                if hashlib.sha256(data).hexdigest() != f["id"]:
                    raise ValueError(f"attachment {f['id']} does not match its content")
                if not card_ids:
                    raise ValueError(f"attachment {f['id']} is not linked to any card")
                files.append((FileRow(id=f["id"], ext=str(f.get("ext", "")), data=data,
                                      ref_count=len(card_ids)), card_ids))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed snapshot: {e}") from e

        with self._transaction("load") as session:
            # Review history and attachments survive card deletion
            for model in (CardRow, DeckRow, ReviewLogRow, FileRow):
                if session.scalar(select(func.count()).select_from(model)):
                    raise InvalidInputError("Snapshots can only be restored into an empty store")
            session.add_all(cards)
            session.flush()
            for deck_row, card_ids in decks:
                session.add(deck_row)
                session.flush()
                session.add_all(
                    DeckMembershipRow(deck_id=deck_row.id, card_id=cid) for cid in card_ids
                )
            session.add_all(log)
            for file_row, card_ids in files:
                session.add(file_row)
                session.flush()
                session.add_all(CardFileRow(card_id=cid, file_id=file_row.id) for cid in card_ids)

        logger.info(
            f"Loaded snapshot: {len(cards)} cards, {len(decks)} decks, {len(log)} reviews, "
            f"{len(files)} attachments"
        )
        return len(cards)

    def close(self) -> None:
        """Dispose of the engine and its connections."""
        self.engine.dispose()
