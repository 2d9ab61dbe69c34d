"""
Table models for the card store.

Card content and its scheduling state share one row so that a single
UPDATE is enough to move a card forward; `version` is the optimistic
concurrency stamp. The review log deliberately has no foreign key: history
outlives deleted cards until it is purged.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UTCDateTime


class CardRow(Base):
    """A card plus its SM-2 scheduling state."""

    __tablename__ = "cards"
    __table_args__ = (
        CheckConstraint("ease_factor >= 1.3", name="ck_cards_ease_floor"),
        CheckConstraint("interval_days >= 0", name="ck_cards_interval"),
        CheckConstraint("repetitions >= 0", name="ck_cards_repetitions"),
        CheckConstraint("lapses >= 0", name="ck_cards_lapses"),
        Index("ix_cards_due", "due_at", "id"),
        # Ids are never reused, even after deletion
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Scheduling state
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lapses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    memberships: Mapped[list[DeckMembershipRow]] = relationship(
        back_populates="card", cascade="all, delete-orphan", passive_deletes=True
    )


class ReviewLogRow(Base):
    """Append-only review history."""

    __tablename__ = "review_log"
    __table_args__ = (
        CheckConstraint("grade BETWEEN 0 AND 3", name="ck_review_log_grade"),
        Index("ix_review_log_reviewed_at", "reviewed_at", "id"),
        Index("ix_review_log_card", "card_id"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_interval: Mapped[int] = mapped_column(Integer, nullable=False)


class DeckRow(Base):
    """A named deck. Names are not unique."""

    __tablename__ = "decks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    memberships: Mapped[list[DeckMembershipRow]] = relationship(
        back_populates="deck", cascade="all, delete-orphan", passive_deletes=True
    )


class DeckMembershipRow(Base):
    """Many-to-many link between decks and cards."""

    __tablename__ = "deck_cards"

    deck_id: Mapped[str] = mapped_column(
        ForeignKey("decks.id", ondelete="CASCADE"), primary_key=True
    )
    card_id: Mapped[int] = mapped_column(
        ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True, index=True
    )

    deck: Mapped[DeckRow] = relationship(back_populates="memberships")
    card: Mapped[CardRow] = relationship(back_populates="memberships")


class FileRow(Base):
    """Attachment content, stored once per distinct sha256 digest."""

    __tablename__ = "files"
    __table_args__ = (CheckConstraint("ref_count >= 1", name="ck_files_ref_count"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    ext: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    ref_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class CardFileRow(Base):
    """Link between a card and an attachment."""

    __tablename__ = "card_files"

    card_id: Mapped[int] = mapped_column(
        ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True
    )
    file_id: Mapped[str] = mapped_column(ForeignKey("files.id"), primary_key=True, index=True)
