"""
memocards - a spaced-repetition engine for memorization cards.

SM-2 scheduling, a transactional SQLAlchemy card store, review sessions
and decks.
"""

__version__ = "1.0.0"

from .clock import Clock, FixedClock, SystemClock
from .decks import DeckManager, DeckSummary
from .engine import FlashcardEngine
from .errors import (
    ConflictError,
    EngineError,
    InvalidInputError,
    NotFoundError,
    ReviewConflictError,
    StoreIOError,
)
from .models import Attachment, Card, CardDraft, Deck, Grade, ReviewLogEntry, SchedulingState
from .scheduler import SchedulerConfig, SM2Scheduler
from .session import ReviewSession, SessionStatus, SessionSummary
from .state_store import CardStore

__all__ = [
    "__version__",
    "Attachment",
    "Card",
    "CardDraft",
    "CardStore",
    "Clock",
    "ConflictError",
    "Deck",
    "DeckManager",
    "DeckSummary",
    "EngineError",
    "FixedClock",
    "FlashcardEngine",
    "Grade",
    "InvalidInputError",
    "NotFoundError",
    "ReviewConflictError",
    "ReviewLogEntry",
    "ReviewSession",
    "SchedulerConfig",
    "SchedulingState",
    "SessionStatus",
    "SessionSummary",
    "SM2Scheduler",
    "StoreIOError",
    "SystemClock",
]
