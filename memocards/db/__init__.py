from .base import Base, UTCDateTime
from .database import create_store_engine, init_db, make_session_factory, session_scope
from .models import CardFileRow, CardRow, DeckMembershipRow, DeckRow, FileRow, ReviewLogRow

__all__ = [
    "Base",
    "UTCDateTime",
    "CardRow",
    "CardFileRow",
    "DeckRow",
    "DeckMembershipRow",
    "FileRow",
    "ReviewLogRow",
    "create_store_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
]
