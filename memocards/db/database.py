from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base


def _is_memory_database(database: str | None) -> bool:
    return database in (None, "", ":memory:")


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """Durability and integrity settings applied to every SQLite connection."""
    # pysqlite must not open transactions itself; _begin_immediate does
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


def _begin_immediate(conn) -> None:
    """
    Start every SQLite transaction holding the write lock.

    Concurrent writers then wait on the busy timeout and see each other's
    committed versions, instead of failing on a stale WAL snapshot.
    """
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the card store.

    SQLite file paths may use "~"; parent directories are created on demand.
    In-memory SQLite shares one connection so every session sees the same data;
    callers must not run two transactions on it at once (CardStore serializes
    them with a lock).
    """
    url = make_url(database_url)
    kwargs: dict = {}

    is_sqlite = url.get_backend_name() == "sqlite"
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 5}
        if _is_memory_database(url.database):
            kwargs["poolclass"] = StaticPool
        else:
            db_path = Path(url.database).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = url.set(database=str(db_path))

    engine = create_engine(url, echo=echo, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragmas)
        event.listen(engine, "begin", _begin_immediate)
    return engine


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database tables initialized ({engine.url.render_as_string(hide_password=True)})")


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
