"""
Deck archives and store backups.

A deck archive is a gzip-compressed tar file with the ``.deck`` extension
holding a ``deck`` member (JSON describing the deck name and its cards,
optionally with their scheduling state) and a ``storage/`` directory with
the files attached to those cards, one member per distinct file. Archives
are portable between stores; importing always creates a new deck and new
card ids, in a single transaction.

A backup is the full CardStore.dump() snapshot as JSON. Restoring it
reproduces ids, versions and review history exactly.
"""

from __future__ import annotations

import io
import json
import tarfile
from datetime import datetime
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidInputError, NotFoundError
from .models import CardDraft, SchedulingState
from .scheduler import EASE_FLOOR
from .state_store import CardStore

DECK_FILE_EXT = ".deck"
DECK_MEMBER = "deck"
STORAGE_DIR = "storage"
ARCHIVE_FORMAT = 1


# ========================================
# Archive Models
# ========================================


class ArchivedScheduling(BaseModel):
    """Scheduling state as stored in a deck archive."""

    ease_factor: float = Field(..., ge=EASE_FLOOR)
    interval_days: int = Field(..., ge=0)
    repetitions: int = Field(..., ge=0)
    lapses: int = Field(0, ge=0)
    due_at: datetime
    last_reviewed_at: datetime | None = None


class ArchivedCard(BaseModel):
    front: str = Field(..., min_length=1)
    back: str = ""
    scheduling: ArchivedScheduling | None = None
    files: list[str] = Field(default_factory=list, description="Names under storage/")


class DeckArchive(BaseModel):
    """Contents of the ``deck`` member of a .deck file."""

    format: int = Field(ARCHIVE_FORMAT, description="Archive layout version")
    id: str = Field(..., description="Deck id in the exporting store")
    name: str = Field(..., min_length=1)
    cards: list[ArchivedCard] = Field(default_factory=list)


def archive_filename(deck_name: str) -> str:
    """File name for a deck archive: spaces and separators become underscores."""
    safe = deck_name.strip().replace(" ", "_").replace("/", "_").replace("\\", "_")
    return f"{safe}{DECK_FILE_EXT}"


# ========================================
# Deck Archives
# ========================================


def export_deck(
    store: CardStore,
    deck_id: str,
    directory: str | Path,
    *,
    include_scheduling: bool = True,
) -> Path:
    """
    Write a deck and its cards to ``<directory>/<deck name>.deck``.

    Args:
        store: Source store
        deck_id: Deck to export
        directory: Target directory (created if missing)
        include_scheduling: Also store each card's scheduling state

    Returns:
        Path of the written archive
    """
    deck = store.get_deck(deck_id)
    cards = []
    storage: dict[str, bytes] = {}
    for card_id in deck.card_ids:
        card = store.get_card(card_id)
        attachments = store.card_attachments(card_id)
        for attachment in attachments:
            storage[attachment.filename] = attachment.data
        scheduling = None
        if include_scheduling:
            s = card.state
            scheduling = ArchivedScheduling(
                ease_factor=s.ease_factor,
                interval_days=s.interval_days,
                repetitions=s.repetitions,
                lapses=s.lapses,
                due_at=s.due_at,
                last_reviewed_at=s.last_reviewed_at,
            )
        cards.append(
            ArchivedCard(
                front=card.front,
                back=card.back,
                scheduling=scheduling,
                files=[a.filename for a in attachments],
            )
        )

    payload = DeckArchive(id=deck.id, name=deck.name, cards=cards).model_dump_json().encode("utf-8")

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / archive_filename(deck.name)

    mtime = int(store.clock.now().timestamp())
    with tarfile.open(path, "w:gz") as tar:
        info = tarfile.TarInfo(DECK_MEMBER)
        info.size = len(payload)
        info.mtime = mtime
        tar.addfile(info, io.BytesIO(payload))

        folder = tarfile.TarInfo(STORAGE_DIR)
        folder.type = tarfile.DIRTYPE
        folder.mode = 0o755
        folder.mtime = mtime
        tar.addfile(folder)
        for name, data in sorted(storage.items()):
            info = tarfile.TarInfo(f"{STORAGE_DIR}/{name}")
            info.size = len(data)
            info.mtime = mtime
            tar.addfile(info, io.BytesIO(data))

    logger.info(
        f"Exported deck '{deck.name}' ({len(cards)} cards, {len(storage)} files) to {path}"
    )
    return path


def read_deck_archive(path: str | Path) -> DeckArchive:
    """
    Parse and validate a .deck file without touching any store.

    Raises:
        NotFoundError: the file does not exist
        InvalidInputError: the file is not a valid deck archive
    """
    return _read_archive(path)[0]


def _read_archive(path: str | Path) -> tuple[DeckArchive, dict[str, bytes]]:
    """The validated deck member plus the contents of storage/ by file name."""
    path = Path(path)
    if not path.is_file():
        raise NotFoundError("archive", str(path))

    storage: dict[str, bytes] = {}
    try:
        with tarfile.open(path, "r:gz") as tar:
            member = tar.extractfile(DECK_MEMBER)
            if member is None:
                raise InvalidInputError(f"{path.name}: '{DECK_MEMBER}' is not a file")
            raw = member.read()
            for info in tar.getmembers():
                folder, _, name = info.name.partition("/")
                if folder != STORAGE_DIR or not info.isfile():
                    continue
                if not name or "/" in name or name in (".", ".."):
                    raise InvalidInputError(f"{path.name}: bad storage entry '{info.name}'")
                storage[name] = tar.extractfile(info).read()
    except KeyError:
        raise InvalidInputError(f"{path.name}: missing '{DECK_MEMBER}' member") from None
    except (tarfile.TarError, OSError, EOFError) as e:
        raise InvalidInputError(f"{path.name}: not a deck archive ({e})") from e

    try:
        archive = DeckArchive.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidInputError(f"{path.name}: malformed deck data: {e}") from e

    if archive.format != ARCHIVE_FORMAT:
        raise InvalidInputError(f"{path.name}: unsupported archive format {archive.format}")
    if not archive.name.strip() or any(not card.front.strip() for card in archive.cards):
        raise InvalidInputError(f"{path.name}: deck name and card fronts must not be blank")
    missing = sorted({name for card in archive.cards for name in card.files} - storage.keys())
    if missing:
        raise InvalidInputError(f"{path.name}: {len(missing)} attached files missing from storage/")
    return archive, storage


def import_deck(store: CardStore, path: str | Path, *, seed_scheduling: bool = False) -> str:
    """
    Import a .deck file as a new deck with new cards.

    The archive is fully validated before anything is written, and the deck,
    its cards and their attachments are created in one transaction.

    Args:
        store: Destination store
        path: Archive to read
        seed_scheduling: Keep the archived scheduling state instead of
            starting every card fresh

    Returns:
        Id of the newly created deck
    """
    archive, storage = _read_archive(path)

    drafts = []
    for archived in archive.cards:
        state = None
        if seed_scheduling and archived.scheduling is not None:
            s = archived.scheduling
            state = SchedulingState(
                ease_factor=s.ease_factor,
                interval_days=s.interval_days,
                repetitions=s.repetitions,
                due_at=s.due_at,
                lapses=s.lapses,
                last_reviewed_at=s.last_reviewed_at,
            )
        drafts.append(
            CardDraft(
                front=archived.front,
                back=archived.back,
                state=state,
                attachments=tuple((name, storage[name]) for name in archived.files),
            )
        )

    deck_id = store.create_deck_with_cards(archive.name, drafts)
    logger.info(f"Imported deck '{archive.name}' ({len(archive.cards)} cards) as {deck_id}")
    return deck_id


# ========================================
# Store Backups
# ========================================


def backup_store(store: CardStore, path: str | Path) -> Path:
    """Write a complete JSON snapshot of the store."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    snapshot = store.dump()
    path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
    logger.info(f"Backed up {len(snapshot['cards'])} cards to {path}")
    return path


def restore_store(store: CardStore, path: str | Path) -> int:
    """
    Restore a backup into an empty store.

    Returns:
        Number of cards restored
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError("backup", str(path))
    try:
        snapshot = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidInputError(f"{path.name}: not a JSON backup ({e})") from e
    if not isinstance(snapshot, dict):
        raise InvalidInputError(f"{path.name}: not a store backup")

    restored = store.load(snapshot)
    logger.info(f"Restored {restored} cards from {path}")
    return restored
