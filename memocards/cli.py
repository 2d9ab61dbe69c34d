"""
memocards CLI - spaced-repetition flashcards in the terminal.

Usage:
    memocards add "bonjour" "hello"      # Create a card
    memocards due                        # List due cards
    memocards attach 1 photo.png         # Attach a file to card 1
    memocards review                     # Interactive review session
    memocards deck create French         # Create a deck
    memocards deck add French 1 2 3      # Put cards in it
    memocards export French ./archives   # Write French.deck
    memocards backup cards.json          # Full JSON backup

The store location comes from MEMOCARDS_DATABASE_URL or --db.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import __version__
from .archive import backup_store, export_deck, import_deck, restore_store
from .clock import to_utc
from .config import get_settings
from .engine import FlashcardEngine
from .errors import EngineError, StoreIOError
from .models import Card, Grade
from .session import SessionStatus

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="memocards",
    help="Spaced-repetition flashcards with SM-2 scheduling",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

deck_app = typer.Typer(name="deck", help="Manage decks", no_args_is_help=True)
app.add_typer(deck_app, name="deck")

console = Console()

GRADE_STYLES = {
    Grade.FAIL: "red",
    Grade.HARD: "yellow",
    Grade.GOOD: "green",
    Grade.EASY: "cyan",
}


@contextmanager
def open_engine(ctx: typer.Context) -> Generator[FlashcardEngine, None, None]:
    """Open the configured store; any engine error becomes exit code 1."""
    settings = get_settings()
    db_url = (ctx.obj or {}).get("db")
    if db_url:
        settings = settings.model_copy(update={"database_url": db_url})

    engine = None
    try:
        engine = FlashcardEngine.from_settings(settings)
        yield engine
    except EngineError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1) from e
    finally:
        if engine is not None:
            engine.close()


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _card_panel(card: Card, *, reveal: bool) -> Panel:
    body = f"[bold]{escape(card.front)}[/bold]"
    if reveal:
        body += f"\n\n{escape(card.back)}"
    return Panel(body, title=f"Card {card.id}", border_style="cyan")


# =============================================================================
# Card Commands
# =============================================================================


@app.command()
def add(
    ctx: typer.Context,
    front: Annotated[str, typer.Argument(help="Prompt side")],
    back: Annotated[str, typer.Argument(help="Answer side")] = "",
    deck: Annotated[str | None, typer.Option("--deck", "-d", help="Deck id or name")] = None,
) -> None:
    """Create a new card, due immediately."""
    with open_engine(ctx) as engine:
        deck_id = engine.decks.resolve(deck).id if deck else None
        card_id = engine.create_card(front, back, deck_id=deck_id)
    console.print(f"[green]✓ Created card {card_id}[/green]")


@app.command()
def show(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
) -> None:
    """Show a card and its scheduling state."""
    with open_engine(ctx) as engine:
        card = engine.get_card(card_id)
        deck_ids = engine.store.decks_for_card(card_id)
        files = engine.attachments(card_id)

    console.print(_card_panel(card, reveal=True))

    s = card.state
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Due", _fmt(s.due_at))
    table.add_row("Interval", f"{s.interval_days}d")
    table.add_row("Ease", f"{s.ease_factor:.2f}")
    table.add_row("Repetitions", str(s.repetitions))
    table.add_row("Lapses", str(s.lapses))
    table.add_row("Last review", _fmt(s.last_reviewed_at))
    table.add_row("Decks", ", ".join(d[:8] for d in deck_ids) or "-")
    table.add_row(
        "Files", ", ".join(f"{f.id[:12]} ({f.ext or 'bin'}, {len(f.data)} bytes)" for f in files) or "-"
    )
    console.print(table)


@app.command()
def edit(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
    front: Annotated[str | None, typer.Option("--front", "-f", help="New prompt side")] = None,
    back: Annotated[str | None, typer.Option("--back", "-b", help="New answer side")] = None,
) -> None:
    """Change card content. Scheduling is unaffected."""
    if front is None and back is None:
        console.print("[yellow]Nothing to change; pass --front and/or --back[/yellow]")
        raise typer.Exit(1)
    with open_engine(ctx) as engine:
        engine.edit_card(card_id, front=front, back=back)
    console.print(f"[green]✓ Updated card {card_id}[/green]")


@app.command()
def delete(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
    purge_history: Annotated[
        bool, typer.Option("--purge-history", help="Also delete its review history")
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete a card."""
    if not yes and not Confirm.ask(f"Delete card {card_id}?", default=False):
        raise typer.Exit(0)
    with open_engine(ctx) as engine:
        engine.delete_card(card_id, purge_history=purge_history)
    console.print(f"[green]✓ Deleted card {card_id}[/green]")


@app.command()
def attach(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
    files: Annotated[list[Path], typer.Argument(help="Files to attach")],
) -> None:
    """Attach files (images, audio, ...) to a card."""
    with open_engine(ctx) as engine:
        attached = [engine.attach_file(card_id, path) for path in files]
    for path, attachment in zip(files, attached):
        console.print(
            f"[green]✓ Attached {escape(path.name)} to card {card_id} as {attachment.id[:12]}[/green]"
        )


@app.command()
def detach(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
    file_id: Annotated[str, typer.Argument(help="Attachment id or id prefix")],
) -> None:
    """Remove an attachment from a card."""
    with open_engine(ctx) as engine:
        matches = [f.id for f in engine.attachments(card_id) if f.id.startswith(file_id)]
        if len(matches) != 1:
            console.print(
                f"[yellow]Card {card_id} has no single attachment matching '{escape(file_id)}'[/yellow]"
            )
            raise typer.Exit(1)
        engine.detach_file(card_id, matches[0])
    console.print(f"[green]✓ Detached {matches[0][:12]} from card {card_id}[/green]")


@app.command()
def due(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option("--deck", "-d", help="Deck id or name")] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum cards")] = 20,
    as_of: Annotated[
        datetime | None, typer.Option("--as-of", help="Cut-off instant (UTC)")
    ] = None,
) -> None:
    """List cards that are due, oldest first."""
    with open_engine(ctx) as engine:
        deck_id = engine.decks.resolve(deck).id if deck else None
        card_ids = engine.list_due(deck_id=deck_id, as_of=to_utc(as_of) if as_of else None, limit=limit)
        cards = [engine.get_card(card_id) for card_id in card_ids]

    if not cards:
        console.print("[green]No cards due. 🎉[/green]")
        return

    table = Table(title=f"Due cards ({len(cards)})")
    table.add_column("ID", justify="right")
    table.add_column("Front")
    table.add_column("Due")
    table.add_column("Interval", justify="right")
    for card in cards:
        table.add_row(
            str(card.id), escape(card.front), _fmt(card.state.due_at), f"{card.state.interval_days}d"
        )
    console.print(table)


@app.command()
def grade(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
    value: Annotated[str, typer.Argument(help="fail/hard/good/easy or 0-3")],
) -> None:
    """Record a single review outside of a session."""
    with open_engine(ctx) as engine:
        parsed = Grade.parse(value)
        state = engine.grade_card(card_id, parsed)
    style = GRADE_STYLES[parsed]
    console.print(
        f"[{style}]{parsed.name}[/{style}] card {card_id}: next review in "
        f"{state.interval_days}d ({_fmt(state.due_at)})"
    )


@app.command()
def review(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option("--deck", "-d", help="Deck id or name")] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Cards per session")] = None,
) -> None:
    """
    Start an interactive review session.

    Grade each card 0-3 (fail, hard, good, easy); q ends the session early.
    """
    with open_engine(ctx) as engine:
        deck_id = engine.decks.resolve(deck).id if deck else None
        session = engine.start_session(deck_id=deck_id, limit=limit)

        if session.status is SessionStatus.COMPLETE:
            console.print("[green]No cards due for review. 🎉[/green]")
            return

        console.print(
            Panel(f"[bold cyan]REVIEW SESSION[/]\nCards: {session.remaining}", border_style="cyan")
        )

        while (card := session.next_card()) is not None:
            console.print(_card_panel(card, reveal=False))
            Prompt.ask("[dim]Press Enter to reveal[/dim]", default="", show_default=False)
            console.print(_card_panel(card, reveal=True))

            answer = Prompt.ask(
                "Grade [0 fail, 1 hard, 2 good, 3 easy, q quit]",
                choices=["0", "1", "2", "3", "q"],
            )
            if answer == "q":
                session.cancel()
                break
            try:
                session.grade(answer)
            except StoreIOError:
                session.abort()
                raise

        summary = session.summary()

    table = Table(title="Session Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Reviewed", str(summary.reviewed))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row("Remaining", str(summary.remaining))
    table.add_row("Accuracy", f"{summary.accuracy_percent:.0f}%")
    console.print(table)


# =============================================================================
# History Commands
# =============================================================================


@app.command()
def history(
    ctx: typer.Context,
    card_id: Annotated[int | None, typer.Argument(help="Card id (all cards if omitted)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Most recent entries")] = 20,
) -> None:
    """Show the review log, oldest first."""
    with open_engine(ctx) as engine:
        entries = engine.store.get_review_log(card_id=card_id, limit=limit)

    if not entries:
        console.print("[dim]No reviews recorded.[/dim]")
        return

    table = Table(title="Review history")
    table.add_column("Card", justify="right")
    table.add_column("Reviewed")
    table.add_column("Grade")
    table.add_column("Interval", justify="right")
    for entry in entries:
        style = GRADE_STYLES[entry.grade]
        table.add_row(
            str(entry.card_id),
            _fmt(entry.reviewed_at),
            f"[{style}]{entry.grade.name}[/{style}]",
            f"{entry.resulting_interval}d",
        )
    console.print(table)


@app.command("purge-history")
def purge_history(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card id")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Permanently delete a card's review history."""
    if not yes and not Confirm.ask(f"Purge history of card {card_id}?", default=False):
        raise typer.Exit(0)
    with open_engine(ctx) as engine:
        removed = engine.store.purge_review_log(card_id)
    console.print(f"[green]✓ Removed {removed} review entries[/green]")


# =============================================================================
# Deck Commands
# =============================================================================


@deck_app.command("create")
def deck_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Deck name")],
) -> None:
    """Create a deck."""
    with open_engine(ctx) as engine:
        deck_id = engine.create_deck(name)
    console.print(f"[green]✓ Created deck '{escape(name)}' ({deck_id})[/green]")


@deck_app.command("list")
def deck_list(ctx: typer.Context) -> None:
    """List decks with card and due counts."""
    with open_engine(ctx) as engine:
        summaries = engine.decks.summaries()

    if not summaries:
        console.print("[dim]No decks yet.[/dim]")
        return

    table = Table(title="Decks")
    table.add_column("ID")
    table.add_column("Name", style="cyan")
    table.add_column("Cards", justify="right")
    table.add_column("Due", justify="right", style="yellow")
    for s in summaries:
        table.add_row(s.deck.id[:8], escape(s.deck.name), str(s.total), str(s.due))
    console.print(table)


@deck_app.command("show")
def deck_show(
    ctx: typer.Context,
    ref: Annotated[str, typer.Argument(help="Deck id, id prefix or name")],
) -> None:
    """Show the cards of a deck."""
    with open_engine(ctx) as engine:
        deck = engine.decks.resolve(ref)
        cards = [engine.get_card(card_id) for card_id in deck.card_ids]

    table = Table(title=f"{escape(deck.name)} ({deck.id[:8]})")
    table.add_column("ID", justify="right")
    table.add_column("Front")
    table.add_column("Due")
    for card in cards:
        table.add_row(str(card.id), escape(card.front), _fmt(card.state.due_at))
    console.print(table)


@deck_app.command("add")
def deck_add(
    ctx: typer.Context,
    ref: Annotated[str, typer.Argument(help="Deck id, id prefix or name")],
    card_ids: Annotated[list[int], typer.Argument(help="Card ids")],
) -> None:
    """Add cards to a deck."""
    with open_engine(ctx) as engine:
        deck = engine.decks.resolve(ref)
        added = engine.decks.add_cards(deck.id, card_ids)
    console.print(f"[green]✓ Added {added} cards to '{escape(deck.name)}'[/green]")


@deck_app.command("remove")
def deck_remove(
    ctx: typer.Context,
    ref: Annotated[str, typer.Argument(help="Deck id, id prefix or name")],
    card_id: Annotated[int, typer.Argument(help="Card id")],
) -> None:
    """Remove a card from a deck. The card itself is kept."""
    with open_engine(ctx) as engine:
        deck = engine.decks.resolve(ref)
        removed = engine.remove_from_deck(deck.id, card_id)
    if removed:
        console.print(f"[green]✓ Removed card {card_id} from '{escape(deck.name)}'[/green]")
    else:
        console.print(f"[yellow]Card {card_id} is not in '{escape(deck.name)}'[/yellow]")


@deck_app.command("delete")
def deck_delete(
    ctx: typer.Context,
    ref: Annotated[str, typer.Argument(help="Deck id, id prefix or name")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete a deck. Its cards are kept."""
    with open_engine(ctx) as engine:
        deck = engine.decks.resolve(ref)
        if not yes and not Confirm.ask(f"Delete deck '{escape(deck.name)}'?", default=False):
            raise typer.Exit(0)
        engine.decks.delete(deck.id)
    console.print(f"[green]✓ Deleted deck '{escape(deck.name)}'[/green]")


# =============================================================================
# Archive Commands
# =============================================================================


@app.command("export")
def export_cmd(
    ctx: typer.Context,
    ref: Annotated[str, typer.Argument(help="Deck id, id prefix or name")],
    directory: Annotated[Path, typer.Argument(help="Output directory")] = Path("."),
    no_scheduling: Annotated[
        bool, typer.Option("--no-scheduling", help="Leave out review progress")
    ] = False,
) -> None:
    """Export a deck to a .deck archive."""
    with open_engine(ctx) as engine:
        deck = engine.decks.resolve(ref)
        path = export_deck(engine.store, deck.id, directory, include_scheduling=not no_scheduling)
    console.print(f"[green]✓ Exported {len(deck)} cards to {escape(str(path))}[/green]")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help=".deck archive")],
    keep_scheduling: Annotated[
        bool, typer.Option("--keep-scheduling", help="Keep archived review progress")
    ] = False,
) -> None:
    """Import a .deck archive as a new deck."""
    with open_engine(ctx) as engine:
        deck_id = import_deck(engine.store, path, seed_scheduling=keep_scheduling)
        deck = engine.decks.get(deck_id)
    console.print(f"[green]✓ Imported '{escape(deck.name)}' with {len(deck)} cards ({deck_id})[/green]")


@app.command()
def backup(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Backup file (JSON)")],
) -> None:
    """Write a full JSON backup of the store."""
    with open_engine(ctx) as engine:
        backup_store(engine.store, path)
    console.print(f"[green]✓ Backup written to {escape(str(path))}[/green]")


@app.command()
def restore(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Backup file (JSON)")],
) -> None:
    """Restore a backup into an empty store."""
    with open_engine(ctx) as engine:
        restored = restore_store(engine.store, path)
    console.print(f"[green]✓ Restored {restored} cards[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"memocards {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    db: Annotated[
        str | None, typer.Option("--db", help="SQLAlchemy URL of the card store")
    ] = None,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version"),
    ] = False,
) -> None:
    """
    Spaced-repetition flashcards with SM-2 scheduling.

    \b
    Quick Start:
      memocards add "question" "answer"
      memocards review
    """
    ctx.obj = {"db": db}


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=3)

    app()


if __name__ == "__main__":
    main()
