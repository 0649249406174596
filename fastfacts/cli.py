"""
fastfacts: Math fact fluency drills in the terminal.

A Rich terminal interface over the drill engine. Progress lives in the
local SQLite store, or on a remote progress API when one is configured.

Commands:
- fastfacts drill    - Run a drill session for one stage
- fastfacts status   - Show how many facts sit in each stage
- fastfacts stats    - Show progress statistics
- fastfacts seed     - Register a track's facts as not started
- fastfacts reset    - Clear progress
"""
from __future__ import annotations

import random
import sys
from pathlib import Path
from typing import Optional

import httpx
import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from config import get_settings
from fastfacts.core.errors import FluencyError, InvariantViolation
from fastfacts.core.stages import FluencyStage
from fastfacts.drill.deck import FactDeck, build_track
from fastfacts.drill.session import AttemptResult, DrillSession, SessionSummary
from fastfacts.drill.timer import TimerZone
from fastfacts.progress.activity import SessionActivityRecorder
from fastfacts.progress.http_client import HttpProgressClient
from fastfacts.progress.outbox import OutboxEntry, ProgressOutbox
from fastfacts.progress.state_store import StateStore

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="fastfacts",
    help="fastfacts: Math fact fluency drills",
    no_args_is_help=True,
)
console = Console()


# =============================================================================
# Styling
# =============================================================================

STYLES = {
    "correct": "bold green",
    "slow": "bold yellow",
    "incorrect": "bold red",
    "info": "bold cyan",
}

ZONE_STYLES = {
    TimerZone.GREEN: "green",
    TimerZone.YELLOW: "yellow",
    TimerZone.EXPIRED: "red",
}


def style_stage(stage: FluencyStage) -> str:
    """Get styled stage name."""
    return f"[{stage.color}]{stage.display_name}[/{stage.color}]"


# =============================================================================
# Shared Options
# =============================================================================

DeckOption = typer.Option(None, "--deck", "-d", help="JSON deck of facts")
OperationOption = typer.Option(
    "multiplication", "--operation", "-o", help="Built-in track operation"
)
MaxOperandOption = typer.Option(12, "--max-operand", "-m", help="Largest operand of the built-in track")
UserOption = typer.Option(None, "--user", "-u", help="Learner id (default from settings)")
TrackOption = typer.Option(None, "--track", "-t", help="Track id (default from settings)")
DatabaseOption = typer.Option(None, "--db", help="SQLAlchemy URL of the progress store")


def _learner(user: str | None, track: str | None) -> tuple[str, str]:
    settings = get_settings()
    return user or settings.user_id, track or settings.track_id


def _open_store(database_url: str | None, track_id: str) -> StateStore:
    return StateStore(database_url or get_settings().database_url, track_id=track_id)


def _close_backends(store: StateStore, remote: HttpProgressClient | None) -> None:
    if remote is not None:
        remote.close()
    store.close()


def _load_deck(deck_path: Path | None, operation: str, max_operand: int) -> FactDeck:
    try:
        if deck_path is not None:
            return FactDeck.load(deck_path)
        return build_track(operation, max_operand)
    except FileNotFoundError:
        console.print(f"[red]Deck not found: {deck_path}[/red]")
        raise typer.Exit(1)
    except InvariantViolation as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _parse_stage(value: str) -> FluencyStage:
    try:
        stage = FluencyStage.parse(value)
    except InvariantViolation:
        choices = ", ".join(s.value for s in FluencyStage if s.is_drillable)
        console.print(f"[red]Unknown stage {value!r}.[/red] Choose one of: {choices}")
        raise typer.Exit(2)
    if not stage.is_drillable:
        console.print(f"[red]{stage.display_name} cannot be drilled.[/red]")
        raise typer.Exit(2)
    return stage


# =============================================================================
# Display Helpers
# =============================================================================

def display_item(session: DrillSession, index: int) -> None:
    """Display the live practice item."""
    item = session.current_item
    config = session.timer.config
    header = (
        f"#{index}  |  {style_stage(session.stage)}  |  "
        f"answer within {config.duration:.1f}s"
    )
    console.print(
        Panel(
            f"[bold]{item.prompt} = ?[/bold]",
            title=header,
            title_align="left",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def display_result(result: AttemptResult) -> None:
    """Display feedback for an answer or timeout."""
    answer = f"{result.item.prompt} = {result.expected}"
    if result.timed_out:
        console.print(f"[{STYLES['incorrect']}]Time's up![/] {answer}")
    elif result.creditable:
        console.print(f"[{STYLES['correct']}]✓ Correct[/] [dim]({result.zone.value})[/dim]")
    elif result.is_correct:
        console.print(f"[{STYLES['slow']}]Correct, but too slow for credit[/]")
    else:
        console.print(f"[{STYLES['incorrect']}]✗[/] {answer}")

    if result.mastered:
        console.print("[dim]Item mastered for this session.[/dim]")
    if result.advance is not None:
        console.print(
            f"[{STYLES['info']}]Fact {result.advance.fact_id} moved up to "
            f"{result.advance.to_stage.display_name}![/]"
        )


def _display_session_summary(summary: SessionSummary) -> None:
    """Display end-of-session summary."""
    stats = summary.stats
    lines = [
        "[bold]Session Complete![/bold]\n",
        f"Duration: {stats['duration_minutes']:.1f} minutes",
        f"Answers: {stats['total_attempts']} ({stats['accuracy_percent']:.0f}% correct)",
        f"In the green: {stats['green_percent']:.0f}%",
        f"Items mastered: {summary.mastered_items}/{summary.items}",
        f"Facts moved up: {len(summary.advances)}",
    ]
    if summary.struggling:
        lines.append(f"\n[yellow]Keep practicing: {', '.join(summary.struggling[:5])}[/yellow]")
    console.print()
    console.print(Panel("\n".join(lines), title="Summary", border_style="green"))


# =============================================================================
# Commands
# =============================================================================

@app.command()
def drill(
    stage: str = typer.Option("learning", "--stage", "-s", help="Stage to practice"),
    deck_path: Optional[Path] = DeckOption,
    operation: str = OperationOption,
    max_operand: int = MaxOperandOption,
    user: Optional[str] = UserOption,
    track: Optional[str] = TrackOption,
    database_url: Optional[str] = DatabaseOption,
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for item order"),
) -> None:
    """
    Run an interactive drill session.

    Items repeat until each one reaches its mastery score. Answers are
    timed from the moment the item is shown.
    """
    settings = get_settings()
    drill_stage = _parse_stage(stage)
    user_id, track_id = _learner(user, track)
    deck = _load_deck(deck_path, operation, max_operand)

    store = _open_store(database_url, track_id)
    remote = None
    if settings.api_base_url:
        remote = HttpProgressClient(
            settings.api_base_url, track_id=track_id, timeout=settings.api_timeout_seconds
        )
    backend = remote or store

    def on_save_failed(entry: OutboxEntry) -> None:
        logger.warning("Progress for {} was not saved: {}", entry.fact_id, entry.last_error)

    outbox = ProgressOutbox(backend, on_failure=on_save_failed, **settings.get_outbox_config())
    activity = SessionActivityRecorder(backend, **settings.get_activity_config())

    try:
        session = DrillSession.start(
            backend,
            user_id,
            track_id,
            drill_stage,
            deck,
            activity=activity,
            outbox=outbox,
            accuracy_window=settings.accuracy_window_seconds,
            rng=random.Random(seed if seed is not None else settings.random_seed),
        )
    except (FluencyError, httpx.HTTPError) as e:
        console.print(f"[red]Could not start the drill: {e}[/red]")
        _close_backends(store, remote)
        raise typer.Exit(1)

    if not session.items:
        console.print(
            f"\n[green]Nothing to practice in {drill_stage.display_name}.[/green] "
            "Seed a track or pick another stage."
        )
        _close_backends(store, remote)
        raise typer.Exit(0)

    console.print(f"\n[bold cyan]fastfacts[/bold cyan] - {style_stage(drill_stage)}")
    console.print(f"{len(session.facts)} facts, {len(session.items)} items. Ctrl+C to stop.\n")

    session_id = store.start_session(user_id, track_id, drill_stage)
    outbox.start()
    shown_notices: set[str] = set()

    try:
        index = 0
        while session.advance_to_next() is not None:
            index += 1
            display_item(session, index)
            raw = Prompt.ask("[dim]Answer[/dim]", default="", show_default=False)
            result = session.submit_answer(raw)
            if result is not None:
                display_result(result)
            for notice in session.notices:
                if notice not in shown_notices:
                    shown_notices.add(notice)
                    console.print(f"[yellow]{notice}[/yellow]")
            console.print()
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Session stopped.[/yellow]")
    finally:
        summary = session.summary()
        session.close()
        outbox.stop()
        if remote is not None:
            remote.close()

    store.end_session(
        session_id,
        attempts=summary.stats["total_attempts"],
        accuracy=summary.stats["accuracy_percent"] / 100,
        facts_advanced=len(summary.advances),
    )
    store.close()
    _display_session_summary(summary)


@app.command()
def status(
    user: Optional[str] = UserOption,
    track: Optional[str] = TrackOption,
    database_url: Optional[str] = DatabaseOption,
) -> None:
    """Show how many facts sit in each stage."""
    user_id, track_id = _learner(user, track)
    store = _open_store(database_url, track_id)
    counts = store.count_by_stage(user_id, track_id)
    store.close()

    table = Table(title=f"{user_id} on {track_id}")
    table.add_column("Stage")
    table.add_column("Facts", justify="right")
    for stage, count in counts.items():
        table.add_row(style_stage(stage), str(count))
    console.print(table)

    total = sum(counts.values())
    if total == 0:
        console.print("[dim]No facts yet. Run `fastfacts seed` first.[/dim]")


@app.command()
def stats(
    user: Optional[str] = UserOption,
    database_url: Optional[str] = DatabaseOption,
) -> None:
    """Show progress statistics and recent sessions."""
    user_id, track_id = _learner(user, None)
    store = _open_store(database_url, track_id)
    db_stats = store.get_stats(user_id)
    sessions = store.get_session_history(user_id, limit=5)
    store.close()

    console.print("\n[bold cyan]Progress Statistics[/bold cyan]")
    console.print("=" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Facts tracked", str(db_stats["facts_tracked"]))
    table.add_row("Total answers", str(db_stats["total_attempts"]))
    table.add_row("Accuracy", f"{db_stats['accuracy_percent']:.1f}%")
    table.add_row("Sessions completed", str(db_stats["sessions_completed"]))
    table.add_row("Stage entries", str(db_stats["stage_events"]))
    console.print(table)

    if sessions:
        console.print("\n[bold]Recent Sessions[/bold]")
        session_table = Table()
        session_table.add_column("Started")
        session_table.add_column("Stage")
        session_table.add_column("Answers")
        session_table.add_column("Accuracy")
        session_table.add_column("Moved up")

        for s in sessions:
            session_table.add_row(
                s.started_at.replace("T", " "),
                style_stage(FluencyStage.parse(s.stage)),
                str(s.attempts),
                f"{s.accuracy * 100:.0f}%",
                str(s.facts_advanced),
            )
        console.print(session_table)


@app.command()
def seed(
    deck_path: Optional[Path] = DeckOption,
    operation: str = OperationOption,
    max_operand: int = MaxOperandOption,
    user: Optional[str] = UserOption,
    track: Optional[str] = TrackOption,
    database_url: Optional[str] = DatabaseOption,
) -> None:
    """Register a track's facts as not started."""
    user_id, track_id = _learner(user, track)
    deck = _load_deck(deck_path, operation, max_operand)
    store = _open_store(database_url, track_id)
    added = store.seed_facts(user_id, track_id, deck.fact_ids)
    store.close()

    console.print(
        f"[green]Seeded {added} new facts[/green] from {deck.name} "
        f"({len(deck) - added} already tracked) on {track_id}"
    )


@app.command()
def reset(
    user: Optional[str] = UserOption,
    all_learners: bool = typer.Option(False, "--all", help="Reset every learner"),
    database_url: Optional[str] = DatabaseOption,
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Clear progress for a fresh start (a backup is written first)."""
    user_id, track_id = _learner(user, None)
    if all_learners:
        msg = "Reset ALL progress for every learner? This cannot be undone!"
    else:
        msg = f"Reset all progress for {user_id}?"

    if not confirm and not Confirm.ask(msg, default=False):
        raise typer.Exit(0)

    store = _open_store(database_url, track_id)
    count = store.reset(user_id=None if all_learners else user_id)
    store.close()
    console.print(f"[green]Reset {count} fact records.[/green]")


# =============================================================================
# Entry Point
# =============================================================================

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
        logger.add(settings.log_file, level="DEBUG", rotation="5 MB", retention=3)

    app()


if __name__ == "__main__":
    main()
