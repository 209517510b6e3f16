"""clinirag stats: store totals and the most recent chunks."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from clinirag.cli.common import load_cli_config, open_store, resolve_db
from clinirag.cli.errors import err_no_db
from clinirag.db.models import StoreStats

console = Console()


def stats_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default: store.path)."),
    ] = None,
) -> None:
    """Show chunk, patient and note counts plus recently stored chunks."""
    cfg = load_cli_config(console)
    db_path = resolve_db(cfg, db)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    store = open_store(console, cfg, db_path)
    try:
        stats = store.stats()
    finally:
        store.close()

    _show_totals(db_path, stats)
    _show_recent(stats)


def _show_totals(db_path: Path, stats: StoreStats) -> None:
    size_mb = db_path.stat().st_size / (1024 * 1024)
    lines = [
        f"Database:  {escape(str(db_path))} ({size_mb:.1f} MB)",
        f"Chunks: [bold]{stats.total_chunks:,}[/]  |  "
        f"Patients: [bold]{stats.unique_subjects:,}[/]  |  "
        f"Notes: [bold]{stats.unique_notes:,}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Chunk Store[/]", expand=False))


def _show_recent(stats: StoreStats) -> None:
    if not stats.sample_recent:
        console.print("[dim]No notes ingested yet.[/]")
        return

    table = Table(title="Recent chunks", title_justify="left")
    table.add_column("Patient")
    table.add_column("Note")
    table.add_column("Type")
    table.add_column("Chunk", justify="right")
    table.add_column("Stored", style="dim")
    for chunk in stats.sample_recent:
        table.add_row(
            escape(chunk.subject_id),
            escape(chunk.note_id),
            escape(str(chunk.metadata.get("note_type") or "Unknown")),
            f"{chunk.chunk_index + 1}/{chunk.chunk_count}",
            (chunk.created_at or "")[:16],
        )
    console.print(table)
