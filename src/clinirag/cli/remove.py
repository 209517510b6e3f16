"""clinirag remove: delete every chunk of one note.

Usage:
  clinirag remove --note doc-123
  clinirag remove --note doc-123 --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from clinirag.cli.common import load_cli_config, open_store, resolve_db
from clinirag.cli.errors import err_no_db, err_note_not_found

console = Console()


def remove_cmd(
    note: Annotated[
        str,
        typer.Option("--note", "-n", help="Note id to remove."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default: store.path)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a note's chunks and vectors from the store."""
    cfg = load_cli_config(console)
    db_path = resolve_db(cfg, db)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    store = open_store(console, cfg, db_path)
    try:
        chunk_count = store.count_chunks(note_id=note)
        if chunk_count == 0:
            console.print(err_note_not_found(note))
            raise typer.Exit(0)

        console.print(f"\nRemove note: [bold]{escape(note)}[/]  ({chunk_count} chunks)")
        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        deleted = store.delete_by_note(note)
        console.print(f"\n[green]✓[/] Removed: {escape(note)}")
        console.print(f"  {deleted} chunks deleted")
    finally:
        store.close()
