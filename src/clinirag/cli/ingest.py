"""clinirag ingest: load FHIR bundles into the chunk store.

Each --source is a bundle JSON file or a directory of them (*.json, not
recursive). Ctrl-C stops cooperatively between notes; chunks already stored
stay valid.
"""

from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clinirag.cli.common import (
    build_gateway,
    load_cli_config,
    open_store,
    resolve_db,
)
from clinirag.cli.errors import err_dimension_mismatch, err_no_sources, err_source_missing
from clinirag.exceptions import ConfigurationError
from clinirag.ingest.chunker import TextChunker
from clinirag.ingest.pipeline import IngestPipeline, IngestSummary
from clinirag.ingest.sanitizer import TextSanitizer

console = Console()


def ingest_cmd(
    source: Annotated[
        list[Path] | None,
        typer.Option("--source", "-s", help="Bundle file or directory (repeatable)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default: store.path)."),
    ] = None,
    mock: Annotated[
        bool,
        typer.Option("--mock", help="Use deterministic mock embeddings (no API calls)."),
    ] = False,
) -> None:
    """Extract, clean, chunk and embed clinical notes from FHIR bundles."""
    sources = source or []
    if not sources:
        console.print(err_no_sources())
        raise typer.Exit(1)

    for src in sources:
        if not src.exists():
            console.print(err_source_missing(str(src)))
            raise typer.Exit(1)

    cfg = load_cli_config(console, mock=mock)
    gateway = build_gateway(console, cfg)
    store = open_store(console, cfg, resolve_db(cfg, db))

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        pipeline = IngestPipeline(
            gateway,
            store,
            sanitizer=TextSanitizer.from_config(cfg.sanitizer),
            chunker=TextChunker.from_config(cfg.chunking),
        )
        summary = pipeline.ingest_paths(sources, cancel_event=cancel)
    except ConfigurationError as exc:
        console.print(err_dimension_mismatch(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        signal.signal(signal.SIGINT, previous)
        store.close()

    _print_summary(summary)


def _print_summary(summary: IngestSummary) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Files processed", str(summary.files_processed))
    table.add_row("Notes extracted", str(summary.notes_extracted))
    table.add_row("Notes accepted", str(summary.notes_accepted))
    table.add_row("Notes rejected", str(summary.notes_rejected))
    for reason, count in sorted(summary.rejection_reasons.items()):
        table.add_row(f"  {reason}", str(count))
    table.add_row("Chunks stored", str(summary.chunks_inserted))
    if summary.chunks_dropped:
        table.add_row("Chunks dropped", f"[yellow]{summary.chunks_dropped}[/]")
    console.print(table)

    for error in summary.errors:
        console.print(f"  [red]✗[/] {escape(error)}", highlight=False)

    if summary.cancelled:
        console.print("[yellow]Ingest cancelled.[/] Chunks stored so far are kept.")
    elif summary.errors:
        console.print(f"[yellow]Done with {len(summary.errors)} error(s).[/]")
    else:
        console.print("[green]✓[/] Ingest complete")
