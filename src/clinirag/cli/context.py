"""clinirag context: assemble retrieval context for a query."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from clinirag.cli.common import (
    build_gateway,
    load_cli_config,
    open_store,
    resolve_db,
)
from clinirag.cli.errors import err_no_db
from clinirag.rag.context import ContextAssembler

console = Console()


def context_cmd(
    query: Annotated[
        str,
        typer.Option("--query", "-q", help="Question or topic to retrieve notes for."),
    ],
    subject: Annotated[
        str | None,
        typer.Option("--subject", help="Restrict retrieval to one patient id."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", min=1, help="Maximum records (default: retrieval.limit)."),
    ] = None,
    min_similarity: Annotated[
        float | None,
        typer.Option(
            "--min-similarity",
            min=0.0,
            max=1.0,
            help="Similarity floor (default: retrieval.min_similarity).",
        ),
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
    """Print the context block a downstream prompt would receive."""
    cfg = load_cli_config(console, mock=mock)
    db_path = resolve_db(cfg, db)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    gateway = build_gateway(console, cfg)
    store = open_store(console, cfg, db_path)
    try:
        block = ContextAssembler(gateway, store, cfg.retrieval).build_context(
            query,
            subject_id=subject,
            limit=limit,
            min_similarity=min_similarity,
        )
    finally:
        store.close()

    typer.echo(block.text)
    source = "recent notes (no similarity matches)" if block.used_fallback else "similarity search"
    console.print(f"\n[dim]{block.record_count} record(s) from {source}[/]")
