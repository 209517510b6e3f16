"""clinirag rich error messages with actionable fixes.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from clinirag.cli.errors import err_no_db
    console.print(err_no_db(".clinirag.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape


def err_no_api_key(provider: str, env_var: str | None = None) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'gemini'. Set:  export GEMINI_API_KEY=...
    """
    env_var = env_var or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{escape(provider)}'.\n"
        f"  Set:  export {env_var}=...\n"
        "  Or run with --mock for offline plumbing tests."
    )


def err_no_db(db_path: str = ".clinirag.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{escape(db_path)}'.\n"
        "  Run:  clinirag ingest --source <bundle.json | directory>"
    )


def err_no_sources() -> str:
    return (
        "[red]Error:[/] No --source specified.\n"
        "  Use:  clinirag ingest --source <bundle.json | directory>"
    )


def err_source_missing(source: str) -> str:
    """A --source path does not exist."""
    return (
        f"[red]Error:[/] Bundle source not found: '{escape(source)}'\n"
        "  Check the path, or pass a directory of FHIR bundle *.json files."
    )


def err_config(message: str) -> str:
    """Invalid configuration value or file."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix clinirag.yaml (or ~/.clinirag/config.yaml) and retry."
    )


def err_dimension_mismatch(message: str) -> str:
    """Embedding width does not match the stored vector table."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch.\n"
        f"  {escape(message)}\n"
        "  Set embedding.dimensions to match the model, or use a fresh --db."
    )


def err_note_not_found(note_id: str) -> str:
    """Note id has no stored chunks."""
    return (
        f"[yellow]Note not found:[/] '{escape(note_id)}' has no stored chunks.\n"
        "  Run:  clinirag stats  to see recently stored notes."
    )
