"""clinirag CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from clinirag.cli.context import context_cmd
from clinirag.cli.ingest import ingest_cmd
from clinirag.cli.remove import remove_cmd
from clinirag.cli.stats import stats_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("clinirag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"clinirag {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="clinirag",
    help=(
        "clinirag: clinical-note retrieval for LLM prompts.\n\n"
        "  clinirag ingest   Load FHIR bundles: extract, clean, chunk, embed, store.\n"
        "  clinirag context  Build the retrieval context for a query."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """clinirag: clinical-note retrieval for LLM prompts."""


app.command("ingest")(ingest_cmd)
app.command("context")(context_cmd)
app.command("stats")(stats_cmd)
app.command("remove")(remove_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed clinirag version."""
    typer.echo(f"clinirag {_installed_version()}")


if __name__ == "__main__":
    app()
