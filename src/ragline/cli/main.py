"""ragline CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragline.cli.common import setup_logging
from ragline.cli.ingest import ingest_cmd, reprocess_cmd
from ragline.cli.questions import questions_cmd
from ragline.cli.remove import remove_cmd
from ragline.cli.search import search_cmd
from ragline.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("ragline")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragline {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragline",
    help=(
        "ragline — contextual-retrieval knowledge pipeline.\n\n"
        "  ragline ingest     Chunk, annotate and embed files or pasted text.\n"
        "  ragline search     Hybrid (vector + keyword) search in one project.\n"
        "  ragline questions  Cluster recent visitor questions."
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
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pipeline activity (DEBUG)."),
    ] = False,
) -> None:
    """ragline — contextual-retrieval knowledge pipeline."""
    if verbose:
        setup_logging("DEBUG", force=True)


app.command("ingest")(ingest_cmd)
app.command("reprocess")(reprocess_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)
app.command("search")(search_cmd)
app.command("questions")(questions_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragline version."""
    typer.echo(f"ragline {_installed_version()}")


if __name__ == "__main__":
    app()
