"""idx CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from idx.cli.index import index_cmd, init_cmd, update_cmd, watch_cmd
from idx.cli.manage import clean_cmd, prune_cmd, remove_cmd, retry_cmd, skip_cmd
from idx.cli.search import search_cmd
from idx.cli.status import list_cmd, stats_cmd, status_cmd
from idx.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("idx")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"idx {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="idx",
    help=(
        "idx: local, version-accurate semantic index of your dependencies.\n\n"
        "  idx init      Resolve manifests and index every dependency.\n"
        "  idx search    Find dependency code by meaning."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="More log output (-v info, -vv debug)."),
    ] = 0,
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
    """idx: local, version-accurate semantic index of your dependencies."""
    configure_logging(verbose)


app.command("init")(init_cmd)
app.command("update")(update_cmd)
app.command("watch")(watch_cmd)
app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("list")(list_cmd)
app.command("stats")(stats_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)
app.command("prune")(prune_cmd)
app.command("clean")(clean_cmd)
app.command("retry")(retry_cmd)
app.command("skip")(skip_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed idx version."""
    typer.echo(f"idx {_installed_version()}")


if __name__ == "__main__":
    app()
