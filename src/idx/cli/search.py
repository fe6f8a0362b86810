"""idx search: semantic search over indexed dependency code."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.panel import Panel
from rich.syntax import Syntax

from idx.cli.common import console, open_service
from idx.cli.errors import err_embedding, err_model_mismatch
from idx.errors import EmbeddingError, ModelMismatchError
from idx.search import SearchFilters, SearchResult

# Lines of each hit shown unless --full is given.
_PREVIEW_LINES = 20

_SYNTAX_LEXERS = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".py": "python",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".md": "markdown",
}


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for, in plain words or code.")],
    top_k: Annotated[
        int,
        typer.Option("--top-k", "-k", min=1, help="Number of results."),
    ] = 10,
    registry: Annotated[
        str | None,
        typer.Option("--registry", "-r", help="Only this registry (npm, crates, pypi, go, maven)."),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Only this package name."),
    ] = None,
    version: Annotated[
        str | None,
        typer.Option("--version", help="Only this package version."),
    ] = None,
    full: Annotated[
        bool,
        typer.Option("--full", help="Show whole chunks instead of a preview."),
    ] = False,
) -> None:
    """Find the dependency code closest in meaning to QUERY."""
    if not query.strip():
        console.print("[red]Error:[/] Search query must not be empty.")
        raise typer.Exit(1)

    service = open_service()
    filters = SearchFilters(registry=registry, name=name, version=version)
    try:
        results = service.search(query, filters, top_k)
    except ModelMismatchError as exc:
        console.print(err_model_mismatch(exc.index_model, exc.query_model))
        raise typer.Exit(1) from exc
    except EmbeddingError as exc:
        console.print(err_embedding(exc, service.config.embedding.model))
        raise typer.Exit(1) from exc

    if not results:
        console.print("[yellow]No results.[/] Is anything indexed yet?  Run:  idx stats")
        return
    for rank, result in enumerate(results, start=1):
        console.print(_render(rank, result, full))


def _render(rank: int, result: SearchResult, full: bool) -> Panel:
    text = result.text
    if not full:
        lines = text.splitlines()
        if len(lines) > _PREVIEW_LINES:
            text = "\n".join(lines[:_PREVIEW_LINES]) + "\n…"
    suffix = "." + result.path.rsplit(".", 1)[-1] if "." in result.path else ""
    body = Syntax(
        text,
        _SYNTAX_LEXERS.get(suffix, "text"),
        line_numbers=True,
        start_line=result.start_line,
        word_wrap=True,
    )
    symbol = f"  [bold]{result.symbol}[/]" if result.symbol else ""
    title = (
        f"{rank}. [cyan]{result.coordinate}[/]  {result.path}:"
        f"{result.start_line}-{result.end_line}{symbol}  [dim]{result.kind}[/]"
    )
    return Panel(body, title=title, title_align="left", subtitle=f"score {result.score:.3f}")
