"""idx rich error messages: what went wrong, and the command that fixes it.

Usage:
    from idx.cli.errors import err_no_index
    console.print(err_no_index())
    raise typer.Exit(1)
"""

from __future__ import annotations

from idx.errors import EmbeddingError, ManifestError


def err_no_index() -> str:
    """No .index/ directory at or above the current directory."""
    return (
        "[red]Error:[/] No .index/ directory found here or in any parent directory.\n"
        "  Run:  idx init"
    )


def err_no_api_key(model: str) -> str:
    """The embedding provider rejected the credentials.

    Example:
        Embedding provider rejected the API key for 'openai/text-embedding-3-small'.
          Set:  export IDX_EMBEDDING_API_KEY=sk-...
    """
    provider = model.split("/", 1)[0] if "/" in model else "openai"
    env_var = f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] Embedding provider rejected the API key for '{model}'.\n"
        f"  Set:  export IDX_EMBEDDING_API_KEY=sk-...   (or {env_var})"
    )


def err_embedding(exc: EmbeddingError, model: str) -> str:
    if exc.kind == "auth":
        return err_no_api_key(model)
    return f"[red]Error:[/] Embedding failed ({exc.kind}): {exc}"


def err_model_mismatch(index_model: str, query_model: str) -> str:
    """Configured embedding model does not match the one the index was built with."""
    return (
        "[red]Error:[/] Embedding model mismatch.\n"
        f"  Index uses:   {index_model}\n"
        f"  Config has:   {query_model}\n"
        "  Set embedding.model back in idx.yaml, or rebuild:  idx clean && idx init"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix idx.yaml or ~/.idx/config.yaml and try again."
    )


def err_bad_coordinate(value: str) -> str:
    """A coordinate argument did not parse."""
    return (
        f"[red]Error:[/] Not a package coordinate: '{value}'\n"
        "  Use registry:name@version, e.g.  npm:lodash@4.17.21"
    )


def err_package_not_found(coordinate: str) -> str:
    """Coordinate is not in the index."""
    return (
        f"[yellow]Package not found:[/] '{coordinate}' is not in the index.\n"
        "  Run:  idx list  to see indexed packages."
    )


def warn_manifest(exc: ManifestError) -> str:
    return f"[yellow]⚠[/] {exc}"


def warn_unpinned(count: int) -> str:
    """Some versions were picked from a range because no lockfile pins them."""
    return (
        f"[yellow]⚠[/] {count} dependenc{'y' if count == 1 else 'ies'} had no lockfile entry; "
        "indexed the version named in the manifest.\n"
        "  Commit a lockfile for version-accurate results."
    )


def warn_failed(count: int) -> str:
    return (
        f"[yellow]⚠[/] {count} package(s) failed.\n"
        "  Run:  idx status  for reasons, then  idx retry --all  or  idx skip <coordinate>"
    )
