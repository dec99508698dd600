"""ragline rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragline.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai/text-embedding-3-small"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from ragline.rag.llm_client import provider_env_var


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = provider_env_var(model) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}' (model '{model}').\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".ragline.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  ragline ingest --file <path>  to create it."
    )


def err_config(message: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix ragline.yaml (or ~/.ragline/config.yaml) and re-run."
    )


def err_source_not_found(source: str) -> str:
    """Source not found in database."""
    return (
        f"[yellow]Source not found:[/] '{source}' is not in the knowledge base.\n"
        "  Run:  ragline status  to see all sources and their ids."
    )


def err_ambiguous_source(source: str, ids: list[str]) -> str:
    """More than one source matches a name."""
    listing = "\n".join(f"    {i}" for i in ids)
    return (
        f"[red]Error:[/] '{source}' matches {len(ids)} sources:\n"
        f"{listing}\n"
        "  Re-run with the full source id."
    )


def err_unsupported_file(path: str) -> str:
    return (
        f"[red]✗ Unsupported file type:[/] '{path}'\n"
        "  Supported: .pdf, .txt, .md, .markdown, .text, .rst, .csv, .log"
    )


def err_no_embeddings(model: str) -> str:
    """Search requested before anything was embedded with *model*."""
    return (
        f"[red]Error:[/] No embeddings found for model '{model}'.\n"
        "  Run:  ragline ingest --file <path>  first, or search with --mode fts."
    )


def hint_retry(source_id: str) -> str:
    """Shown after a failure that is worth retrying unchanged."""
    return (
        "  [dim]The provider failed; this is usually transient.[/]\n"
        f"  Retry:  ragline reprocess --source {source_id}"
    )


def hint_fix_input() -> str:
    """Shown after a failure that retrying will not fix."""
    return "  [dim]Retrying will not help; supply a different file or text.[/]"
