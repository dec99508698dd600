"""Helpers shared by the ragline commands: config, database, logging, lookups."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from ragline.cli.errors import err_ambiguous_source, err_config, err_no_api_key, err_source_not_found
from ragline.config import ConfigError, RaglineConfig, load_config
from ragline.db.connection import Database
from ragline.db.models import KnowledgeSource
from ragline.db.repository import Repository
from ragline.db.schema import initialize
from ragline.rag.llm_client import validate_api_key

DEFAULT_DB = Path(".ragline.db")
DEFAULT_PROJECT = "default"

_LOG_HANDLER_NAME = "ragline-rich"
_forced = False


def load_cfg(console: Console) -> RaglineConfig:
    """Load config for the current directory or exit 1 with a readable error."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    setup_logging(cfg.logging.level)
    return cfg


def setup_logging(level: str, *, force: bool = False) -> None:
    """Route the ``ragline`` logger through rich (installed once per process).

    A level set with ``force=True`` (the --verbose flag) wins over later
    calls made with the configured level.
    """
    global _forced
    logger = logging.getLogger("ragline")
    if force:
        _forced = True
        logger.setLevel(level)
    elif not _forced:
        logger.setLevel(level)
    if any(h.get_name() == _LOG_HANDLER_NAME for h in logger.handlers):
        return
    handler = RichHandler(show_path=False, rich_tracebacks=False, markup=False)
    handler.set_name(_LOG_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)


def require_api_keys(console: Console, *models: str) -> None:
    for model in models:
        try:
            validate_api_key(model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(model))
            raise typer.Exit(1) from exc


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the knowledge database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def find_source(
    console: Console, repo: Repository, ref: str, project_id: str | None = None
) -> KnowledgeSource:
    """Resolve *ref* (source id, or unique source name) or exit."""
    source = repo.get_source(ref)
    if source is not None:
        return source
    matches = [s for s in repo.list_sources(project_id) if s.name == ref]
    if len(matches) == 1:
        return matches[0]
    if matches:
        console.print(err_ambiguous_source(ref, [s.id for s in matches]))
        raise typer.Exit(1)
    console.print(err_source_not_found(ref))
    raise typer.Exit(1)
