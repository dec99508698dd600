"""Fixtures shared by the CLI tests: a small-dimension project dir and a fake provider."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ragline.db.connection import Database
from ragline.db.repository import Repository
from ragline.db.schema import initialize

DIMS = 3


def fake_vector(text: str) -> list[float]:
    """Refund-ish texts point one way, everything else another."""
    return [1.0, 0.0, 0.0] if "refund" in text.lower() else [0.0, 1.0, 0.0]


def _fake_embedding(model, input, **kwargs):
    resp = MagicMock()
    resp.data = [{"embedding": fake_vector(t)} for t in input]
    return resp


@pytest.fixture(autouse=True)
def _reset_logging(monkeypatch):
    """Undo --verbose and configured log levels between CLI invocations."""
    logger = logging.getLogger("ragline")
    monkeypatch.setattr("ragline.cli.common._forced", False)
    level = logger.level
    yield
    logger.setLevel(level)


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    """Run commands from tmp_path with a ragline.yaml using 3-d embeddings."""
    (tmp_path / "ragline.yaml").write_text(
        f"embedding:\n  dimensions: {DIMS}\n", encoding="utf-8"
    )
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def db_path(workdir) -> Path:
    return workdir / "kb.db"


@pytest.fixture
def init_db(db_path):
    """Create the database file up front and yield a Repository on it."""
    conn = Database(db_path).connect()
    initialize(conn)
    yield Repository(conn)
    conn.close()


@pytest.fixture
def provider(monkeypatch):
    """API key present; litellm embedding/completion answered locally."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    completion = MagicMock()
    completion.choices[0].message.content = "Generated context."
    with (
        patch("ragline.rag.llm_client.litellm.embedding", side_effect=_fake_embedding) as emb,
        patch("ragline.rag.llm_client.litellm.completion", return_value=completion) as comp,
    ):
        yield emb, comp
