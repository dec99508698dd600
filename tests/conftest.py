"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from ragline.db.connection import Database
from ragline.db.repository import Repository
from ragline.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".ragline.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture(autouse=True)
def _no_global_config(tmp_path, monkeypatch):
    """Keep ~/.ragline/config.yaml and RAGLINE_* env out of every test."""
    monkeypatch.setattr("ragline.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("RAGLINE_EMBEDDING_MODEL", "RAGLINE_CONTEXT_MODEL", "RAGLINE_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
