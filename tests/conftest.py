"""Shared fixtures: real SQLite databases under tmp_path."""

from pathlib import Path

import pytest

from db_manager.adapters.sqlite import SQLiteEngine
from db_manager.manager import CoreSession, DatabaseManager


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "test.db")


@pytest.fixture
def engine(db_path: str):
    """Open SQLiteEngine on a fresh database file."""
    sqlite_engine = SQLiteEngine(db_path)
    yield sqlite_engine
    sqlite_engine.close()


@pytest.fixture
def core(engine: SQLiteEngine) -> CoreSession:
    """Unsynchronized session; statements autocommit."""
    return CoreSession(engine)


@pytest.fixture
def db(db_path: str):
    """DatabaseManager without a description."""
    manager = DatabaseManager(db_path)
    yield manager
    manager.close()
