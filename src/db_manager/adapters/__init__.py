"""Storage engine package.

Provides the ``StorageEngine`` Protocol and the SQLite implementation.

Usage:
    from db_manager.adapters import StorageEngine, SQLiteEngine
"""

from db_manager.adapters.base import StorageEngine
from db_manager.adapters.sqlite import SQLiteEngine, create_sqlite_engine, quote_literal

__all__ = [
    "StorageEngine",
    "SQLiteEngine",
    "create_sqlite_engine",
    "quote_literal",
]
