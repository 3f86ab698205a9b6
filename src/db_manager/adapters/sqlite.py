"""SQLite storage engine.

Provides ``SQLiteEngine``, the ``StorageEngine`` implementation used by the
rest of the package, built on a synchronous SQLAlchemy engine with the
standard ``sqlite3`` driver.

One SQLAlchemy ``Connection`` is held for the lifetime of the engine.  The
driver's own transaction handling is switched off and SQLAlchemy's begin
event emits ``BEGIN`` itself, so DDL statements take part in transactions
and a failed migration leaves no half-built schema behind.

Usage:
    from db_manager.adapters.sqlite import SQLiteEngine

    engine = SQLiteEngine("/var/lib/app/app.db")
    with engine.transaction() as tx:
        engine.execute('CREATE TABLE "t" ("f" TEXT)')
        tx.commit()
    engine.close()
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine, RootTransaction
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def quote_literal(value: Any) -> str:
    """Quote a value as an SQL string literal.

    Only used where SQLite does not accept bound parameters (``DEFAULT``
    clauses of ``CREATE TABLE``).

    Example:
        >>> quote_literal("it's")
        "'it''s'"
    """
    return "'" + str(value).replace("'", "''") + "'"


def create_sqlite_engine(path: str, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for a SQLite database file.

    Default settings:

    - ``poolclass=StaticPool``: the engine holds exactly one connection.
    - ``check_same_thread=False``: the connection is shared across threads;
      callers serialize access with their own lock.

    Every new DBAPI connection gets ``PRAGMA foreign_keys = ON``.

    Args:
        path: Database file path, or ``":memory:"``.
        **kwargs: Additional keyword arguments forwarded to ``create_engine``.

    Returns:
        Configured ``Engine``.
    """
    url = "sqlite://" if path in ("", MEMORY_PATH) else f"sqlite:///{path}"

    defaults: dict[str, Any] = {
        "poolclass": StaticPool,
        "connect_args": {"check_same_thread": False},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}
    engine = create_engine(url, **merged)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Driver-level BEGIN handling off: it would not wrap DDL.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


class SQLiteEngine:
    """SQLite implementation of the ``StorageEngine`` protocol.

    Args:
        path: Database file path, or ``":memory:"``.
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_sqlite_engine``.
    """

    def __init__(self, path: str, **engine_kwargs: Any) -> None:
        self._path = path
        self._engine: Engine = create_sqlite_engine(path, **engine_kwargs)
        self._conn: Connection = self._engine.connect()
        self._transaction: RootTransaction | None = None

    @property
    def path(self) -> str:
        return self._path

    # ------------------------------------------------------------------
    # SQL execution
    # ------------------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier with the dialect's preparer (always quoted)."""
        return self._engine.dialect.identifier_preparer.quote_identifier(name)

    def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Execute one statement and return the affected-row count.

        Statements without parameters go to the driver untouched, so
        literals inside DDL are never mistaken for bind markers.
        """
        logger.debug(f"execute: {sql} {params or ''}")
        with self._autocommit():
            if params:
                result = self._conn.execute(text(sql), params)
            else:
                result = self._conn.exec_driver_sql(sql)
            return result.rowcount

    def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts keyed by column name."""
        logger.debug(f"query: {sql} {params or ''}")
        with self._autocommit():
            if params:
                result = self._conn.execute(text(sql), params)
            else:
                result = self._conn.exec_driver_sql(sql)
            col_names = list(result.keys())
            rows = result.fetchall()
        return [dict(zip(col_names, row)) for row in rows]

    @contextmanager
    def _autocommit(self) -> Iterator[None]:
        """Commit each statement run outside an explicit transaction."""
        if self.in_transaction:
            yield
            return
        try:
            yield
        except Exception:
            if self._conn.in_transaction():
                self._conn.rollback()
            raise
        if self._conn.in_transaction():
            self._conn.commit()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    @contextmanager
    def transaction(self) -> Iterator[RootTransaction]:
        """Open a transaction; it is rolled back unless committed in the block."""
        trans = self._conn.begin()
        self._transaction = trans
        try:
            yield trans
        finally:
            self._transaction = None
            if trans.is_active:
                logger.debug("rolling back uncommitted transaction")
                trans.rollback()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def table_exists(self, table: str) -> bool:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = :name",
            {"name": table},
        )
        return bool(rows)

    def list_tables(self) -> list[str]:
        rows = self.query("SELECT name FROM sqlite_master WHERE type = 'table'")
        return [row["name"] for row in rows]

    def table_info(self, table: str) -> list[dict[str, Any]]:
        return self.query("SELECT * FROM pragma_table_info(:table)", {"table": table})

    def index_list(self, table: str) -> list[dict[str, Any]]:
        return self.query("SELECT * FROM pragma_index_list(:table)", {"table": table})

    def index_info(self, index: str) -> list[dict[str, Any]]:
        return self.query("SELECT * FROM pragma_index_info(:index)", {"index": index})

    def foreign_key_list(self, table: str) -> list[dict[str, Any]]:
        return self.query(
            "SELECT * FROM pragma_foreign_key_list(:table)", {"table": table}
        )

    def foreign_keys_enabled(self) -> bool:
        rows = self.query("PRAGMA foreign_keys")
        return bool(rows) and str(next(iter(rows[0].values()))) == "1"

    def close(self) -> None:
        """Close the connection and dispose of the engine."""
        if self._transaction is not None and self._transaction.is_active:
            self._transaction.rollback()
        self._conn.close()
        self._engine.dispose()
