"""Generic record CRUD over named tables.

Records are plain ``dict[str, str]`` mappings from column name to text.
Values always travel as bound parameters; identifiers are quoted with the
engine's quoting function.  ``NULL`` cells are returned as ``""``.

Failures never raise: the offending statement is logged at ERROR and the
operation returns ``False`` (or an empty result for reads).

Usage:
    from db_manager.store import RecordStore

    store = RecordStore(engine, introspector)
    store.insert("hosts", [{"address": "10.0.0.1"}])
    rows = store.select("hosts", ["address"], distinct=True)
"""

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from db_manager.adapters.base import StorageEngine

if TYPE_CHECKING:
    from db_manager.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)

Record = dict[str, str]

ALL_COLUMNS = "*"


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class RecordStore:
    """CRUD operations on the rows of any table.

    Args:
        engine: Storage engine the statements run on.
        introspector: Used to resolve ``*`` projections to column names.
    """

    def __init__(self, engine: StorageEngine, introspector: "SchemaIntrospector"):
        self._engine = engine
        self._introspector = introspector

    def _q(self, name: str) -> str:
        return self._engine.quote_identifier(name)

    def _where(self, match: Mapping[str, Any], prefix: str = "m") -> tuple[str, dict[str, str]]:
        """WHERE clause ANDing exact equality on every match field."""
        if not match:
            return "", {}
        clauses = []
        params: dict[str, str] = {}
        for index, (name, value) in enumerate(match.items()):
            key = f"{prefix}{index}"
            clauses.append(f"{self._q(name)} = :{key}")
            params[key] = _as_text(value)
        return " WHERE " + " AND ".join(clauses), params

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        distinct: bool = False,
        match: Mapping[str, Any] | None = None,
    ) -> list[Record]:
        """Select rows, optionally projected, deduplicated and filtered.

        Args:
            table: Table to read.
            columns: Columns to return.  Empty, ``None`` or ``["*"]`` means
                every column, resolved by name from the live table.
            distinct: Return distinct rows only.
            match: Optional exact-equality filter.

        Returns:
            One dict per row, keyed by column name, ``NULL`` read as ``""``.
        """
        if not columns or list(columns) == [ALL_COLUMNS]:
            columns = self._introspector.get_column_names(table)
            if not columns:
                logger.error(f"Cannot select from '{table}': no columns found")
                return []

        projection = ", ".join(self._q(c) for c in columns)
        keyword = "SELECT DISTINCT" if distinct else "SELECT"
        where, params = self._where(match or {})
        sql = f"{keyword} {projection} FROM {self._q(table)}{where}"
        try:
            rows = self._engine.query(sql, params)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql}: {e}")
            return []
        return [{name: _as_text(row[name]) for name in columns} for row in rows]

    def count(self, table: str, match: Mapping[str, Any] | None = None) -> int:
        """Number of rows matching ``match`` (all rows if empty); -1 on failure."""
        where, params = self._where(match or {})
        sql = f"SELECT COUNT(*) AS n FROM {self._q(table)}{where}"
        try:
            rows = self._engine.query(sql, params)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql}: {e}")
            return -1
        return int(rows[0]["n"]) if rows else 0

    def is_empty(self, table: str) -> bool:
        return self.count(table) == 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, table: str, records: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> bool:
        """Insert one record or a batch.

        Each record supplies its own column list, so batches may be
        heterogeneous; an empty record inserts a row of defaults.  Stops at
        the first failing record.  Outside a transaction the records before
        the failure stay inserted.
        """
        if isinstance(records, Mapping):
            records = [records]

        for record in records:
            if record:
                names = list(record.keys())
                columns = ", ".join(self._q(n) for n in names)
                markers = ", ".join(f":v{i}" for i in range(len(names)))
                params = {f"v{i}": _as_text(record[n]) for i, n in enumerate(names)}
                sql = f"INSERT INTO {self._q(table)} ({columns}) VALUES ({markers})"
            else:
                params = {}
                sql = f"INSERT INTO {self._q(table)} DEFAULT VALUES"
            try:
                affected = self._engine.execute(sql, params)
            except SQLAlchemyError as e:
                logger.error(f"Statement failed: {sql} {params}: {e}")
                return False
            if affected <= 0:
                logger.error(f"Insert into '{table}' affected no rows: {sql}")
                return False
        return True

    def modify(
        self,
        table: str,
        match: Mapping[str, Any],
        new_values: Mapping[str, Any],
        insert_if_absent: bool = True,
    ) -> bool:
        """Update the rows selected by ``match``.

        An empty ``match`` updates every row.  Empty ``new_values`` is
        rejected.  When nothing matches and ``insert_if_absent`` is set, a row
        built from ``match`` overlaid with ``new_values`` is inserted instead.
        """
        if not new_values:
            logger.error(f"Refusing to modify '{table}' with no new values")
            return False

        if insert_if_absent:
            matching = self.count(table, match)
            if matching < 0:
                return False
            if matching == 0:
                logger.debug(f"No row of '{table}' matches {dict(match)}, inserting")
                return self.insert(table, [{**match, **new_values}])

        assignments = []
        params: dict[str, str] = {}
        for index, (name, value) in enumerate(new_values.items()):
            key = f"s{index}"
            assignments.append(f"{self._q(name)} = :{key}")
            params[key] = _as_text(value)
        where, where_params = self._where(match)
        params.update(where_params)
        sql = f"UPDATE {self._q(table)} SET {', '.join(assignments)}{where}"
        try:
            affected = self._engine.execute(sql, params)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql} {params}: {e}")
            return False
        if affected <= 0:
            logger.error(f"Update of '{table}' matched no rows: {sql}")
            return False
        return True

    def remove(self, table: str, match: Mapping[str, Any] | None = None) -> bool:
        """Delete the rows selected by ``match``; empty ``match`` empties the table."""
        where, params = self._where(match or {})
        sql = f"DELETE FROM {self._q(table)}{where}"
        try:
            self._engine.execute(sql, params)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql} {params}: {e}")
            return False
        return True
