"""SQLite schema introspection via pragma table functions.

This module reads the live database structure for one table at a time:
- Field names, defaults and NOT NULL flags (``pragma_table_info``)
- Uniqueness from single-column unique indexes (``pragma_index_list``,
  ``pragma_index_info``)
- Whether the table is referenced, i.e. carries the surrogate key
- Foreign keys (``pragma_foreign_key_list``) and, from them, join tables

Nothing is cached: every call reads the catalog again, because other
operations may have changed it since.  A failing read is logged and treated
as absence (empty result), so presence checks are always safe to call.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from db_manager.adapters.base import StorageEngine
from db_manager.schema.models import PK_FIELD_NAME, FieldDef, JoinTable, TableModel

logger = logging.getLogger(__name__)


def _unquote_default(raw: Any) -> str:
    """Turn a ``dflt_value`` cell back into the declared default text."""
    if raw is None:
        return ""
    value = str(raw)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        quote = value[0]
        return value[1:-1].replace(quote * 2, quote)
    return value


class SchemaIntrospector:
    """Introspects SQLite table structure.

    Usage:
        introspector = SchemaIntrospector(engine)
        if "hosts" in introspector.list_tables():
            live = introspector.materialize("hosts")
    """

    # Engine-internal tables, never reconciled or dropped.
    RESERVED_PREFIX = "sqlite_"

    def __init__(self, engine: StorageEngine):
        self._engine = engine

    @classmethod
    def is_reserved(cls, table: str) -> bool:
        return table.startswith(cls.RESERVED_PREFIX)

    def _read(self, what: str, table: str, reader: Any, default: Any) -> Any:
        try:
            return reader(table)
        except SQLAlchemyError as e:
            logger.warning(f"Could not read {what} of '{table}': {e}")
            return default

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_tables(self) -> set[str]:
        """All table names, reserved ones included (callers filter)."""
        try:
            return set(self._engine.list_tables())
        except SQLAlchemyError as e:
            logger.warning(f"Could not list tables: {e}")
            return set()

    def table_exists(self, table: str) -> bool:
        try:
            return self._engine.table_exists(table)
        except SQLAlchemyError as e:
            logger.warning(f"Could not check existence of '{table}': {e}")
            return False

    def _table_info(self, table: str) -> list[dict[str, Any]]:
        return self._read("column metadata", table, self._engine.table_info, [])

    def get_column_names(self, table: str) -> list[str]:
        """Every column name, surrogate key included, in declaration order."""
        return [row["name"] for row in self._table_info(table)]

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def get_primary_keys(self, table: str) -> set[str]:
        """Columns flagged as part of the primary key."""
        return {row["name"] for row in self._table_info(table) if row["pk"]}

    def is_referenced(self, table: str) -> bool:
        """True if the table carries a single-column surrogate primary key.

        Detection: exactly one column is in the primary key, and its
        primary-key position equals its declaration index + 1 (first column,
        first key position).
        """
        pk_rows = [row for row in self._table_info(table) if row["pk"]]
        if len(pk_rows) != 1:
            return False
        row = pk_rows[0]
        return row["pk"] == row["cid"] + 1 and row["cid"] == 0

    def get_foreign_keys(self, table: str) -> dict[str, tuple[str, str]]:
        """Map of column name to (referenced table, referenced column)."""
        rows = self._read("foreign keys", table, self._engine.foreign_key_list, [])
        return {row["from"]: (row["table"], row["to"] or PK_FIELD_NAME) for row in rows}

    # ------------------------------------------------------------------
    # Field properties
    # ------------------------------------------------------------------

    def _field_rows(self, table: str) -> list[dict[str, Any]]:
        rows = self._table_info(table)
        if self.is_referenced(table):
            rows = [row for row in rows if row["name"] != PK_FIELD_NAME]
        return rows

    def get_field_names(self, table: str) -> set[str]:
        """Field names, surrogate key excluded when the table is referenced."""
        return {row["name"] for row in self._field_rows(table)}

    def get_default_values(self, table: str) -> dict[str, str]:
        return {row["name"]: _unquote_default(row["dflt_value"]) for row in self._field_rows(table)}

    def get_not_null_flags(self, table: str) -> dict[str, bool]:
        return {row["name"]: bool(row["notnull"]) for row in self._field_rows(table)}

    def get_uniqueness(self, table: str) -> dict[str, bool]:
        """Per-field uniqueness, derived from single-column unique indexes."""
        uniqueness = {name: False for name in self.get_field_names(table)}
        indexes = self._read("indexes", table, self._engine.index_list, [])
        for index in indexes:
            if not index["unique"] or index.get("origin") == "pk":
                continue
            columns = self._read("index columns", index["name"], self._engine.index_info, [])
            if len(columns) != 1:
                continue
            name = columns[0]["name"]
            if name in uniqueness:
                uniqueness[name] = True
        return uniqueness

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def materialize(self, table: str) -> TableModel:
        """Snapshot the live table as a ``TableModel``.

        An absent or unreadable table gives a model with no fields.
        """
        model = TableModel(name=table, referenced=self.is_referenced(table))
        defaults = self.get_default_values(table)
        not_null = self.get_not_null_flags(table)
        uniqueness = self.get_uniqueness(table)
        for row in self._field_rows(table):
            name = row["name"]
            model.fields.append(
                FieldDef(
                    name=name,
                    default_value=defaults.get(name, ""),
                    not_null=not_null.get(name, False),
                    unique=uniqueness.get(name, False),
                )
            )
        for column, (ref_table, ref_field) in self.get_foreign_keys(table).items():
            model.mark_as_foreign_key(column, ref_table, ref_field)
        return model

    def as_join_table(self, table: str) -> JoinTable | None:
        """Recognize a many-to-many join table by its structure.

        A join table has exactly two columns, both in the primary key, each a
        foreign key to the surrogate key of another table.  The first
        participant is the one referenced by the first primary-key column.
        """
        rows = self._table_info(table)
        if len(rows) != 2 or not all(row["pk"] for row in rows):
            return None
        foreign_keys = self.get_foreign_keys(table)
        participants: list[str] = []
        for row in sorted(rows, key=lambda r: r["pk"]):
            target = foreign_keys.get(row["name"])
            if target is None or target[1] != PK_FIELD_NAME:
                return None
            participants.append(target[0])
        if participants[0] == participants[1]:
            return None
        return JoinTable(name=table, first_table=participants[0], second_table=participants[1])

    def find_join_tables(self) -> dict[str, JoinTable]:
        """Every live join table, keyed by name."""
        joins: dict[str, JoinTable] = {}
        for table in self.list_tables():
            if self.is_reserved(table):
                continue
            join = self.as_join_table(table)
            if join is not None:
                joins[table] = join
        return joins
