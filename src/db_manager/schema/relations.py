"""Many-to-many relationships between referenced tables.

A relationship between tables ``a`` and ``b`` lives in a join table named
``a_b`` with two integer columns ``a#id`` and ``b#id``, each a foreign key to
the surrogate key of its table, forming a composite primary key.

``RelationshipRegistry`` answers which join tables exist and which are
declared.  Join tables are recognized by structure (see
``SchemaIntrospector.as_join_table``), never by name matching, so table names
containing underscores cannot be mistaken for relationships.

``RelationshipManager`` creates join tables, applies population policies and
links / unlinks individual records.
"""

import logging
from collections.abc import Iterable, Mapping
from itertools import product
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from db_manager.adapters.base import StorageEngine
from db_manager.schema.ddl import create_join_table_sql
from db_manager.schema.introspector import SchemaIntrospector
from db_manager.schema.models import (
    MANY_TO_MANY,
    PK_FIELD_NAME,
    POLICY_LINK_ALL,
    JoinTable,
    Relationship,
)
from db_manager.schema.rebuild import RebuildPlan, TableRebuild
from db_manager.store import Record, RecordStore

logger = logging.getLogger(__name__)


class RelationshipRegistry:
    """Declared relationships plus the join tables found in the database.

    Example:
        registry = RelationshipRegistry(introspector)
        registry.declare([Relationship(first_table="x", second_table="y")])
        join = registry.join_table_for("y", "x")   # either order
    """

    def __init__(self, introspector: SchemaIntrospector):
        self._introspector = introspector
        self._declared: list[Relationship] = []

    def declare(self, relationships: Iterable[Relationship]) -> None:
        """Replace the declared relationships."""
        self._declared = list(relationships)

    @property
    def declared(self) -> list[Relationship]:
        return list(self._declared)

    def is_declared_pair(self, first: str, second: str) -> bool:
        pair = {first, second}
        return any(set(rel.tables) == pair for rel in self._declared)

    def live_join_tables(self) -> dict[str, JoinTable]:
        return self._introspector.find_join_tables()

    def join_tables_of(self, table: str) -> list[JoinTable]:
        """Live join tables that reference ``table``, sorted by name."""
        joins = self.live_join_tables()
        return [joins[name] for name in sorted(joins) if joins[name].involves(table)]

    def join_table_for(self, first: str, second: str) -> JoinTable | None:
        """The live join table linking the pair, in either naming order."""
        pair = {first, second}
        for join in self.join_tables_of(first):
            if set(join.tables) == pair:
                return join
        return None

    def get_join_table(self, name: str) -> JoinTable | None:
        return self._introspector.as_join_table(name)


class RelationshipManager:
    """Creates join tables and manages the links stored in them.

    Args:
        engine: Storage engine the statements run on.
        introspector: Live schema reader.
        store: Record CRUD, used for every data movement.
        registry: Relationship registry shared with the reconciler.
    """

    def __init__(
        self,
        engine: StorageEngine,
        introspector: SchemaIntrospector,
        store: RecordStore,
        registry: RelationshipRegistry,
    ):
        self._engine = engine
        self._introspector = introspector
        self._store = store
        self._registry = registry

    def _q(self, name: str) -> str:
        return self._engine.quote_identifier(name)

    # ------------------------------------------------------------------
    # Relation creation
    # ------------------------------------------------------------------

    def ensure_referenced(self, table: str) -> bool:
        """Give ``table`` a surrogate key, rebuilding it if needed."""
        if not self._introspector.table_exists(table):
            logger.error(f"Cannot reference missing table '{table}'")
            return False
        if self._introspector.is_referenced(table):
            return True
        source = self._introspector.materialize(table)
        target = source.model_copy(deep=True)
        target.mark_referenced()
        result = TableRebuild(self._engine, self._store).run(
            RebuildPlan(source=source, target=target, join_tables=[])
        )
        if result.success:
            logger.info(f"Marked table '{table}' as referenced")
        return result.success

    def create_relation(self, kind: str, first_table: str, second_table: str) -> str | None:
        """Create the join table for a pair, or return the existing one.

        Both participants are marked referenced first.  A table cannot be
        related to itself.

        Returns:
            The join table name, or ``None`` on failure.
        """
        if first_table == second_table:
            logger.error(f"Cannot relate table '{first_table}' to itself")
            return None
        if kind != MANY_TO_MANY:
            logger.error(f"Unsupported relationship kind '{kind}'")
            return None

        existing = self._registry.join_table_for(first_table, second_table)
        if existing is not None:
            return existing.name

        if not (self.ensure_referenced(first_table) and self.ensure_referenced(second_table)):
            return None

        join = JoinTable(
            name=Relationship(first_table=first_table, second_table=second_table).join_table,
            first_table=first_table,
            second_table=second_table,
        )
        if self._introspector.table_exists(join.name):
            logger.error(f"Cannot create join table '{join.name}': name already taken")
            return None
        sql = create_join_table_sql(join, self._q)
        try:
            self._engine.execute(sql)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql}: {e}")
            return None
        logger.info(f"Created relation '{join.name}'")
        return join.name

    def apply_policy(
        self,
        join_table: str,
        policy: str,
        tables: tuple[str, str] | None = None,
    ) -> bool:
        """Populate an empty join table according to ``policy``.

        ``link-all`` links every row of the first table to every row of the
        second.  Non-empty join tables and other policies are left alone.
        """
        if tables is None:
            join = self._registry.get_join_table(join_table)
            if join is None:
                logger.error(f"'{join_table}' is not a join table")
                return False
            tables = join.tables
        first, second = tables

        if policy != POLICY_LINK_ALL:
            return True
        count = self._store.count(join_table)
        if count < 0:
            return False
        if count > 0:
            logger.debug(f"Join table '{join_table}' not empty, policy {policy} skipped")
            return True

        join = JoinTable(name=join_table, first_table=first, second_table=second)
        pk = self._q(PK_FIELD_NAME)
        sql = (
            f"INSERT INTO {self._q(join_table)} "
            f"({self._q(join.column_for(first))}, {self._q(join.column_for(second))}) "
            f"SELECT {self._q(first)}.{pk}, {self._q(second)}.{pk} "
            f"FROM {self._q(first)}, {self._q(second)}"
        )
        try:
            linked = self._engine.execute(sql)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql}: {e}")
            return False
        logger.info(f"Applied policy {policy} to '{join_table}': {linked} links")
        return True

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def _resolve_ids(self, table: str, record: Mapping[str, Any], create: bool) -> list[str]:
        """Surrogate ids of the rows equal to ``record`` on its fields."""
        match = {k: v for k, v in record.items() if k != PK_FIELD_NAME}
        if not match:
            logger.error(f"Cannot locate a record of '{table}' without field values")
            return []
        rows = self._store.select(table, [PK_FIELD_NAME], match=match)
        if not rows and create:
            if not self._store.insert(table, [match]):
                return []
            rows = self._store.select(table, [PK_FIELD_NAME], match=match)
        return [row[PK_FIELD_NAME] for row in rows]

    def _pairs(
        self, join: JoinTable, table_a: str, ids_a: list[str], ids_b: list[str]
    ) -> list[Record]:
        """Join rows for every id combination, keyed by join column."""
        table_b = join.other(table_a)
        return [
            {join.column_for(table_a): id_a, join.column_for(table_b): id_b}
            for id_a, id_b in product(ids_a, ids_b)
        ]

    def link(
        self,
        table_a: str,
        record_a: Mapping[str, Any],
        table_b: str,
        record_b: Mapping[str, Any],
    ) -> bool:
        """Link two records, inserting either one first if it does not exist.

        Every matching row on each side is linked.  Fails if the pair has no
        join table or every link already exists.
        """
        join = self._registry.join_table_for(table_a, table_b)
        if join is None:
            logger.error(f"No relation between '{table_a}' and '{table_b}'")
            return False
        ids_a = self._resolve_ids(table_a, record_a, create=True)
        ids_b = self._resolve_ids(table_b, record_b, create=True)
        if not ids_a or not ids_b:
            return False

        missing = [pair for pair in self._pairs(join, table_a, ids_a, ids_b)
                   if self._store.count(join.name, pair) == 0]
        if not missing:
            logger.debug(f"Records already linked in '{join.name}'")
            return False
        return self._store.insert(join.name, missing)

    def unlink(
        self,
        table_a: str,
        record_a: Mapping[str, Any],
        table_b: str,
        record_b: Mapping[str, Any],
    ) -> bool:
        """Remove the links between two existing records."""
        join = self._registry.join_table_for(table_a, table_b)
        if join is None:
            logger.error(f"No relation between '{table_a}' and '{table_b}'")
            return False
        ids_a = self._resolve_ids(table_a, record_a, create=False)
        ids_b = self._resolve_ids(table_b, record_b, create=False)
        if not ids_a or not ids_b:
            logger.debug(f"Records to unlink not found in '{table_a}' / '{table_b}'")
            return False

        present = [pair for pair in self._pairs(join, table_a, ids_a, ids_b)
                   if self._store.count(join.name, pair) > 0]
        if not present:
            return False
        return all(self._store.remove(join.name, pair) for pair in present)

    def get_linked_records(self, table: str, record: Mapping[str, Any]) -> dict[str, list[Record]]:
        """Rows linked to ``record``, grouped by related table.

        Every join table of ``table`` gets an entry, empty when nothing is
        linked.  Returned rows do not carry the surrogate key.
        """
        ids = self._resolve_ids(table, record, create=False)
        if not ids:
            return {}

        linked: dict[str, list[Record]] = {}
        for join in self._registry.join_tables_of(table):
            other = join.other(table)
            other_ids: list[str] = []
            for own_id in ids:
                for row in self._store.select(
                    join.name, [join.column_for(other)], match={join.column_for(table): own_id}
                ):
                    other_id = row[join.column_for(other)]
                    if other_id not in other_ids:
                        other_ids.append(other_id)

            rows: list[Record] = []
            for other_id in other_ids:
                for row in self._store.select(other, match={PK_FIELD_NAME: other_id}):
                    rows.append({k: v for k, v in row.items() if k != PK_FIELD_NAME})
            linked.setdefault(other, []).extend(rows)
        return linked
