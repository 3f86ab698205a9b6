"""Schema reconciliation -- bring live tables in line with their models.

Per declared table, one pass runs this state machine::

    START -> absent  -> CREATE                          -> DONE
    START -> present -> DIFF -> equal                   -> DONE
                             -> different -> REBUILD    -> DONE

``REBUILD`` applies added and removed fields, and adds or strips the
surrogate key, through ``TableRebuild`` (save, drop, recreate, repopulate).

``migrate()`` runs the full pass over a ``DatabaseDescription``: reconcile
every declared table, insert default records into empty tables, create the
declared relations and apply their policies, then drop leftover tables.  It
stops at the first failing step.  Callers wanting all-or-nothing behavior run
it inside one transaction (``DatabaseManager.migrate`` does).

Usage:
    from db_manager.schema.reconciler import SchemaReconciler

    reconciler = SchemaReconciler(engine, introspector, store, registry, relations)
    result = reconciler.migrate(description)
    print(result.format_report())
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from db_manager.adapters.base import StorageEngine
from db_manager.schema.comparator import compare_tables
from db_manager.schema.ddl import create_table_sql, drop_table_sql
from db_manager.schema.introspector import SchemaIntrospector
from db_manager.schema.models import FieldDef, MigrationResult, TableModel
from db_manager.schema.rebuild import RebuildPlan, TableRebuild
from db_manager.schema.relations import RelationshipManager, RelationshipRegistry
from db_manager.store import RecordStore

if TYPE_CHECKING:
    from db_manager.config.models import DatabaseDescription

logger = logging.getLogger(__name__)

CREATED = "created"
REBUILT = "rebuilt"
UNCHANGED = "unchanged"
FAILED = "failed"


class SchemaReconciler:
    """Creates, alters and drops tables to match desired models."""

    def __init__(
        self,
        engine: StorageEngine,
        introspector: SchemaIntrospector,
        store: RecordStore,
        registry: RelationshipRegistry,
        relations: RelationshipManager,
    ):
        self._engine = engine
        self._introspector = introspector
        self._store = store
        self._registry = registry
        self._relations = relations

    def _q(self, name: str) -> str:
        return self._engine.quote_identifier(name)

    def _run(self, sql: str) -> bool:
        try:
            self._engine.execute(sql)
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {sql}: {e}")
            return False
        return True

    def _rebuild(self, source: TableModel, target: TableModel) -> bool:
        join_tables = self._registry.join_tables_of(source.name) if source.referenced else []
        plan = RebuildPlan(source=source, target=target, join_tables=join_tables)
        return TableRebuild(self._engine, self._store).run(plan).success

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def create_table(self, model: TableModel) -> bool:
        """Create a table from its model; fails if it already exists."""
        if self._introspector.table_exists(model.name):
            logger.error(f"Table '{model.name}' already exists")
            return False
        if not self._run(create_table_sql(model, self._q)):
            return False
        logger.info(f"Created table '{model.name}'")
        return True

    def delete_table(self, table: str) -> bool:
        """Drop a table, and first any join table that references it."""
        if not self._introspector.table_exists(table):
            logger.error(f"Cannot delete missing table '{table}'")
            return False
        for join in self._registry.join_tables_of(table):
            if not self._run(drop_table_sql(join.name, self._q)):
                return False
            logger.info(f"Dropped join table '{join.name}'")
        if not self._run(drop_table_sql(table, self._q)):
            return False
        logger.info(f"Dropped table '{table}'")
        return True

    def add_fields(self, table: str, fields: Iterable[FieldDef]) -> bool:
        """Add fields to a live table; fields already present are skipped."""
        if not self._introspector.table_exists(table):
            logger.error(f"Cannot add fields to missing table '{table}'")
            return False
        source = self._introspector.materialize(table)
        target = source.model_copy(deep=True)
        for field_def in fields:
            if not target.has_column(field_def.name):
                target.fields.append(field_def)
        if target.field_names == source.field_names:
            return True
        return self._rebuild(source, target)

    def remove_fields(self, table: str, names: Iterable[str]) -> bool:
        """Remove fields from a live table; unknown names are skipped."""
        if not self._introspector.table_exists(table):
            logger.error(f"Cannot remove fields from missing table '{table}'")
            return False
        source = self._introspector.materialize(table)
        target = source.model_copy(deep=True)
        for name in names:
            target.remove_field(name)
        if target.field_names == source.field_names:
            return True
        return self._rebuild(source, target)

    def reconcile(self, model: TableModel) -> str:
        """Reconcile one table and report what was done."""
        live = self._introspector.materialize(model.name) if self._introspector.table_exists(model.name) else None
        diff = compare_tables(model, live)
        if not diff.exists:
            return CREATED if self.create_table(model) else FAILED
        if diff.in_sync:
            return UNCHANGED

        logger.info(
            f"Table '{model.name}' differs: +{[f.name for f in diff.fields_to_add]} "
            f"-{[f.name for f in diff.fields_to_remove]}"
            + (f" referenced->{diff.target_referenced}" if diff.referenced_changed else "")
        )
        return REBUILT if self._rebuild(live, model) else FAILED

    def reconcile_table(self, model: TableModel) -> bool:
        return self.reconcile(model) != FAILED

    # ------------------------------------------------------------------
    # Migration pass
    # ------------------------------------------------------------------

    def migrate(self, description: "DatabaseDescription") -> MigrationResult:
        """Run one migration pass; stops at the first failure."""
        result = MigrationResult()
        models = description.table_models()
        self._registry.declare(description.relationship_models())

        for model in models:
            outcome = self.reconcile(model)
            if outcome == FAILED:
                result.error = f"could not reconcile table '{model.name}'"
                return result
            if outcome == CREATED:
                result.tables_created.append(model.name)
            elif outcome == REBUILT:
                result.tables_rebuilt.append(model.name)

        for table in description.tables:
            if not table.default_records or not self._store.is_empty(table.name):
                continue
            if not self._store.insert(table.name, table.default_records):
                result.error = f"could not insert default records into '{table.name}'"
                return result
            result.default_records_inserted[table.name] = len(table.default_records)
            logger.info(f"Inserted {len(table.default_records)} default records into '{table.name}'")

        for rel in self._registry.declared:
            existed = self._registry.join_table_for(rel.first_table, rel.second_table) is not None
            name = self._relations.create_relation(rel.kind, rel.first_table, rel.second_table)
            if name is None:
                result.error = f"could not create relation {rel.first_table} / {rel.second_table}"
                return result
            if not existed:
                result.relations_created.append(name)
            if not self._relations.apply_policy(name, rel.policy):
                result.error = f"could not apply policy {rel.policy} to '{name}'"
                return result

        if not self._drop_stale_tables({m.name for m in models}, result):
            return result

        result.success = True
        return result

    def _drop_stale_tables(self, keep: set[str], result: MigrationResult) -> bool:
        """Drop live tables nobody declares: join tables, then plain, then referenced.

        A join table is kept while the relationship of its pair is declared.
        """
        join_tables = self._registry.live_join_tables()
        stale = sorted(
            t for t in self._introspector.list_tables()
            if t not in keep
            and not self._introspector.is_reserved(t)
            and not (t in join_tables and self._registry.is_declared_pair(*join_tables[t].tables))
        )
        ordered = (
            [t for t in stale if t in join_tables]
            + [t for t in stale if t not in join_tables and not self._introspector.is_referenced(t)]
            + [t for t in stale if t not in join_tables and self._introspector.is_referenced(t)]
        )
        for table in ordered:
            if not self._introspector.table_exists(table):
                continue
            if not self.delete_table(table):
                result.error = f"could not drop stale table '{table}'"
                return False
            result.tables_dropped.append(table)
        return True
