"""Table rebuild -- save, drop, recreate and repopulate one table.

SQLite cannot drop columns or add a primary key in place, so every field
change is applied by rebuilding the table.  The rebuild is an explicit step
script; each step either completes or stops the script, and the result names
the step that failed.

Steps, in order:

1. ``snapshot``              -- read every row of the table and of each join
                                table pointing at it
2. ``drop_join_tables``      -- drop those join tables
3. ``drop_table``            -- drop the table
4. ``create_table``          -- create it from the target model
5. ``repopulate``            -- reinsert the saved rows (kept fields only)
6. ``recreate_join_tables``  -- recreate the join tables (target referenced)
7. ``repopulate_join_tables``-- reinsert the saved join rows

Surrogate key values are carried over when the table is referenced both
before and after, so saved join rows stay valid.  A table losing its
``referenced`` flag loses its join tables for good.

Rows are saved through ``RecordStore.select``, which returns NULL cells as
empty strings, so a rebuild stores ``''`` where a nullable column held NULL.

No step is rolled back here: run the rebuild inside a transaction when it
has to be all-or-nothing.

Usage:
    from db_manager.schema.rebuild import RebuildPlan, TableRebuild

    plan = RebuildPlan(source=introspector.materialize("hosts"), target=model,
                       join_tables=registry.join_tables_of("hosts"))
    result = TableRebuild(engine, store).run(plan)
    if not result.success:
        print(f"{result.failed_step}: {result.error}")
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from db_manager.adapters.base import StorageEngine
from db_manager.schema.ddl import create_join_table_sql, create_table_sql, drop_table_sql
from db_manager.schema.models import PK_FIELD_NAME, JoinTable, RebuildResult, TableModel
from db_manager.store import Record, RecordStore

logger = logging.getLogger(__name__)


class RebuildStepError(Exception):
    """A rebuild step could not complete."""


@dataclass
class RebuildPlan:
    """What to rebuild.

    Attributes:
        source: Live snapshot of the table before the rebuild.
        target: Desired model after the rebuild.
        join_tables: Live join tables that reference the table.
    """

    source: TableModel
    target: TableModel
    join_tables: list[JoinTable] = field(default_factory=list)

    @property
    def table(self) -> str:
        return self.target.name

    @property
    def keeps_surrogate_key(self) -> bool:
        """True if surrogate key values survive the rebuild."""
        return self.source.referenced and self.target.referenced

    @property
    def restores_join_tables(self) -> bool:
        return self.target.referenced


@dataclass
class _Saved:
    rows: list[Record] = field(default_factory=list)
    join_rows: dict[str, list[Record]] = field(default_factory=dict)


class TableRebuild:
    """Runs a ``RebuildPlan`` step by step."""

    STEPS = (
        "snapshot",
        "drop_join_tables",
        "drop_table",
        "create_table",
        "repopulate",
        "recreate_join_tables",
        "repopulate_join_tables",
    )

    def __init__(self, engine: StorageEngine, store: RecordStore):
        self._engine = engine
        self._store = store

    def run(self, plan: RebuildPlan) -> RebuildResult:
        result = RebuildResult(table=plan.table)
        saved = _Saved()
        steps: dict[str, Callable[[RebuildPlan, _Saved, RebuildResult], None]] = {
            "snapshot": self._snapshot,
            "drop_join_tables": self._drop_join_tables,
            "drop_table": self._drop_table,
            "create_table": self._create_table,
            "repopulate": self._repopulate,
            "recreate_join_tables": self._recreate_join_tables,
            "repopulate_join_tables": self._repopulate_join_tables,
        }

        logger.info(f"Rebuilding table '{plan.table}'")
        for name in self.STEPS:
            try:
                steps[name](plan, saved, result)
            except (RebuildStepError, SQLAlchemyError) as e:
                result.failed_step = name
                result.error = str(e)
                logger.error(f"Rebuild of '{plan.table}' failed at step {name}: {e}")
                return result
            result.steps_completed.append(name)

        result.success = True
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _snapshot(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        saved.rows = self._store.select(plan.table)
        if saved.rows == [] and self._store.count(plan.table) > 0:
            raise RebuildStepError(f"could not read rows of '{plan.table}'")
        for join in plan.join_tables:
            saved.join_rows[join.name] = self._store.select(join.name)
        logger.debug(
            f"Saved {len(saved.rows)} rows of '{plan.table}' and "
            f"{len(saved.join_rows)} join tables"
        )

    def _drop_join_tables(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        for join in plan.join_tables:
            self._engine.execute(drop_table_sql(join.name, self._engine.quote_identifier))

    def _drop_table(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        self._engine.execute(drop_table_sql(plan.table, self._engine.quote_identifier))

    def _create_table(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        self._engine.execute(create_table_sql(plan.target, self._engine.quote_identifier))

    def _repopulate(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        kept = [name for name in plan.target.field_names if name != PK_FIELD_NAME]
        if plan.keeps_surrogate_key:
            kept.insert(0, PK_FIELD_NAME)
        for row in saved.rows:
            record = {name: row[name] for name in kept if name in row}
            if not self._store.insert(plan.table, [record]):
                raise RebuildStepError(f"could not restore row {record} of '{plan.table}'")
            result.rows_restored += 1

    def _recreate_join_tables(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        if not plan.restores_join_tables:
            result.join_tables_dropped = [join.name for join in plan.join_tables]
            for name in result.join_tables_dropped:
                logger.info(f"Dropped join table '{name}' with unreferenced '{plan.table}'")
            return
        for join in plan.join_tables:
            self._engine.execute(create_join_table_sql(join, self._engine.quote_identifier))

    def _repopulate_join_tables(self, plan: RebuildPlan, saved: _Saved, result: RebuildResult) -> None:
        if not plan.restores_join_tables:
            return
        for join in plan.join_tables:
            rows = saved.join_rows.get(join.name, [])
            # Ids of a newly referenced table are fresh; old links cannot be mapped.
            if not plan.keeps_surrogate_key:
                rows = []
            if rows and not self._store.insert(join.name, rows):
                raise RebuildStepError(f"could not restore links of '{join.name}'")
            result.join_tables_restored.append(join.name)
