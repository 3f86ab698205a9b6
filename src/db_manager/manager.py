"""Database manager -- the synchronized façade over one SQLite database.

``DatabaseManager`` owns one ``SQLiteEngine``, one non-reentrant lock and a
``CoreSession`` holding the unsynchronized components (introspector, record
store, relationship manager, reconciler).

Every public operation takes ``atomic`` (default ``True``):

- mutating operations take the lock and run in one transaction that is
  committed only when the operation succeeds;
- read operations take the lock only.

``atomic=False`` skips both and is only meant for callers that already hold
the lock and an outer transaction.  The usual way to compose operations is
``transaction()``, which holds both and yields the ``CoreSession``.  Calling
an atomic operation while inside ``transaction()`` on the same thread
deadlocks: the lock is not reentrant.

Usage:
    from db_manager import DatabaseManager

    with DatabaseManager("app.db", "schema.toml") as db:
        db.insert("hosts", [{"address": "10.0.0.1"}])
        with db.transaction() as core:
            core.insert("groups", [{"label": "lan"}])
            core.link("hosts", {"address": "10.0.0.1"}, "groups", {"label": "lan"})
"""

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from db_manager.adapters.sqlite import SQLiteEngine
from db_manager.config.loader import load_database_description
from db_manager.config.models import DatabaseDescription
from db_manager.dump import dump_tables, dump_tables_html
from db_manager.schema.introspector import SchemaIntrospector
from db_manager.schema.models import FieldDef, MigrationResult, TableModel
from db_manager.schema.reconciler import SchemaReconciler
from db_manager.schema.relations import RelationshipManager, RelationshipRegistry
from db_manager.store import Record, RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MigrationError(Exception):
    """Raised when the initial migration pass of a manager fails."""

    pass


class CoreSession:
    """Unsynchronized operations on one engine.

    Never handed out except by ``DatabaseManager.transaction()``; using it
    outside that block bypasses the lock.
    """

    def __init__(self, engine: SQLiteEngine):
        self.engine = engine
        self.introspector = SchemaIntrospector(engine)
        self.store = RecordStore(engine, self.introspector)
        self.registry = RelationshipRegistry(self.introspector)
        self.relations = RelationshipManager(engine, self.introspector, self.store, self.registry)
        self.reconciler = SchemaReconciler(
            engine, self.introspector, self.store, self.registry, self.relations
        )

    # Records
    def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        distinct: bool = False,
        match: Mapping[str, Any] | None = None,
    ) -> list[Record]:
        return self.store.select(table, columns, distinct, match)

    def insert(self, table: str, records: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> bool:
        return self.store.insert(table, records)

    def modify(
        self,
        table: str,
        match: Mapping[str, Any],
        new_values: Mapping[str, Any],
        insert_if_absent: bool = True,
    ) -> bool:
        return self.store.modify(table, match, new_values, insert_if_absent)

    def remove(self, table: str, match: Mapping[str, Any] | None = None) -> bool:
        return self.store.remove(table, match)

    # Schema
    def list_tables(self) -> list[str]:
        """User tables, engine-internal ones excluded, sorted."""
        return sorted(t for t in self.introspector.list_tables() if not self.introspector.is_reserved(t))

    def table_exists(self, table: str) -> bool:
        return self.introspector.table_exists(table)

    def get_table(self, table: str) -> TableModel | None:
        if not self.introspector.table_exists(table):
            return None
        return self.introspector.materialize(table)

    def get_column_names(self, table: str) -> list[str]:
        return self.introspector.get_column_names(table)

    def get_primary_keys(self, table: str) -> set[str]:
        return self.introspector.get_primary_keys(table)

    def get_uniqueness(self, table: str) -> dict[str, bool]:
        return self.introspector.get_uniqueness(table)

    def create_table(self, model: TableModel) -> bool:
        return self.reconciler.create_table(model)

    def delete_table(self, table: str) -> bool:
        return self.reconciler.delete_table(table)

    def add_fields(self, table: str, fields: Iterable[FieldDef]) -> bool:
        return self.reconciler.add_fields(table, fields)

    def remove_fields(self, table: str, names: Iterable[str]) -> bool:
        return self.reconciler.remove_fields(table, names)

    def reconcile_table(self, model: TableModel) -> bool:
        return self.reconciler.reconcile_table(model)

    def migrate(self, description: DatabaseDescription) -> MigrationResult:
        return self.reconciler.migrate(description)

    # Relationships
    def create_relation(self, kind: str, first_table: str, second_table: str) -> str | None:
        return self.relations.create_relation(kind, first_table, second_table)

    def apply_policy(
        self, join_table: str, policy: str, tables: tuple[str, str] | None = None
    ) -> bool:
        return self.relations.apply_policy(join_table, policy, tables)

    def link(
        self,
        table_a: str,
        record_a: Mapping[str, Any],
        table_b: str,
        record_b: Mapping[str, Any],
    ) -> bool:
        return self.relations.link(table_a, record_a, table_b, record_b)

    def unlink(
        self,
        table_a: str,
        record_a: Mapping[str, Any],
        table_b: str,
        record_b: Mapping[str, Any],
    ) -> bool:
        return self.relations.unlink(table_a, record_a, table_b, record_b)

    def get_linked_records(self, table: str, record: Mapping[str, Any]) -> dict[str, list[Record]]:
        return self.relations.get_linked_records(table, record)


class DatabaseManager:
    """Synchronized handle on one SQLite database.

    Args:
        path: Database file path, or ``":memory:"``.
        description: Optional desired schema (``DatabaseDescription``, a
            path to a TOML / XML file, or an inline document).  When given,
            one atomic migration pass runs before the constructor returns.

    Raises:
        ConfigurationError: If the description cannot be loaded.
        MigrationError: If the initial migration pass fails.
    """

    def __init__(
        self,
        path: str | Path,
        description: DatabaseDescription | str | Path | None = None,
    ):
        self._path = str(path)
        self._engine = SQLiteEngine(self._path)
        self._lock = threading.Lock()
        self._core = CoreSession(self._engine)
        self._closed = False

        if description is not None:
            if not isinstance(description, DatabaseDescription):
                try:
                    description = load_database_description(description)
                except Exception:
                    self.close()
                    raise
            result = self.migrate(description)
            if not result.success:
                self.close()
                raise MigrationError(f"Initial migration of {self._path} failed: {result.error}")
            logger.info(f"{self._path}: {result.format_report()}")

    @property
    def path(self) -> str:
        return self._path

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _read(self, atomic: bool, operation: Callable[[], T]) -> T:
        if not atomic:
            return operation()
        with self._lock:
            return operation()

    def _write(self, atomic: bool, operation: Callable[[], T], succeeded: Callable[[T], bool] = bool) -> T | None:
        """Run a mutating operation, in a lock-held transaction when atomic."""
        if not atomic:
            return operation()
        with self._lock:
            try:
                with self._engine.transaction() as tx:
                    outcome = operation()
                    if succeeded(outcome):
                        tx.commit()
                    else:
                        logger.debug("operation failed, rolling back")
                    return outcome
            except SQLAlchemyError as e:
                logger.error(f"Transaction on {self._path} failed: {e}")
                return None

    @contextmanager
    def transaction(self) -> Iterator[CoreSession]:
        """Hold the lock and one transaction around a block of operations.

        The transaction commits when the block exits normally and rolls back
        when it raises.
        """
        with self._lock:
            with self._engine.transaction() as tx:
                yield self._core
                tx.commit()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        distinct: bool = False,
        match: Mapping[str, Any] | None = None,
        atomic: bool = True,
    ) -> list[Record]:
        return self._read(atomic, lambda: self._core.select(table, columns, distinct, match))

    def insert(
        self,
        table: str,
        records: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        atomic: bool = True,
    ) -> bool:
        return bool(self._write(atomic, lambda: self._core.insert(table, records)))

    def modify(
        self,
        table: str,
        match: Mapping[str, Any],
        new_values: Mapping[str, Any],
        insert_if_absent: bool = True,
        atomic: bool = True,
    ) -> bool:
        return bool(
            self._write(atomic, lambda: self._core.modify(table, match, new_values, insert_if_absent))
        )

    def remove(self, table: str, match: Mapping[str, Any] | None = None, atomic: bool = True) -> bool:
        return bool(self._write(atomic, lambda: self._core.remove(table, match)))

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def list_tables(self, atomic: bool = True) -> list[str]:
        return self._read(atomic, self._core.list_tables)

    def table_exists(self, table: str, atomic: bool = True) -> bool:
        return self._read(atomic, lambda: self._core.table_exists(table))

    def get_table(self, table: str, atomic: bool = True) -> TableModel | None:
        return self._read(atomic, lambda: self._core.get_table(table))

    def get_column_names(self, table: str, atomic: bool = True) -> list[str]:
        return self._read(atomic, lambda: self._core.get_column_names(table))

    def get_primary_keys(self, table: str, atomic: bool = True) -> set[str]:
        return self._read(atomic, lambda: self._core.get_primary_keys(table))

    def get_uniqueness(self, table: str, atomic: bool = True) -> dict[str, bool]:
        return self._read(atomic, lambda: self._core.get_uniqueness(table))

    def create_table(self, model: TableModel, atomic: bool = True) -> bool:
        return bool(self._write(atomic, lambda: self._core.create_table(model)))

    def delete_table(self, table: str, atomic: bool = True) -> bool:
        return bool(self._write(atomic, lambda: self._core.delete_table(table)))

    def add_fields(self, table: str, fields: Iterable[FieldDef], atomic: bool = True) -> bool:
        fields = list(fields)
        return bool(self._write(atomic, lambda: self._core.add_fields(table, fields)))

    def remove_fields(self, table: str, names: Iterable[str], atomic: bool = True) -> bool:
        names = list(names)
        return bool(self._write(atomic, lambda: self._core.remove_fields(table, names)))

    def reconcile_table(self, model: TableModel, atomic: bool = True) -> bool:
        return bool(self._write(atomic, lambda: self._core.reconcile_table(model)))

    def migrate(self, description: DatabaseDescription, atomic: bool = True) -> MigrationResult:
        """Run one migration pass; atomic passes leave no partial schema."""
        outcome = self._write(
            atomic, lambda: self._core.migrate(description), lambda r: r.success
        )
        if outcome is None:
            return MigrationResult(error="could not open a transaction")
        return outcome

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def create_relation(
        self, kind: str, first_table: str, second_table: str, atomic: bool = True
    ) -> str | None:
        return self._write(
            atomic,
            lambda: self._core.create_relation(kind, first_table, second_table),
            lambda name: name is not None,
        )

    def apply_policy(
        self,
        join_table: str,
        policy: str,
        tables: tuple[str, str] | None = None,
        atomic: bool = True,
    ) -> bool:
        return bool(self._write(atomic, lambda: self._core.apply_policy(join_table, policy, tables)))

    def link(
        self,
        table_a: str,
        record_a: Mapping[str, Any],
        table_b: str,
        record_b: Mapping[str, Any],
        atomic: bool = True,
    ) -> bool:
        return bool(
            self._write(atomic, lambda: self._core.link(table_a, record_a, table_b, record_b))
        )

    def unlink(
        self,
        table_a: str,
        record_a: Mapping[str, Any],
        table_b: str,
        record_b: Mapping[str, Any],
        atomic: bool = True,
    ) -> bool:
        return bool(
            self._write(atomic, lambda: self._core.unlink(table_a, record_a, table_b, record_b))
        )

    def get_linked_records(
        self, table: str, record: Mapping[str, Any], atomic: bool = True
    ) -> dict[str, list[Record]]:
        return self._read(atomic, lambda: self._core.get_linked_records(table, record))

    # ------------------------------------------------------------------
    # Dumps
    # ------------------------------------------------------------------

    def to_string(self, table: str | None = None, atomic: bool = True) -> str:
        """Fixed-width text dump of every table, or of one table."""
        return self._read(atomic, lambda: dump_tables(self._core, table))

    def dump_html(self, table: str | None = None, atomic: bool = True) -> str:
        """HTML dump of every table, or of one table."""
        return self._read(atomic, lambda: dump_tables_html(self._core, table))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._engine.close()
        logger.debug(f"Closed database {self._path}")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
