"""Storage engine protocol definition.

Defines the ``StorageEngine`` Protocol: the narrow capability the schema
reconciliation core needs from the embedded SQL engine.  Everything above
this layer builds SQL text with quoted identifiers and bound values and
hands it to an engine; nothing above it talks to a driver directly.

Usage:
    from db_manager.adapters.base import StorageEngine

    def count_tables(engine: StorageEngine) -> int:
        return len(engine.list_tables())
"""

from contextlib import AbstractContextManager
from typing import Any, Protocol


class StorageEngine(Protocol):
    """Storage engine interface the core depends on.

    All methods are synchronous.  Methods that run SQL raise
    ``sqlalchemy.exc.SQLAlchemyError`` on failure; callers decide whether a
    failure is fatal, logged, or turned into an empty result.
    """

    def quote_identifier(self, name: str) -> str:
        """Quote a table or column name for inclusion in SQL text."""
        ...

    def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Execute one statement and return the affected-row count.

        Outside a transaction opened with ``transaction()``, the statement
        is committed immediately.
        """
        ...

    def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts keyed by column name.

        Column order of each dict follows the result column order.  Cell
        values are returned as the driver delivers them (``None`` for NULL).
        """
        ...

    def transaction(self) -> AbstractContextManager[Any]:
        """Open a transaction.

        The yielded object has ``commit()``.  Leaving the block without
        committing rolls the transaction back.

        Example:
            with engine.transaction() as tx:
                engine.execute("DELETE FROM t")
                tx.commit()
        """
        ...

    @property
    def in_transaction(self) -> bool:
        """True while a transaction opened by ``transaction()`` is active."""
        ...

    def table_exists(self, table: str) -> bool:
        """Report whether a table with this exact name exists."""
        ...

    def list_tables(self) -> list[str]:
        """List every table name, in catalog scan order."""
        ...

    def table_info(self, table: str) -> list[dict[str, Any]]:
        """Column metadata: ``cid``, ``name``, ``type``, ``notnull``, ``dflt_value``, ``pk``."""
        ...

    def index_list(self, table: str) -> list[dict[str, Any]]:
        """Index metadata: ``seq``, ``name``, ``unique``, ``origin``, ``partial``."""
        ...

    def index_info(self, index: str) -> list[dict[str, Any]]:
        """Indexed columns: ``seqno``, ``cid``, ``name``."""
        ...

    def foreign_key_list(self, table: str) -> list[dict[str, Any]]:
        """Foreign keys: ``id``, ``seq``, ``table``, ``from``, ``to``, ..."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...
