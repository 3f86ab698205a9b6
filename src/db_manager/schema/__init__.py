"""Table models, live introspection and schema reconciliation.

Provides the table model (``TableModel``), live database introspection
(``SchemaIntrospector``), table comparison (``compare_tables``), the table
rebuild script (``TableRebuild``), relationship management
(``RelationshipManager``) and the migration engine (``SchemaReconciler``).

Usage:
    from db_manager.schema import TableModel, SchemaIntrospector
    from db_manager.schema import SchemaReconciler, RelationshipManager
"""

from db_manager.schema.comparator import compare_tables
from db_manager.schema.introspector import SchemaIntrospector
from db_manager.schema.models import (
    MANY_TO_MANY,
    PK_FIELD_NAME,
    POLICY_LINK_ALL,
    POLICY_NONE,
    FieldDef,
    JoinTable,
    MigrationResult,
    RebuildResult,
    Relationship,
    TableDiff,
    TableModel,
    join_column,
)
from db_manager.schema.rebuild import RebuildPlan, TableRebuild
from db_manager.schema.reconciler import SchemaReconciler
from db_manager.schema.relations import RelationshipManager, RelationshipRegistry

__all__ = [
    "PK_FIELD_NAME",
    "MANY_TO_MANY",
    "POLICY_NONE",
    "POLICY_LINK_ALL",
    "join_column",
    "FieldDef",
    "TableModel",
    "Relationship",
    "JoinTable",
    "TableDiff",
    "RebuildResult",
    "MigrationResult",
    "compare_tables",
    "SchemaIntrospector",
    "RebuildPlan",
    "TableRebuild",
    "RelationshipRegistry",
    "RelationshipManager",
    "SchemaReconciler",
]
