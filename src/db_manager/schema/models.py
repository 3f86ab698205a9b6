"""Pydantic models for table descriptions, relationships and migration results.

This module contains schema-domain models:
- Table models: FieldDef, TableModel
- Relationship models: Relationship, JoinTable
- Comparison and result models: TableDiff, RebuildResult, MigrationResult

Configuration models (DatabaseDescription, TableConfig, ...) live in
db_manager.config.models.
"""

from pydantic import BaseModel, Field

# Name of the surrogate auto-increment primary key of referenced tables.
PK_FIELD_NAME = "id"

MANY_TO_MANY = "m:n"
POLICY_NONE = "none"
POLICY_LINK_ALL = "link-all"


def join_column(table: str) -> str:
    """Name of the join-table column that points at ``table``'s surrogate key.

    Example:
        >>> join_column("users")
        'users#id'
    """
    return f"{table}#{PK_FIELD_NAME}"


# ============================================================================
# Table Models
# ============================================================================


class FieldDef(BaseModel):
    """One declared column of a table.

    Every column is stored with TEXT affinity; ``default_value`` is the text
    used in the column's ``DEFAULT`` clause.

    Example:
        >>> f = FieldDef(name="label")
        >>> (f.default_value, f.not_null, f.unique)
        ('', False, False)
    """

    name: str
    default_value: str = ""
    not_null: bool = False
    unique: bool = False


class TableModel(BaseModel):
    """Description of one table, either desired or read from the database.

    ``referenced`` tables carry a surrogate ``id INTEGER PRIMARY KEY
    AUTOINCREMENT`` column that is never part of ``fields``.  Two models are
    equal when their names, ``referenced`` flags and field-name sets match;
    defaults and flags of fields only matter when a table is created.

    Example:
        >>> model = TableModel(name="hosts")
        >>> model.add_field("address", not_null=True)
        FieldDef(name='address', default_value='', not_null=True, unique=False)
        >>> model.has_column("address")
        True
    """

    name: str
    fields: list[FieldDef] = Field(default_factory=list)
    referenced: bool = False
    foreign_keys: dict[str, tuple[str, str]] = Field(default_factory=dict)

    def add_field(
        self,
        name: str,
        default_value: str = "",
        not_null: bool = False,
        unique: bool = False,
    ) -> FieldDef:
        """Append a field.

        Raises:
            ValueError: If a field with this name already exists.
        """
        if self.has_column(name):
            raise ValueError(f"Field '{name}' already exists in table '{self.name}'")
        field_def = FieldDef(
            name=name, default_value=default_value, not_null=not_null, unique=unique
        )
        self.fields.append(field_def)
        return field_def

    def remove_field(self, name: str) -> None:
        """Remove the field with this name; no-op if absent."""
        for index, field_def in enumerate(self.fields):
            if field_def.name == name:
                del self.fields[index]
                self.foreign_keys.pop(name, None)
                return

    def has_column(self, name: str) -> bool:
        return any(f.name == name for f in self.fields)

    def get_field(self, name: str) -> FieldDef | None:
        for field_def in self.fields:
            if field_def.name == name:
                return field_def
        return None

    @property
    def field_names(self) -> list[str]:
        """Declared field names in declaration order."""
        return [f.name for f in self.fields]

    def mark_referenced(self) -> None:
        self.referenced = True

    def unmark_referenced(self) -> None:
        self.referenced = False

    def mark_as_foreign_key(
        self, field_name: str, referenced_table: str, referenced_field: str
    ) -> bool:
        """Declare ``field_name`` as pointing at ``referenced_table(referenced_field)``.

        Returns:
            ``False`` if the field does not exist or is already marked.
        """
        if field_name in self.foreign_keys or not self.has_column(field_name):
            return False
        self.foreign_keys[field_name] = (referenced_table, referenced_field)
        return True

    def unmark_as_foreign_key(self, field_name: str) -> bool:
        return self.foreign_keys.pop(field_name, None) is not None

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def _comparable_names(self, exclude_surrogate: bool) -> set[str]:
        names = set(self.field_names)
        if exclude_surrogate:
            names.discard(PK_FIELD_NAME)
        return names

    def equals(self, other: "TableModel") -> bool:
        """Compare names, ``referenced`` flags and field-name sets."""
        if self.name != other.name or self.referenced != other.referenced:
            return False
        exclude = self.referenced or other.referenced
        return self._comparable_names(exclude) == other._comparable_names(exclude)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableModel):
            return NotImplemented
        return self.equals(other)

    def diff(self, other: "TableModel") -> list[FieldDef]:
        """Fields of this model that ``other`` does not have (by name).

        Asymmetric: ``model.diff(live)`` gives the fields to add to the live
        table, ``live.diff(model)`` the fields to remove from it.

        Example:
            >>> a = TableModel(name="t", fields=[FieldDef(name="x"), FieldDef(name="y")])
            >>> b = TableModel(name="t", fields=[FieldDef(name="x")])
            >>> [f.name for f in a.diff(b)]
            ['y']
            >>> b.diff(a)
            []
        """
        missing: list[FieldDef] = []
        for field_def in self.fields:
            if self.referenced and field_def.name == PK_FIELD_NAME:
                continue
            if not other.has_column(field_def.name):
                missing.append(field_def)
        return missing


# ============================================================================
# Relationship Models
# ============================================================================


class Relationship(BaseModel):
    """A declared many-to-many relationship between two referenced tables."""

    kind: str = MANY_TO_MANY
    policy: str = POLICY_NONE
    first_table: str
    second_table: str

    @property
    def tables(self) -> tuple[str, str]:
        return (self.first_table, self.second_table)

    @property
    def join_table(self) -> str:
        return f"{self.first_table}_{self.second_table}"


class JoinTable(BaseModel):
    """A materialized join table and the two tables it links, in column order."""

    name: str
    first_table: str
    second_table: str

    @property
    def tables(self) -> tuple[str, str]:
        return (self.first_table, self.second_table)

    def involves(self, table: str) -> bool:
        return table in self.tables

    def other(self, table: str) -> str:
        """The participant that is not ``table``."""
        return self.second_table if table == self.first_table else self.first_table

    def column_for(self, table: str) -> str:
        return join_column(table)


# ============================================================================
# Comparison and Result Models
# ============================================================================


class TableDiff(BaseModel):
    """Differences between a desired table model and the live table."""

    table: str
    exists: bool = True
    fields_to_add: list[FieldDef] = Field(default_factory=list)
    fields_to_remove: list[FieldDef] = Field(default_factory=list)
    referenced_changed: bool = False
    target_referenced: bool = False

    @property
    def in_sync(self) -> bool:
        """True if the live table already matches the model."""
        return (
            self.exists
            and not self.fields_to_add
            and not self.fields_to_remove
            and not self.referenced_changed
        )


class RebuildResult(BaseModel):
    """Result of a save / drop / recreate / repopulate table rebuild.

    Attributes:
        success: True if every step completed.
        table: Rebuilt table.
        steps_completed: Names of the steps that ran successfully, in order.
        failed_step: Name of the step that failed, if any.
        rows_restored: Rows reinserted into the rebuilt table.
        join_tables_restored: Join tables recreated and repopulated.
        join_tables_dropped: Join tables dropped and not recreated.
        error: Error message if the rebuild failed.
    """

    success: bool = False
    table: str
    steps_completed: list[str] = Field(default_factory=list)
    failed_step: str | None = None
    rows_restored: int = 0
    join_tables_restored: list[str] = Field(default_factory=list)
    join_tables_dropped: list[str] = Field(default_factory=list)
    error: str | None = None


class MigrationResult(BaseModel):
    """Result of one migration pass.

    Example:
        >>> result = MigrationResult(success=True)
        >>> result.format_report()
        'Schema up to date'
    """

    success: bool = False
    tables_created: list[str] = Field(default_factory=list)
    tables_rebuilt: list[str] = Field(default_factory=list)
    tables_dropped: list[str] = Field(default_factory=list)
    relations_created: list[str] = Field(default_factory=list)
    default_records_inserted: dict[str, int] = Field(default_factory=dict)
    error: str | None = None

    @property
    def change_count(self) -> int:
        """Number of DDL-level changes applied by the pass."""
        return (
            len(self.tables_created)
            + len(self.tables_rebuilt)
            + len(self.tables_dropped)
            + len(self.relations_created)
        )

    def format_report(self) -> str:
        """Format the migration result as a human-readable report."""
        if not self.success:
            return f"Migration failed: {self.error or 'unknown error'}"
        if self.change_count == 0:
            return "Schema up to date"

        lines = ["Migration applied:"]
        if self.tables_created:
            lines.append(f"  Created: {', '.join(self.tables_created)}")
        if self.tables_rebuilt:
            lines.append(f"  Rebuilt: {', '.join(self.tables_rebuilt)}")
        if self.relations_created:
            lines.append(f"  Relations: {', '.join(self.relations_created)}")
        if self.tables_dropped:
            lines.append(f"  Dropped: {', '.join(self.tables_dropped)}")
        return "\n".join(lines)
