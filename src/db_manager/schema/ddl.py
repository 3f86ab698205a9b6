"""DDL statement builders.

Pure functions turning table models into ``CREATE`` / ``DROP`` statements.
Identifiers are quoted with the engine's quoting function; default values
are inlined as escaped string literals because SQLite does not accept bound
parameters in DDL.
"""

from collections.abc import Callable

from db_manager.adapters.sqlite import quote_literal
from db_manager.schema.models import PK_FIELD_NAME, FieldDef, JoinTable, TableModel

Quote = Callable[[str], str]


def column_sql(field_def: FieldDef, quote: Quote, references: tuple[str, str] | None = None) -> str:
    """Column definition for one declared field (TEXT affinity).

    Example:
        >>> print(column_sql(FieldDef(name="a", not_null=True), lambda n: f'"{n}"'))
        "a" TEXT NOT NULL DEFAULT ''
    """
    parts = [quote(field_def.name), "TEXT"]
    if field_def.not_null:
        parts.append("NOT NULL")
    if field_def.unique:
        parts.append("UNIQUE")
    parts.append(f"DEFAULT {quote_literal(field_def.default_value)}")
    if references is not None:
        ref_table, ref_field = references
        parts.append(f"REFERENCES {quote(ref_table)}({quote(ref_field)})")
    return " ".join(parts)


def create_table_sql(model: TableModel, quote: Quote) -> str:
    """CREATE TABLE statement for a model.

    The surrogate key comes first when the model is referenced, then the
    declared fields in order.
    """
    columns: list[str] = []
    if model.referenced:
        columns.append(f"{quote(PK_FIELD_NAME)} INTEGER PRIMARY KEY AUTOINCREMENT")
    for field_def in model.fields:
        columns.append(column_sql(field_def, quote, model.foreign_keys.get(field_def.name)))
    return f"CREATE TABLE {quote(model.name)} ({', '.join(columns)})"


def create_join_table_sql(join: JoinTable, quote: Quote) -> str:
    """CREATE TABLE statement for a many-to-many join table."""
    first_col = quote(join.column_for(join.first_table))
    second_col = quote(join.column_for(join.second_table))
    pk = quote(PK_FIELD_NAME)
    return (
        f"CREATE TABLE {quote(join.name)} ("
        f"{first_col} INTEGER REFERENCES {quote(join.first_table)}({pk}), "
        f"{second_col} INTEGER REFERENCES {quote(join.second_table)}({pk}), "
        f"PRIMARY KEY ({first_col}, {second_col}))"
    )


def drop_table_sql(table: str, quote: Quote) -> str:
    return f"DROP TABLE {quote(table)}"
