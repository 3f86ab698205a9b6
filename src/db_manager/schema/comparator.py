"""Table comparison using set operations.

Compares a desired ``TableModel`` against the live table snapshot.
Pure logic -- no I/O, no database connections.

Usage:
    from db_manager.schema.comparator import compare_tables
    from db_manager.schema.introspector import SchemaIntrospector

    introspector = SchemaIntrospector(engine)
    live = introspector.materialize("hosts") if introspector.table_exists("hosts") else None

    diff = compare_tables(model, live)
    if not diff.in_sync:
        print(f"add: {[f.name for f in diff.fields_to_add]}")
"""

from db_manager.schema.models import TableDiff, TableModel


def compare_tables(model: TableModel, live: TableModel | None) -> TableDiff:
    """Compare a desired table model with the live table.

    Performs set operations on field names to find:
    - Fields to add: declared in *model* but absent from *live*
    - Fields to remove: present in *live* but not declared in *model*
    - Whether the ``referenced`` flag differs (surrogate key to add or strip)

    Args:
        model: The desired table description.
        live: Snapshot from ``SchemaIntrospector.materialize()``, or ``None``
            when the table does not exist.

    Returns:
        ``TableDiff``; ``in_sync`` is ``True`` when the models are equal.

    Examples:
        >>> from db_manager.schema.models import FieldDef
        >>> model = TableModel(name="t", fields=[FieldDef(name="a"), FieldDef(name="b")])
        >>> live = TableModel(name="t", fields=[FieldDef(name="a"), FieldDef(name="c")])
        >>> diff = compare_tables(model, live)
        >>> [f.name for f in diff.fields_to_add], [f.name for f in diff.fields_to_remove]
        (['b'], ['c'])

        >>> compare_tables(model, None).exists
        False
    """
    if live is None:
        return TableDiff(
            table=model.name,
            exists=False,
            fields_to_add=list(model.fields),
            target_referenced=model.referenced,
        )

    return TableDiff(
        table=model.name,
        exists=True,
        fields_to_add=model.diff(live),
        fields_to_remove=live.diff(model),
        referenced_changed=model.referenced != live.referenced,
        target_referenced=model.referenced,
    )
