"""Text and HTML renderings of table contents.

Both dumps read through a ``CoreSession`` (the caller holds the lock).
Columns follow the engine's declaration order and rows follow scan order.
Header labels carry `` [PK]`` for primary-key columns and `` [U]`` for
unique ones.

Text format, per non-empty table::

    Table: hosts
    +----------+------+
    | address  | name |
    +----------+------+
    | 10.0.0.1 | gw   |
    +----------+------+

Empty tables are reported as ``Table <name> is empty.`` followed by
``Columns are: a, b``.
"""

import html
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from db_manager.manager import CoreSession

logger = logging.getLogger(__name__)

HTML_TABLE_CLASS = "table table-striped table-bordered table-hover"


def _tables(session: "CoreSession", table: str | None) -> list[str]:
    if table is None:
        return session.list_tables()
    return [table] if session.table_exists(table) else []


def _labels(session: "CoreSession", table: str, columns: list[str]) -> list[str]:
    primary_keys = session.get_primary_keys(table)
    uniqueness = session.get_uniqueness(table)
    labels = []
    for column in columns:
        label = column
        if column in primary_keys:
            label += " [PK]"
        if uniqueness.get(column):
            label += " [U]"
        labels.append(label)
    return labels


def _text_table(session: "CoreSession", table: str) -> str:
    columns = session.get_column_names(table)
    rows = session.select(table, columns)
    if not rows:
        return f"Table {table} is empty.\nColumns are: {', '.join(columns)}\n"

    labels = _labels(session, table, columns)
    widths = [
        max([len(label)] + [len(row[column]) for row in rows])
        for column, label in zip(columns, labels)
    ]

    def line(cells: list[str]) -> str:
        return "| " + " | ".join(cell.ljust(width) for cell, width in zip(cells, widths)) + " |"

    separator = "+-" + "-+-".join("-" * width for width in widths) + "-+"
    lines = [f"Table: {table}", separator, line(labels), separator]
    lines.extend(line([row[column] for column in columns]) for row in rows)
    lines.append(separator)
    return "\n".join(lines) + "\n"


def dump_tables(session: "CoreSession", table: str | None = None) -> str:
    """Fixed-width text dump of every table, or of ``table`` only.

    Tables are separated by one blank line.
    """
    return "\n".join(_text_table(session, name) for name in _tables(session, table))


def _html_table(session: "CoreSession", table: str) -> str:
    columns = session.get_column_names(table)
    labels = _labels(session, table, columns)
    rows = session.select(table, columns) if columns else []

    parts = [f"<h3> Table : {html.escape(table)}</h3>", f'<table class="{HTML_TABLE_CLASS}">']
    parts.append("<thead><tr>")
    parts.extend(f"<th>{html.escape(label)}</th>" for label in labels)
    parts.append("</tr></thead>")
    if rows:
        parts.append("<tbody>")
        for row in rows:
            parts.append("<tr>")
            parts.extend(f"<td>{html.escape(row[column])}</td>" for column in columns)
            parts.append("</tr>")
        parts.append("</tbody>")
    parts.append("</table>")
    return "".join(parts)


def dump_tables_html(session: "CoreSession", table: str | None = None) -> str:
    """HTML document with one ``<table>`` per table."""
    try:
        fk_enabled = session.engine.foreign_keys_enabled()
    except SQLAlchemyError as e:
        logger.warning(f"Could not read foreign key setting: {e}")
        fk_enabled = False

    parts = [
        "<!DOCTYPE html>",
        "<head><title>Tables dump</title></head>",
        "<body>",
        "<h1> Dump of tables </h1>",
        f"<p> Foreign Keys are {'enabled' if fk_enabled else 'disabled'} </p>",
    ]
    parts.extend(_html_table(session, name) for name in _tables(session, table))
    parts.append("</body>")
    return "".join(parts)
