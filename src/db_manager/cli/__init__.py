"""CLI module for SQLite schema migration and inspection.

Provides commands to migrate a database to a description, list its tables,
read a table and dump contents.

Usage:
    db-manager migrate --database app.db --config schema.toml
    db-manager tables --database app.db
    db-manager select --database app.db hosts --columns address --distinct
    db-manager dump --database app.db --table hosts --html

Commands:
    migrate  - Reconcile the database with a TOML / XML description
    tables   - List tables with their kind, columns and row count
    select   - Print the rows of one table
    dump     - Text or HTML dump of every table (or one)
"""

import argparse
import logging
import sys

from rich.console import Console
from rich.table import Table

from db_manager.config.loader import ConfigurationError, load_database_description
from db_manager.manager import DatabaseManager

console = Console()


# ============================================================================
# Command implementations
# ============================================================================


def cmd_migrate(args: argparse.Namespace) -> int:
    """Run one atomic migration pass.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on configuration or migration failure.
    """
    try:
        description = load_database_description(args.config)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    console.print(f"Migrating [bold]{args.database}[/bold]...", style="dim")
    with DatabaseManager(args.database) as db:
        result = db.migrate(description)

    if not result.success:
        console.print()
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print()
    if result.change_count == 0 and not result.default_records_inserted:
        console.print("[bold green]v[/bold green] Schema up to date")
        return 0

    summary = Table(title="Migration", show_header=True, header_style="bold")
    summary.add_column("Change")
    summary.add_column("Tables")
    rows = [
        ("Created", result.tables_created),
        ("Rebuilt", result.tables_rebuilt),
        ("Relations", result.relations_created),
        ("Dropped", result.tables_dropped),
        (
            "Default records",
            [f"{t} ({n})" for t, n in result.default_records_inserted.items()],
        ),
    ]
    for label, tables in rows:
        if tables:
            summary.add_row(label, ", ".join(tables))
    console.print(summary)
    console.print("[bold green]v[/bold green] Migration applied")
    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    """List tables with kind, columns and row count."""
    with DatabaseManager(args.database) as db:
        with db.transaction() as core:
            joins = core.registry.live_join_tables()
            table = Table(title="Tables", show_header=True, header_style="bold")
            table.add_column("Table")
            table.add_column("Kind")
            table.add_column("Columns")
            table.add_column("Rows", justify="right")
            for name in core.list_tables():
                if name in joins:
                    kind = f"join ({' / '.join(joins[name].tables)})"
                elif core.introspector.is_referenced(name):
                    kind = "referenced"
                else:
                    kind = "plain"
                table.add_row(
                    name,
                    kind,
                    ", ".join(core.get_column_names(name)),
                    str(core.store.count(name)),
                )
    console.print(table)
    return 0


def cmd_select(args: argparse.Namespace) -> int:
    """Print the rows of one table."""
    columns = [c.strip() for c in args.columns.split(",") if c.strip()] if args.columns else None
    with DatabaseManager(args.database) as db:
        if not db.table_exists(args.table):
            console.print(f"[red]Error: no table '{args.table}'[/red]")
            return 1
        if columns is None:
            columns = db.get_column_names(args.table)
        rows = db.select(args.table, columns, distinct=args.distinct)

    table = Table(title=args.table, show_header=True, header_style="bold")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(row[c] for c in columns))
    console.print(table)
    console.print(f"[dim]{len(rows)} rows[/dim]")
    return 0


def cmd_dump(args: argparse.Namespace) -> int:
    """Text or HTML dump of the database."""
    with DatabaseManager(args.database) as db:
        output = db.dump_html(args.table) if args.html else db.to_string(args.table)
    console.print(output, markup=False, highlight=False, soft_wrap=True)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-manager",
        description="SQLite schema migration and inspection toolkit",
    )

    # Global option: --verbose
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every statement (DEBUG level)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_database(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--database",
            "-d",
            required=True,
            help="Path to the SQLite database file",
        )

    # migrate command
    p_migrate = subparsers.add_parser(
        "migrate",
        help="Reconcile the database with a description",
    )
    add_database(p_migrate)
    p_migrate.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to a TOML or XML database description",
    )
    p_migrate.set_defaults(func=cmd_migrate)

    # tables command
    p_tables = subparsers.add_parser(
        "tables",
        help="List tables",
    )
    add_database(p_tables)
    p_tables.set_defaults(func=cmd_tables)

    # select command
    p_select = subparsers.add_parser(
        "select",
        help="Print the rows of one table",
    )
    add_database(p_select)
    p_select.add_argument("table", help="Table to read")
    p_select.add_argument(
        "--columns",
        help="Comma-separated list of columns (default: all)",
    )
    p_select.add_argument(
        "--distinct",
        action="store_true",
        help="Only distinct rows",
    )
    p_select.set_defaults(func=cmd_select)

    # dump command
    p_dump = subparsers.add_parser(
        "dump",
        help="Dump table contents",
    )
    add_database(p_dump)
    p_dump.add_argument(
        "--table",
        "-t",
        help="Only dump this table",
    )
    p_dump.add_argument(
        "--html",
        action="store_true",
        help="HTML instead of text",
    )
    p_dump.set_defaults(func=cmd_dump)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
