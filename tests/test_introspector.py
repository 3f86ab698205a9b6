"""Tests for live schema introspection."""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from db_manager.adapters.sqlite import SQLiteEngine
from db_manager.schema.introspector import SchemaIntrospector
from db_manager.schema.models import FieldDef, JoinTable


def setup_tables(engine: SQLiteEngine) -> None:
    engine.execute(
        'CREATE TABLE "plain" ("a" TEXT NOT NULL DEFAULT \'x\', "b" TEXT UNIQUE DEFAULT \'it\'\'s\', "c" TEXT)'
    )
    engine.execute(
        'CREATE TABLE "ref" ("id" INTEGER PRIMARY KEY AUTOINCREMENT, "name" TEXT DEFAULT \'\')'
    )
    engine.execute(
        'CREATE TABLE "other" ("id" INTEGER PRIMARY KEY AUTOINCREMENT, "label" TEXT DEFAULT \'\')'
    )
    engine.execute(
        'CREATE TABLE "ref_other" ("ref#id" INTEGER REFERENCES "ref"("id"), '
        '"other#id" INTEGER REFERENCES "other"("id"), PRIMARY KEY ("ref#id", "other#id"))'
    )


class TestFieldIntrospection:
    """Field names, defaults, not-null and uniqueness."""

    def test_field_names(self, engine: SQLiteEngine) -> None:
        """Surrogate key is excluded from referenced tables only."""
        setup_tables(engine)
        introspector = SchemaIntrospector(engine)
        assert introspector.get_field_names("plain") == {"a", "b", "c"}
        assert introspector.get_field_names("ref") == {"name"}
        assert introspector.get_column_names("ref") == ["id", "name"]

    def test_default_values_unquoted(self, engine: SQLiteEngine) -> None:
        """Defaults come back as declared text, quotes removed."""
        setup_tables(engine)
        defaults = SchemaIntrospector(engine).get_default_values("plain")
        assert defaults == {"a": "x", "b": "it's", "c": ""}

    def test_not_null_flags(self, engine: SQLiteEngine) -> None:
        """NOT NULL columns are flagged."""
        setup_tables(engine)
        assert SchemaIntrospector(engine).get_not_null_flags("plain") == {
            "a": True,
            "b": False,
            "c": False,
        }

    def test_uniqueness_from_indexes(self, engine: SQLiteEngine) -> None:
        """UNIQUE constraints and single-column unique indexes are reported."""
        setup_tables(engine)
        engine.execute('CREATE UNIQUE INDEX "plain_c" ON "plain" ("c")')
        engine.execute('CREATE UNIQUE INDEX "plain_ac" ON "plain" ("a", "c")')
        assert SchemaIntrospector(engine).get_uniqueness("plain") == {
            "a": False,
            "b": True,
            "c": True,
        }

    def test_materialize(self, engine: SQLiteEngine) -> None:
        """materialize() composes everything into a TableModel."""
        setup_tables(engine)
        model = SchemaIntrospector(engine).materialize("plain")
        assert model.referenced is False
        assert model.fields == [
            FieldDef(name="a", default_value="x", not_null=True),
            FieldDef(name="b", default_value="it's", unique=True),
            FieldDef(name="c"),
        ]


class TestKeys:
    """Referenced detection, primary and foreign keys."""

    def test_is_referenced(self, engine: SQLiteEngine) -> None:
        """Only single-column surrogate keys in first position count."""
        setup_tables(engine)
        engine.execute('CREATE TABLE "late_pk" ("a" TEXT, "id" INTEGER PRIMARY KEY)')
        introspector = SchemaIntrospector(engine)
        assert introspector.is_referenced("ref") is True
        assert introspector.is_referenced("plain") is False
        assert introspector.is_referenced("ref_other") is False
        assert introspector.is_referenced("late_pk") is False

    def test_primary_keys(self, engine: SQLiteEngine) -> None:
        """Composite keys list every column."""
        setup_tables(engine)
        introspector = SchemaIntrospector(engine)
        assert introspector.get_primary_keys("ref") == {"id"}
        assert introspector.get_primary_keys("ref_other") == {"ref#id", "other#id"}
        assert introspector.get_primary_keys("plain") == set()

    def test_foreign_keys(self, engine: SQLiteEngine) -> None:
        """Foreign keys map column to (table, column)."""
        setup_tables(engine)
        assert SchemaIntrospector(engine).get_foreign_keys("ref_other") == {
            "ref#id": ("ref", "id"),
            "other#id": ("other", "id"),
        }


class TestJoinTables:
    """Structural join table discovery."""

    def test_find_join_tables(self, engine: SQLiteEngine) -> None:
        """Join tables are found by structure, participants in column order."""
        setup_tables(engine)
        joins = SchemaIntrospector(engine).find_join_tables()
        assert joins == {
            "ref_other": JoinTable(name="ref_other", first_table="ref", second_table="other")
        }

    def test_underscore_names_are_not_join_tables(self, engine: SQLiteEngine) -> None:
        """A plain table named like a relationship is not mistaken for one."""
        setup_tables(engine)
        engine.execute('CREATE TABLE "ref_plain" ("x" TEXT)')
        assert "ref_plain" not in SchemaIntrospector(engine).find_join_tables()


class TestFailureAsAbsence:
    """Introspection failures degrade to empty results."""

    def test_missing_table(self, engine: SQLiteEngine) -> None:
        """A missing table has no fields and is not referenced."""
        introspector = SchemaIntrospector(engine)
        assert introspector.table_exists("nope") is False
        assert introspector.get_field_names("nope") == set()
        assert introspector.is_referenced("nope") is False
        assert introspector.materialize("nope").fields == []

    def test_engine_errors_logged_not_raised(self, caplog) -> None:
        """Driver errors become empty results and WARNING logs."""
        broken = MagicMock()
        error = OperationalError("SELECT", {}, Exception("disk I/O error"))
        broken.list_tables.side_effect = error
        broken.table_info.side_effect = error
        broken.table_exists.side_effect = error
        introspector = SchemaIntrospector(broken)

        assert introspector.list_tables() == set()
        assert introspector.table_exists("t") is False
        assert introspector.get_column_names("t") == []
        assert "Could not" in caplog.text

    def test_closed_engine(self, engine: SQLiteEngine) -> None:
        """A closed connection reads as an empty database."""
        setup_tables(engine)
        engine.close()
        assert SchemaIntrospector(engine).list_tables() == set()
