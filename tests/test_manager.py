"""Tests for the synchronized database manager."""

import threading
from pathlib import Path

import pytest

from db_manager import DatabaseManager, MigrationError
from db_manager.config import ConfigurationError
from db_manager.schema.models import FieldDef, TableModel

SCENARIO = """<database>
  <table name="t">
    <field name="f1" is-not-null="true"/>
    <field name="f2" is-not-null="true"/>
  </table>
  <table name="x">
    <field name="a"/>
    <default-records>
      <record><field name="a" value="1"/></record>
      <record><field name="a" value="2"/></record>
    </default-records>
  </table>
  <table name="y">
    <field name="b"/>
    <default-records>
      <record><field name="b" value="only"/></record>
    </default-records>
  </table>
  <relationship kind="m:n" policy="link-all" first-table="x" second-table="y"/>
</database>
"""


class TestConstruction:
    """Opening a database with a description."""

    def test_initial_migration(self, db_path: str) -> None:
        """The description is applied before the constructor returns."""
        with DatabaseManager(db_path, SCENARIO) as db:
            assert db.list_tables() == ["t", "x", "x_y", "y"]
            assert len(db.select("x_y")) == 2

    def test_reopen_is_stable(self, db_path: str) -> None:
        """Reopening with the same description changes nothing."""
        with DatabaseManager(db_path, SCENARIO) as db:
            db.insert("t", [{"f1": "a", "f2": "b"}])
        with DatabaseManager(db_path, SCENARIO) as db:
            assert db.select("t") == [{"f1": "a", "f2": "b"}]
            assert len(db.select("x_y")) == 2
            assert len(db.select("x")) == 2

    def test_bad_description(self, db_path: str) -> None:
        """Unreadable descriptions raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            DatabaseManager(db_path, "<database>")

    def test_self_relationship_description(self, db_path: str) -> None:
        """A table related to itself is a configuration error."""
        with pytest.raises(ConfigurationError):
            DatabaseManager(
                db_path,
                '<database><table name="x"><field name="a"/></table>'
                '<relationship kind="m:n" first-table="x" second-table="x"/></database>',
            )

    def test_failed_initial_migration(self, tmp_path: Path) -> None:
        """A failing first pass raises MigrationError and leaves nothing behind."""
        path = str(tmp_path / "bad.db")
        with DatabaseManager(path) as db:
            db.create_table(TableModel(name="t", fields=[FieldDef(name="a")]))
            db.insert("t", [{"a": "dup"}, {"a": "dup"}])

        bad = (
            '<database><table name="fresh"><field name="z"/></table>'
            '<table name="t"><field name="a" is-unique="true"/><field name="b"/></table></database>'
        )
        with pytest.raises(MigrationError, match="'t'"):
            DatabaseManager(path, bad)

        with DatabaseManager(path) as db:
            assert db.list_tables() == ["t"]
            assert db.select("t") == [{"a": "dup"}, {"a": "dup"}]


class TestAtomicOperations:
    """Per-call transactions."""

    def test_concrete_scenario(self, db_path: str) -> None:
        """Insert, modify and remove through the locked API."""
        with DatabaseManager(db_path, SCENARIO) as db:
            assert db.insert("t", [{"f1": "a", "f2": "b"}])
            assert db.select("t") == [{"f1": "a", "f2": "b"}]
            assert db.modify("t", {"f1": "a"}, {"f2": "c"})
            assert db.select("t") == [{"f1": "a", "f2": "c"}]
            assert db.remove("t", {"f1": "a"})
            assert db.select("t") == []

    def test_failed_batch_rolled_back(self, db: DatabaseManager) -> None:
        """A failing insert leaves none of its batch behind."""
        db.create_table(TableModel(name="u", fields=[FieldDef(name="k", unique=True)]))
        assert db.insert("u", [{"k": "1"}, {"k": "2"}, {"k": "1"}]) is False
        assert db.select("u") == []

    def test_non_atomic_keeps_partial_batch(self, db: DatabaseManager) -> None:
        """Without atomic, earlier records of a failing batch stay."""
        db.create_table(TableModel(name="u", fields=[FieldDef(name="k", unique=True)]))
        assert db.insert("u", [{"k": "1"}, {"k": "1"}], atomic=False) is False
        assert db.select("u") == [{"k": "1"}]

    def test_changes_visible_to_other_connections(self, db_path: str) -> None:
        """Committed writes are durable."""
        with DatabaseManager(db_path) as db:
            db.create_table(TableModel(name="t", fields=[FieldDef(name="a")]))
            db.insert("t", {"a": "1"})
        with DatabaseManager(db_path) as db:
            assert db.select("t") == [{"a": "1"}]

    def test_relationship_operations(self, db: DatabaseManager) -> None:
        """create_relation, link and get_linked_records through the façade."""
        db.create_table(TableModel(name="a", fields=[FieldDef(name="n")]))
        db.create_table(TableModel(name="b", fields=[FieldDef(name="m")]))
        assert db.create_relation("m:n", "a", "b") == "a_b"
        assert db.link("a", {"n": "1"}, "b", {"m": "2"}) is True
        assert db.get_linked_records("b", {"m": "2"}) == {"a": [{"n": "1"}]}
        assert db.unlink("a", {"n": "1"}, "b", {"m": "2"}) is True
        assert db.apply_policy("a_b", "link-all") is True
        assert len(db.select("a_b")) == 1

    def test_self_relation_returns_none(self, db: DatabaseManager) -> None:
        """Relating a table to itself fails without raising."""
        db.create_table(TableModel(name="x", fields=[FieldDef(name="a")]))
        assert db.create_relation("m:n", "x", "x") is None
        assert db.list_tables() == ["x"]


class TestTransaction:
    """Composed operations."""

    def test_commit_on_exit(self, db: DatabaseManager) -> None:
        """Operations inside the block commit together."""
        with db.transaction() as core:
            core.create_table(TableModel(name="t", fields=[FieldDef(name="a")]))
            core.insert("t", [{"a": "1"}, {"a": "2"}])
        assert db.select("t") == [{"a": "1"}, {"a": "2"}]

    def test_rollback_on_exception(self, db: DatabaseManager) -> None:
        """An exception undoes the whole block, DDL included."""
        with pytest.raises(RuntimeError):
            with db.transaction() as core:
                core.create_table(TableModel(name="t", fields=[FieldDef(name="a")]))
                core.insert("t", [{"a": "1"}])
                raise RuntimeError("abort")
        assert db.table_exists("t") is False


class TestConcurrency:
    """The manager lock serializes callers."""

    def test_threads_serialize(self, db: DatabaseManager) -> None:
        """Concurrent modify calls never lose an increment."""
        db.create_table(TableModel(name="c", fields=[FieldDef(name="n")]))
        db.insert("c", {"n": "0"})

        def bump() -> None:
            for _ in range(20):
                with db.transaction() as core:
                    value = int(core.select("c")[0]["n"])
                    core.modify("c", {}, {"n": str(value + 1)})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert db.select("c") == [{"n": "80"}]


class TestLifecycle:
    """Dumps and closing."""

    def test_dumps(self, db: DatabaseManager) -> None:
        """to_string and dump_html cover the requested tables."""
        db.create_table(TableModel(name="t", fields=[FieldDef(name="a")]))
        assert db.to_string().startswith("Table t is empty.")
        assert "<h3> Table : t</h3>" in db.dump_html("t")

    def test_close_idempotent(self, db_path: str) -> None:
        """close() can be called twice."""
        db = DatabaseManager(db_path)
        db.close()
        db.close()
        assert db.closed is True
