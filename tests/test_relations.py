"""Tests for many-to-many relationships."""

import pytest

from db_manager.manager import CoreSession
from db_manager.schema.models import FieldDef, Relationship, TableModel


@pytest.fixture
def pair(core: CoreSession) -> tuple[str, str]:
    """Two plain tables a(n) and b(m)."""
    core.create_table(TableModel(name="a", fields=[FieldDef(name="n")]))
    core.create_table(TableModel(name="b", fields=[FieldDef(name="m")]))
    return "a", "b"


class TestCreateRelation:
    """Join table creation."""

    def test_participants_marked_referenced(self, core: CoreSession, pair) -> None:
        """Creating a relation gives both tables a surrogate key, keeping rows."""
        core.insert("a", [{"n": "1"}])
        assert core.create_relation("m:n", "a", "b") == "a_b"
        assert core.introspector.is_referenced("a") is True
        assert core.introspector.is_referenced("b") is True
        assert core.select("a") == [{"id": "1", "n": "1"}]
        assert core.registry.join_table_for("b", "a").name == "a_b"

    def test_idempotent_for_unordered_pair(self, core: CoreSession, pair) -> None:
        """Same name for either order, no second join table."""
        assert core.create_relation("m:n", "a", "b") == "a_b"
        assert core.create_relation("m:n", "a", "b") == "a_b"
        assert core.create_relation("m:n", "b", "a") == "a_b"
        assert "b_a" not in core.list_tables()

    def test_unsupported_kind(self, core: CoreSession, pair) -> None:
        """Only m:n is supported."""
        assert core.create_relation("1:n", "a", "b") is None

    def test_self_relation_rejected(self, core: CoreSession, pair) -> None:
        """A table cannot be related to itself; nothing is rebuilt."""
        assert core.create_relation("m:n", "a", "a") is None
        assert core.introspector.is_referenced("a") is False
        assert "a_a" not in core.list_tables()

    def test_missing_participant(self, core: CoreSession, pair) -> None:
        """Both participants must exist."""
        assert core.create_relation("m:n", "a", "nope") is None


class TestApplyPolicy:
    """Population policies."""

    def test_link_all_cross_product(self, core: CoreSession, pair) -> None:
        """link-all links every pair of rows."""
        core.insert("a", [{"n": "1"}, {"n": "2"}])
        core.insert("b", [{"m": "x"}, {"m": "y"}])
        join = core.create_relation("m:n", "a", "b")
        assert core.apply_policy(join, "link-all") is True
        assert core.store.count(join) == 4

    def test_link_all_only_when_empty(self, core: CoreSession, pair) -> None:
        """A second application does not duplicate rows."""
        core.insert("a", [{"n": "1"}, {"n": "2"}])
        core.insert("b", [{"m": "x"}])
        join = core.create_relation("m:n", "a", "b")
        assert core.apply_policy(join, "link-all") is True
        assert core.apply_policy(join, "link-all") is True
        assert core.store.count(join) == 2

    def test_other_policy_is_noop(self, core: CoreSession, pair) -> None:
        """Unknown policies leave the join table empty."""
        core.insert("a", [{"n": "1"}])
        core.insert("b", [{"m": "x"}])
        join = core.create_relation("m:n", "a", "b")
        assert core.apply_policy(join, "none") is True
        assert core.store.count(join) == 0

    def test_not_a_join_table(self, core: CoreSession, pair) -> None:
        """Policies only apply to join tables."""
        assert core.apply_policy("a", "link-all") is False


class TestLinks:
    """link / unlink / get_linked_records."""

    def test_round_trip(self, core: CoreSession, pair) -> None:
        """link then get_linked_records includes the record; unlink removes it."""
        core.create_relation("m:n", "a", "b")

        assert core.link("a", {"n": "1"}, "b", {"m": "z"}) is True
        assert core.get_linked_records("a", {"n": "1"}) == {"b": [{"m": "z"}]}
        assert core.get_linked_records("b", {"m": "z"}) == {"a": [{"n": "1"}]}

        assert core.unlink("a", {"n": "1"}, "b", {"m": "z"}) is True
        assert core.get_linked_records("a", {"n": "1"}) == {"b": []}

    def test_link_creates_missing_records(self, core: CoreSession, pair) -> None:
        """Records that do not exist yet are inserted."""
        core.create_relation("m:n", "a", "b")
        core.link("a", {"n": "new"}, "b", {"m": "new"})
        assert core.select("a", ["n"]) == [{"n": "new"}]
        assert core.select("b", ["m"]) == [{"m": "new"}]

    def test_link_twice_fails(self, core: CoreSession, pair) -> None:
        """All links already present: failure."""
        core.create_relation("m:n", "a", "b")
        assert core.link("a", {"n": "1"}, "b", {"m": "z"}) is True
        assert core.link("b", {"m": "z"}, "a", {"n": "1"}) is False
        assert core.store.count("a_b") == 1

    def test_link_all_matching_rows(self, core: CoreSession, pair) -> None:
        """Every matching row on each side is linked."""
        core.create_relation("m:n", "a", "b")
        core.insert("a", [{"n": "dup"}, {"n": "dup"}])
        assert core.link("a", {"n": "dup"}, "b", {"m": "z"}) is True
        assert core.store.count("a_b") == 2

    def test_link_without_relation(self, core: CoreSession, pair) -> None:
        """No join table for the pair: failure."""
        assert core.link("a", {"n": "1"}, "b", {"m": "z"}) is False

    def test_unlink_requires_existing_records(self, core: CoreSession, pair) -> None:
        """Unknown records cannot be unlinked, and nothing is inserted."""
        core.create_relation("m:n", "a", "b")
        assert core.unlink("a", {"n": "1"}, "b", {"m": "z"}) is False
        assert core.select("a") == []

    def test_unlink_without_link(self, core: CoreSession, pair) -> None:
        """Existing but unlinked records: failure."""
        core.create_relation("m:n", "a", "b")
        core.insert("a", [{"n": "1"}])
        core.insert("b", [{"m": "z"}])
        assert core.unlink("a", {"n": "1"}, "b", {"m": "z"}) is False

    def test_linked_records_of_unknown_record(self, core: CoreSession, pair) -> None:
        """An unknown record has no linked records."""
        core.create_relation("m:n", "a", "b")
        assert core.get_linked_records("a", {"n": "ghost"}) == {}


class TestRegistry:
    """Declared pairs."""

    def test_declared_pair_either_order(self, core: CoreSession) -> None:
        """Declared pairs match regardless of table order."""
        core.registry.declare([Relationship(first_table="x", second_table="y")])
        assert core.registry.is_declared_pair("y", "x") is True
        assert core.registry.is_declared_pair("x", "z") is False
        assert [rel.join_table for rel in core.registry.declared] == ["x_y"]
