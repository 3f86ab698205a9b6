"""Tests for the reference-counted manager factory."""

from pathlib import Path

import pytest

from db_manager.config import ConfigurationError
from db_manager.factory import (
    DatabaseFactory,
    DatabaseLockedError,
    ManagedDatabase,
    lock_file_path,
    parse_location,
)


@pytest.fixture
def url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'shared.db'}"


@pytest.fixture
def factory(tmp_path: Path):
    """Factory keeping its lock files under tmp_path."""
    db_factory = DatabaseFactory(lock_dir=tmp_path)
    yield db_factory
    db_factory.close_all()


class TestLocations:
    """URL parsing."""

    def test_parse_location(self, tmp_path: Path) -> None:
        """File and memory locations resolve to paths."""
        assert parse_location(f"sqlite:///{tmp_path}/a.db") == f"{tmp_path}/a.db"
        assert parse_location("sqlite:///relative.db") == "relative.db"
        assert parse_location("sqlite://") == ":memory:"

    @pytest.mark.parametrize("location", ["postgresql://localhost/db", "not a url"])
    def test_unsupported_location(self, factory: DatabaseFactory, location: str) -> None:
        """Only SQLite is supported."""
        with pytest.raises(ValueError):
            factory.get_manager(location)

    def test_lock_file_path(self, tmp_path: Path) -> None:
        """Slashes in the database path become underscores."""
        assert lock_file_path("/var/app.db", tmp_path) == tmp_path / "dbmanager_var_app.db.lock"


class TestReferenceCounting:
    """Shared managers."""

    def test_shared_instance(self, factory: DatabaseFactory, url: str) -> None:
        """Every request for a location gets the same manager."""
        first = factory.get_manager(url)
        second = factory.get_manager(url)
        assert first is second
        assert factory.ref_count(url) == 2

    def test_free_closes_at_zero(self, factory: DatabaseFactory, url: str) -> None:
        """The manager closes with its last reference."""
        manager = factory.get_manager(url)
        factory.get_manager(url)

        factory.free_manager(url)
        assert manager.closed is False
        assert factory.ref_count(url) == 1

        factory.free_manager(url)
        assert manager.closed is True
        assert factory.ref_count(url) == 0

    def test_free_unknown_is_noop(self, factory: DatabaseFactory, url: str) -> None:
        """Freeing an unallocated location does nothing."""
        factory.free_manager(url)
        assert factory.ref_count(url) == 0

    def test_reallocation_after_free(self, factory: DatabaseFactory, url: str) -> None:
        """A freed location gets a new manager."""
        first = factory.get_manager(url)
        factory.free_manager(url)
        assert factory.get_manager(url) is not first

    def test_initial_migration(self, factory: DatabaseFactory, url: str) -> None:
        """The description is applied on first allocation."""
        manager = factory.get_manager(url, '<database><table name="t"><field name="a"/></table></database>')
        assert manager.list_tables() == ["t"]


class TestExclusivity:
    """Exclusive allocations."""

    def test_exclusive_rejects_second_request(self, factory: DatabaseFactory, url: str) -> None:
        """An exclusive manager cannot be shared."""
        factory.get_manager(url, exclusive=True)
        with pytest.raises(DatabaseLockedError):
            factory.get_manager(url)
        with pytest.raises(DatabaseLockedError):
            factory.get_manager(url, exclusive=True)
        assert factory.ref_count(url) == 1

    def test_shared_rejects_exclusive_request(self, factory: DatabaseFactory, url: str) -> None:
        """A shared manager cannot be turned exclusive."""
        factory.get_manager(url)
        with pytest.raises(DatabaseLockedError):
            factory.get_manager(url, exclusive=True)
        assert factory.ref_count(url) == 1

    def test_lock_file_lifecycle(self, factory: DatabaseFactory, url: str, tmp_path: Path) -> None:
        """The lock file exists exactly while the exclusive manager is allocated."""
        lock_path = lock_file_path(parse_location(url), tmp_path)
        factory.get_manager(url, exclusive=True)
        assert lock_path.exists()
        factory.free_manager(url)
        assert not lock_path.exists()

    def test_lock_conflict_across_factories(self, tmp_path: Path, url: str) -> None:
        """A second owner of the lock file is refused."""
        first = DatabaseFactory(lock_dir=tmp_path)
        second = DatabaseFactory(lock_dir=tmp_path)
        try:
            first.get_manager(url, exclusive=True)
            with pytest.raises(DatabaseLockedError, match="flock"):
                second.get_manager(url, exclusive=True)
            first.free_manager(url)
            second.get_manager(url, exclusive=True)
            assert second.ref_count(url) == 1
        finally:
            first.close_all()
            second.close_all()

    def test_failed_migration_releases_lock(self, factory: DatabaseFactory, url: str, tmp_path: Path) -> None:
        """A manager that cannot be created leaves no lock behind."""
        with pytest.raises(ConfigurationError):
            factory.get_manager(url, "<database>", exclusive=True)
        assert factory.ref_count(url) == 0
        assert not lock_file_path(parse_location(url), tmp_path).exists()


class TestManagedDatabase:
    """Scoped allocation."""

    def test_scoped_reference(self, factory: DatabaseFactory, url: str) -> None:
        """The reference is held for the block only."""
        with ManagedDatabase(factory, url) as db:
            assert factory.ref_count(url) == 1
            with ManagedDatabase(factory, url) as again:
                assert again is db
                assert factory.ref_count(url) == 2
        assert factory.ref_count(url) == 0
        assert db.closed is True

    def test_released_on_error(self, factory: DatabaseFactory, url: str) -> None:
        """An exception in the block still frees the manager."""
        with pytest.raises(RuntimeError):
            with ManagedDatabase(factory, url, exclusive=True):
                raise RuntimeError("boom")
        assert factory.ref_count(url) == 0
