"""Database manager factory.

``DatabaseFactory`` hands out one shared ``DatabaseManager`` per database
location and counts references to it:

- ``get_manager(url)`` creates the manager on first use (running the initial
  migration when a description is given) and increments the count;
- ``free_manager(url)`` decrements it and closes the manager at zero.

A manager requested with ``exclusive=True`` cannot be shared: any second
request for the same location fails with ``DatabaseLockedError``, and an
advisory ``flock`` on ``<lock_dir>/dbmanager<path>.lock`` keeps other
processes out for as long as the manager is allocated.

Locations are ``sqlite:///relative.db``, ``sqlite:////absolute.db`` or
``sqlite://`` (in-memory), parsed with SQLAlchemy's ``make_url``.

Usage:
    factory = DatabaseFactory()
    with ManagedDatabase(factory, "sqlite:////var/lib/app.db", "schema.toml") as db:
        db.insert("hosts", [{"address": "10.0.0.1"}])
"""

import fcntl
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from db_manager.config.models import DatabaseDescription
from db_manager.manager import DatabaseManager

logger = logging.getLogger(__name__)

SQLITE_KIND = "sqlite"
MEMORY_PATH = ":memory:"
DEFAULT_LOCK_DIR = "/tmp"


class DatabaseLockedError(Exception):
    """Raised when a database is held exclusively by another user."""

    pass


def parse_location(url: str) -> str:
    """Return the database file path of a ``sqlite://`` location.

    Raises:
        ValueError: If the location is not a SQLite URL.

    Examples:
        >>> parse_location("sqlite:////tmp/app.db")
        '/tmp/app.db'
        >>> parse_location("sqlite://")
        ':memory:'
    """
    try:
        parsed = make_url(url)
    except ArgumentError as e:
        raise ValueError(f"Invalid database location '{url}': {e}") from e
    if parsed.get_backend_name() != SQLITE_KIND:
        raise ValueError(
            f"Unsupported database kind '{parsed.get_backend_name()}'. "
            f"Currently supported databases: {SQLITE_KIND}"
        )
    return parsed.database or MEMORY_PATH


def lock_file_path(path: str, lock_dir: str | Path = DEFAULT_LOCK_DIR) -> Path:
    """Advisory lock file of a database path.

    Example:
        >>> str(lock_file_path("/var/lib/app.db"))
        '/tmp/dbmanager_var_lib_app.db.lock'
    """
    return Path(lock_dir) / f"dbmanager{path.replace('/', '_')}.lock"


@dataclass
class _Allocation:
    manager: DatabaseManager
    exclusive: bool
    references: int = 0
    lock_file: IO[str] | None = None
    lock_path: Path | None = None


class DatabaseFactory:
    """Reference-counted registry of shared managers, keyed by location.

    Args:
        lock_dir: Directory holding the advisory lock files.
    """

    def __init__(self, lock_dir: str | Path = DEFAULT_LOCK_DIR):
        self._lock_dir = Path(lock_dir)
        self._allocations: dict[str, _Allocation] = {}
        self._mutex = threading.Lock()

    def get_manager(
        self,
        url: str,
        description: DatabaseDescription | str | Path | None = None,
        exclusive: bool = False,
    ) -> DatabaseManager:
        """Return the shared manager of ``url``, creating it if needed.

        Raises:
            ValueError: If ``url`` is not a SQLite location.
            DatabaseLockedError: If exclusivity cannot be granted.
            ConfigurationError: If the description cannot be loaded.
            MigrationError: If the initial migration fails.
        """
        path = parse_location(url)
        with self._mutex:
            allocation = self._allocations.get(url)
            if allocation is not None:
                if allocation.exclusive or exclusive:
                    raise DatabaseLockedError(f"Database {url} is already allocated")
                allocation.references += 1
                return allocation.manager

            lock_file, lock_path = self._acquire_file_lock(path) if exclusive else (None, None)
            try:
                manager = DatabaseManager(path, description)
            except Exception:
                self._release_file_lock(lock_file, lock_path)
                raise
            self._allocations[url] = _Allocation(
                manager=manager,
                exclusive=exclusive,
                references=1,
                lock_file=lock_file,
                lock_path=lock_path,
            )
            logger.debug(f"Allocated manager for {url}{' (exclusive)' if exclusive else ''}")
            return manager

    def free_manager(self, url: str) -> None:
        """Release one reference; the manager is closed with the last one."""
        with self._mutex:
            allocation = self._allocations.get(url)
            if allocation is None:
                return
            allocation.references -= 1
            if allocation.references > 0:
                return
            del self._allocations[url]
            allocation.manager.close()
            self._release_file_lock(allocation.lock_file, allocation.lock_path)
            logger.debug(f"Freed manager for {url}")

    def ref_count(self, url: str) -> int:
        allocation = self._allocations.get(url)
        return allocation.references if allocation else 0

    def close_all(self) -> None:
        """Close every allocated manager regardless of its reference count."""
        with self._mutex:
            allocations = list(self._allocations.values())
            self._allocations.clear()
        for allocation in allocations:
            allocation.manager.close()
            self._release_file_lock(allocation.lock_file, allocation.lock_path)

    # ------------------------------------------------------------------
    # Advisory file lock
    # ------------------------------------------------------------------

    def _acquire_file_lock(self, path: str) -> tuple[IO[str], Path]:
        lock_path = lock_file_path(path, self._lock_dir)
        try:
            lock_file = open(lock_path, "w")
        except OSError as e:
            raise DatabaseLockedError(f"Could not create lock file {lock_path}: {e}") from e
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            lock_file.close()
            raise DatabaseLockedError(f"Could not flock() on {lock_path}: {e}") from e
        return lock_file, lock_path

    def _release_file_lock(self, lock_file: IO[str] | None, lock_path: Path | None) -> None:
        if lock_file is None:
            return
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        lock_file.close()
        if lock_path is not None:
            lock_path.unlink(missing_ok=True)
            logger.debug(f"Freed lock file {lock_path}")


class ManagedDatabase:
    """Context manager pairing one ``get_manager`` with one ``free_manager``."""

    def __init__(
        self,
        factory: DatabaseFactory,
        url: str,
        description: DatabaseDescription | str | Path | None = None,
        exclusive: bool = False,
    ):
        self._factory = factory
        self._url = url
        self._description = description
        self._exclusive = exclusive
        self._manager: DatabaseManager | None = None

    def __enter__(self) -> DatabaseManager:
        self._manager = self._factory.get_manager(self._url, self._description, self._exclusive)
        return self._manager

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._manager is not None:
            self._manager = None
            self._factory.free_manager(self._url)
