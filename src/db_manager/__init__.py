"""db-manager: SQLite schema reconciliation and record access.

Describe tables and many-to-many relationships as data (TOML or XML); the
manager migrates a live SQLite database to that description without losing
rows, and exposes dict-based CRUD and link operations behind one lock.

Usage:
    from db_manager import DatabaseManager, load_database_description
    from db_manager import DatabaseFactory, ManagedDatabase
    from db_manager import TableModel, FieldDef
"""

__version__ = "0.1.0"

# Adapters
from db_manager.adapters.base import StorageEngine
from db_manager.adapters.sqlite import SQLiteEngine

# Config
from db_manager.config.loader import ConfigurationError, load_database_description
from db_manager.config.models import DatabaseDescription

# Manager and factory
from db_manager.factory import DatabaseFactory, DatabaseLockedError, ManagedDatabase
from db_manager.manager import CoreSession, DatabaseManager, MigrationError

# Schema models
from db_manager.schema.models import FieldDef, MigrationResult, Relationship, TableModel

__all__ = [
    # Adapters
    "StorageEngine",
    "SQLiteEngine",
    # Config
    "load_database_description",
    "ConfigurationError",
    "DatabaseDescription",
    # Manager and factory
    "DatabaseManager",
    "CoreSession",
    "MigrationError",
    "DatabaseFactory",
    "ManagedDatabase",
    "DatabaseLockedError",
    # Schema models
    "TableModel",
    "FieldDef",
    "Relationship",
    "MigrationResult",
]
