"""Database description: models and TOML / XML loading.

Usage:
    >>> from db_manager.config import load_database_description, DatabaseDescription
"""

from db_manager.config.loader import ConfigurationError, load_database_description
from db_manager.config.models import (
    DatabaseDescription,
    FieldConfig,
    RelationshipConfig,
    TableConfig,
)

__all__ = [
    "load_database_description",
    "ConfigurationError",
    "DatabaseDescription",
    "TableConfig",
    "FieldConfig",
    "RelationshipConfig",
]
