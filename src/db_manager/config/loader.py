"""Database description loading from TOML or XML.

Accepted sources:

- A path to a ``.toml`` file::

    [[database.tables]]
    name = "hosts"
    fields = [{ name = "address", is-not-null = true }]
    default-records = [{ address = "127.0.0.1" }]

    [[database.relationships]]
    kind = "m:n"
    policy = "link-all"
    first-table = "hosts"
    second-table = "groups"

  (``[[tables]]`` / ``[[relationships]]`` at top level work too.)

- A path to an ``.xml`` file::

    <database>
      <table name="hosts">
        <field name="address" default-value="" is-not-null="true" is-unique="false"/>
        <default-records>
          <record><field name="address" value="127.0.0.1"/></record>
        </default-records>
      </table>
      <relationship kind="m:n" policy="link-all" first-table="hosts" second-table="groups"/>
    </database>

- Either document passed inline as a string.
"""

import logging
import tomllib
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from db_manager.config.models import DatabaseDescription

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a database description cannot be read or is invalid."""

    pass


def _xml_flag(value: str | None) -> bool:
    return value == "true"


def _parse_xml(content: str) -> dict[str, Any]:
    """Turn the XML dialect into the dict shape of ``DatabaseDescription``."""
    root = ET.fromstring(content)
    if root.tag != "database":
        raise ConfigurationError(f"Expected <database> root element, got <{root.tag}>")

    tables: list[dict[str, Any]] = []
    relationships: list[dict[str, Any]] = []
    for elem in root:
        if elem.tag == "table":
            fields = []
            records: list[dict[str, str]] = []
            for child in elem:
                if child.tag == "field":
                    fields.append(
                        {
                            "name": child.get("name"),
                            "default_value": child.get("default-value", ""),
                            "not_null": _xml_flag(child.get("is-not-null")),
                            "unique": _xml_flag(child.get("is-unique")),
                        }
                    )
                elif child.tag == "default-records":
                    for record_elem in child.iter("record"):
                        records.append(
                            {
                                f.get("name", ""): f.get("value", "")
                                for f in record_elem
                                if f.tag == "field"
                            }
                        )
            tables.append({"name": elem.get("name"), "fields": fields, "default_records": records})
        elif elem.tag == "relationship":
            relationships.append(
                {
                    "kind": elem.get("kind"),
                    "policy": elem.get("policy"),
                    "first_table": elem.get("first-table"),
                    "second_table": elem.get("second-table"),
                }
            )
        else:
            logger.warning(f"Ignoring unknown element <{elem.tag}> in database description")

    return {"tables": tables, "relationships": _drop_none(relationships)}


def _drop_none(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{k: v for k, v in item.items() if v is not None} for item in items]


def _parse_toml(content: str) -> dict[str, Any]:
    data = tomllib.loads(content)
    return data.get("database", data)


def _read_source(source: str | Path) -> tuple[str, str]:
    """Return (content, format) for a path or an inline document."""
    if isinstance(source, str) and source.lstrip().startswith("<"):
        return source, "xml"

    path = Path(source)
    if isinstance(source, Path) or (len(str(source)) < 4096 and "\n" not in str(source)):
        if path.exists():
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigurationError(f"Cannot read database description {path}: {e}") from e
            if path.suffix.lower() == ".toml":
                return content, "toml"
            if path.suffix.lower() == ".xml" or content.lstrip().startswith("<"):
                return content, "xml"
            return content, "toml"
        if isinstance(source, Path) or path.suffix.lower() in (".toml", ".xml"):
            raise ConfigurationError(f"Database description not found: {path}")

    return str(source), "toml"


def load_database_description(source: str | Path) -> DatabaseDescription:
    """Load a database description.

    Args:
        source: Path to a ``.toml`` / ``.xml`` file, or the document itself.

    Returns:
        Validated ``DatabaseDescription``.

    Raises:
        ConfigurationError: If the source is missing, unparseable or invalid.

    Example:
        >>> desc = load_database_description('<database><table name="t"/></database>')
        >>> desc.tables[0].name
        't'
    """
    content, fmt = _read_source(source)
    try:
        data = _parse_xml(content) if fmt == "xml" else _parse_toml(content)
    except ET.ParseError as e:
        raise ConfigurationError(f"Invalid XML database description: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML database description: {e}") from e

    try:
        description = DatabaseDescription.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid database description: {e}") from e

    logger.debug(
        f"Loaded description: {len(description.tables)} tables, "
        f"{len(description.relationships)} relationships"
    )
    return description
