"""Pydantic models for the database description."""

import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from db_manager.schema.models import (
    MANY_TO_MANY,
    PK_FIELD_NAME,
    POLICY_NONE,
    FieldDef,
    Relationship,
    TableModel,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration Models
# ============================================================================


class FieldConfig(BaseModel):
    """A ``<field>`` of a declared table."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    default_value: str = Field(default="", alias="default-value")
    not_null: bool = Field(default=False, alias="is-not-null")
    unique: bool = Field(default=False, alias="is-unique")

    @field_validator("default_value", mode="before")
    @classmethod
    def _text_default(cls, value: object) -> object:
        return "" if value is None else str(value)


class TableConfig(BaseModel):
    """A declared table with its fields and optional default records."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    fields: list[FieldConfig] = Field(default_factory=list)
    default_records: list[dict[str, str]] = Field(
        default_factory=list, alias="default-records"
    )

    @field_validator("default_records", mode="before")
    @classmethod
    def _text_values(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        return [
            {str(k): "" if v is None else str(v) for k, v in record.items()}
            if isinstance(record, dict)
            else record
            for record in value
        ]

    @model_validator(mode="after")
    def _unique_field_names(self) -> "TableConfig":
        seen: set[str] = set()
        for field_config in self.fields:
            if field_config.name in seen:
                raise ValueError(
                    f"Field '{field_config.name}' declared twice in table '{self.name}'"
                )
            seen.add(field_config.name)
        return self


class RelationshipConfig(BaseModel):
    """A declared many-to-many relationship."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str = MANY_TO_MANY
    policy: str = POLICY_NONE
    first_table: str = Field(alias="first-table")
    second_table: str = Field(alias="second-table")

    @model_validator(mode="after")
    def _distinct_tables(self) -> "RelationshipConfig":
        if self.first_table == self.second_table:
            raise ValueError(f"Table '{self.first_table}' cannot be related to itself")
        return self


class DatabaseDescription(BaseModel):
    """Complete desired state of a database.

    Example:
        >>> desc = DatabaseDescription(
        ...     tables=[TableConfig(name="x"), TableConfig(name="y")],
        ...     relationships=[RelationshipConfig(first_table="x", second_table="y")],
        ... )
        >>> [m.referenced for m in desc.table_models()]
        [True, True]
    """

    tables: list[TableConfig] = Field(default_factory=list)
    relationships: list[RelationshipConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_tables(self) -> "DatabaseDescription":
        names = [t.name for t in self.tables]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Tables declared more than once: {', '.join(duplicates)}")
        if not self.tables:
            logger.warning("Database description declares no tables")

        participants = self.participants()
        for table in self.tables:
            if table.name in participants and any(f.name == PK_FIELD_NAME for f in table.fields):
                raise ValueError(
                    f"Table '{table.name}' is in a relationship and cannot declare "
                    f"a field named '{PK_FIELD_NAME}'"
                )
        return self

    def participants(self) -> set[str]:
        """Every table named by a relationship."""
        return {t for rel in self.relationships for t in (rel.first_table, rel.second_table)}

    def get_table(self, name: str) -> TableConfig | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def relationship_models(self) -> list[Relationship]:
        return [
            Relationship(
                kind=rel.kind,
                policy=rel.policy,
                first_table=rel.first_table,
                second_table=rel.second_table,
            )
            for rel in self.relationships
        ]

    def table_models(self) -> list[TableModel]:
        """Desired table models; relationship participants are referenced."""
        participants = self.participants()
        models = []
        for table in self.tables:
            model = TableModel(
                name=table.name,
                fields=[
                    FieldDef(
                        name=f.name,
                        default_value=f.default_value,
                        not_null=f.not_null,
                        unique=f.unique,
                    )
                    for f in table.fields
                ],
                referenced=table.name in participants,
            )
            models.append(model)
        return models
