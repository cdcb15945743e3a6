"""Database schema models for PostgreSQL introspection.

This module defines data models representing the tables, columns and key
constraints reported by ``information_schema``, plus the "did you mean"
entries for requested tables that do not exist.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ColumnInfo(BaseModel):
    """Information about a table column, as reported by information_schema."""

    column_name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="information_schema data type")
    is_nullable: str = Field(..., description="'YES' or 'NO'")
    column_default: str | None = Field(None, description="Default value expression")
    character_maximum_length: int | None = Field(
        None, description="Declared maximum length for character types"
    )

    @property
    def nullable(self) -> bool:
        return self.is_nullable == "YES"


class ConstraintInfo(BaseModel):
    """A key constraint entry for one column of a table."""

    constraint_type: str = Field(..., description="PRIMARY KEY, FOREIGN KEY, UNIQUE, ...")
    constraint_name: str = Field(..., description="Constraint name")
    column_name: str = Field(..., description="Constrained column")


class TableInfo(BaseModel):
    """Complete information about a database table."""

    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(default="public", alias="schema", description="Schema name")
    table_name: str = Field(..., alias="name", description="Table name")
    columns: list[ColumnInfo] = Field(default_factory=list, description="Columns in ordinal order")
    constraints: list[ConstraintInfo] = Field(
        default_factory=list, description="Key constraints"
    )

    @property
    def full_name(self) -> str:
        """Get fully qualified table name.

        Returns:
            str: Schema-qualified table name.
        """
        return f"{self.schema_name}.{self.table_name}"


class MissingTableInfo(BaseModel):
    """A requested table that does not exist, with ranked alternatives."""

    table_name: str = Field(..., description="Requested table name")
    suggestions: list[str] = Field(
        default_factory=list, description="Up to three existing tables, best first"
    )


class SchemaResult(BaseModel):
    """Result of a schema introspection call."""

    model_config = ConfigDict(populate_by_name=True)

    tables: list[TableInfo] = Field(default_factory=list, description="Found tables")
    missing_tables: list[MissingTableInfo] | None = Field(
        None, alias="missingTables", description="Requested tables that were not found"
    )

    def get_table(self, table_name: str, schema_name: str = "public") -> TableInfo | None:
        """Find table by name.

        Args:
            table_name: Name of the table to find.
            schema_name: Schema name (defaults to 'public').

        Returns:
            TableInfo if found, None otherwise.
        """
        for table in self.tables:
            if table.table_name == table_name and table.schema_name == schema_name:
                return table
        return None

    def to_dict(self) -> dict[str, Any]:
        """Wire representation; ``missingTables`` only appears when non-empty."""
        data: dict[str, Any] = {"tables": [t.model_dump(by_alias=True) for t in self.tables]}
        if self.missing_tables:
            data["missingTables"] = [m.model_dump() for m in self.missing_tables]
        return data
