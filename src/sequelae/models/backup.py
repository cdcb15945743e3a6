"""Backup request and result models."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BackupFormat(StrEnum):
    """pg_dump output formats."""

    PLAIN = "plain"
    CUSTOM = "custom"
    TAR = "tar"
    DIRECTORY = "directory"

    @property
    def flag(self) -> str | None:
        """Value for pg_dump's ``-F`` option (None for plain SQL)."""
        return None if self is BackupFormat.PLAIN else self.value[0]

    @property
    def default_extension(self) -> str:
        return {
            BackupFormat.PLAIN: "sql",
            BackupFormat.CUSTOM: "dump",
            BackupFormat.TAR: "tar",
            BackupFormat.DIRECTORY: "",
        }[self]


class BackupOptions(BaseModel):
    """Validated pg_dump options.

    Field names are snake_case; the camelCase names used by tool clients
    (``dataOnly``, ``schemaOnly``, ``outputPath``) are accepted as aliases.
    Unknown fields are rejected.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    format: BackupFormat = Field(default=BackupFormat.PLAIN, description="Output format")
    tables: list[str] = Field(default_factory=list, description="Tables to include (-t)")
    schemas: list[str] = Field(default_factory=list, description="Schemas to include (-n)")
    data_only: bool = Field(default=False, alias="dataOnly", description="Dump only data (-a)")
    schema_only: bool = Field(
        default=False, alias="schemaOnly", description="Dump only schema (-s)"
    )
    compress: bool = Field(default=False, description="Compress custom-format output")
    output_path: str | None = Field(
        default=None, alias="outputPath", description="Output file or directory"
    )


class BackupResult(BaseModel):
    """Outcome of a backup run. ``error`` is set iff ``success`` is False."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(..., description="Whether pg_dump completed successfully")
    output_path: str = Field(default="", alias="outputPath", description="Resolved output path")
    size: int | None = Field(None, description="Output size in bytes, when measurable")
    duration: int = Field(default=0, ge=0, description="End-to-end duration in milliseconds")
    error: str | None = Field(None, description="Failure description")

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase keys)."""
        return self.model_dump(by_alias=True)
