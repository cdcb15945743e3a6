"""Data models module."""

from sequelae.models.backup import BackupFormat, BackupOptions, BackupResult
from sequelae.models.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    ErrorCode,
    ErrorDetail,
    PoolExhaustedError,
    QueryError,
    SequelaeError,
    SQLFileNotFoundError,
    ValidationError,
)
from sequelae.models.query import QueryRequest, QueryResult, is_transaction_control
from sequelae.models.schema import (
    ColumnInfo,
    ConstraintInfo,
    MissingTableInfo,
    SchemaResult,
    TableInfo,
)

__all__ = [
    # Schema models
    "ColumnInfo",
    "ConstraintInfo",
    "TableInfo",
    "MissingTableInfo",
    "SchemaResult",
    # Query models
    "QueryRequest",
    "QueryResult",
    "is_transaction_control",
    # Backup models
    "BackupFormat",
    "BackupOptions",
    "BackupResult",
    # Error models
    "ErrorCode",
    "ErrorDetail",
    "SequelaeError",
    "ValidationError",
    "SQLFileNotFoundError",
    "ConfigurationError",
    "QueryError",
    "DatabaseConnectionError",
    "PoolExhaustedError",
    "BackupError",
]
