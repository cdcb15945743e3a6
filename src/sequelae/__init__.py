"""Sequelae - PostgreSQL tools for MCP clients.

A Model Context Protocol server that executes SQL in transactional
envelopes, introspects table schemas with "did you mean" suggestions,
and produces pg_dump backups.
"""

__version__ = "0.1.0"

from sequelae.config.settings import Settings, get_settings
from sequelae.models.backup import BackupFormat, BackupOptions, BackupResult
from sequelae.models.errors import (
    DatabaseConnectionError,
    ErrorCode,
    QueryError,
    SequelaeError,
    ValidationError,
)
from sequelae.models.query import QueryRequest, QueryResult
from sequelae.models.schema import SchemaResult, TableInfo

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    # Models
    "QueryRequest",
    "QueryResult",
    "SchemaResult",
    "TableInfo",
    "BackupFormat",
    "BackupOptions",
    "BackupResult",
    # Errors
    "SequelaeError",
    "ValidationError",
    "QueryError",
    "DatabaseConnectionError",
    "ErrorCode",
]
