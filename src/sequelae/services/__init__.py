"""Service layer for sequelae.

This module provides the query executor and the pg_dump backup orchestrator.
"""

from sequelae.services.backup import (
    BackupOrchestrator,
    build_pg_dump_args,
    quote_identifier,
    validate_backup_options,
)
from sequelae.services.sql_executor import SQLExecutor

__all__ = [
    "BackupOrchestrator",
    "SQLExecutor",
    "build_pg_dump_args",
    "quote_identifier",
    "validate_backup_options",
]
