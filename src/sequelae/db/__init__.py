"""Database connection and introspection utilities.

This package provides the shared connection pool manager and schema
introspection for PostgreSQL.
"""

from sequelae.db.introspection import SchemaIntrospector, suggest_tables
from sequelae.db.pool import PoolManager, PoolStats, build_ssl_context, create_pool

__all__ = [
    "PoolManager",
    "PoolStats",
    "SchemaIntrospector",
    "build_ssl_context",
    "create_pool",
    "suggest_tables",
]
