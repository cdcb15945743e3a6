"""PostgreSQL schema introspection.

This module reads table, column and key-constraint metadata from
``information_schema``, either for every base table in scope or for a list of
requested tables. Requested tables that do not exist are reported with up to
three "did you mean" suggestions drawn from the existing table names.
"""

import json
import logging
from collections.abc import Iterable

from asyncpg.connection import Connection

from sequelae.db.pool import PoolManager
from sequelae.models.schema import (
    ColumnInfo,
    ConstraintInfo,
    MissingTableInfo,
    SchemaResult,
    TableInfo,
)

logger = logging.getLogger(__name__)

_SCHEMA_QUERY = """
    WITH table_info AS (
        SELECT
            t.table_schema,
            t.table_name,
            json_agg(
                json_build_object(
                    'column_name', c.column_name,
                    'data_type', c.data_type,
                    'is_nullable', c.is_nullable,
                    'column_default', c.column_default,
                    'character_maximum_length', c.character_maximum_length
                ) ORDER BY c.ordinal_position
            )::text AS columns
        FROM information_schema.tables t
        JOIN information_schema.columns c
          ON t.table_schema = c.table_schema
         AND t.table_name = c.table_name
        WHERE t.table_type = 'BASE TABLE'
          AND {table_schema_predicate}
          {table_filter}
        GROUP BY t.table_schema, t.table_name
    ),
    constraint_info AS (
        SELECT
            tc.table_schema,
            tc.table_name,
            json_agg(
                json_build_object(
                    'constraint_name', tc.constraint_name,
                    'constraint_type', tc.constraint_type,
                    'column_name', kcu.column_name
                )
            )::text AS constraints
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
         AND tc.table_name = kcu.table_name
        WHERE {constraint_schema_predicate}
          {constraint_filter}
        GROUP BY tc.table_schema, tc.table_name
    )
    SELECT
        ti.table_schema,
        ti.table_name,
        ti.columns,
        COALESCE(ci.constraints, '[]') AS constraints
    FROM table_info ti
    LEFT JOIN constraint_info ci
      ON ti.table_schema = ci.table_schema
     AND ti.table_name = ci.table_name
    ORDER BY ti.table_schema, ti.table_name
"""

_EXISTING_TABLES_QUERY = """
    SELECT DISTINCT t.table_name
    FROM information_schema.tables t
    WHERE t.table_type = 'BASE TABLE'
      AND {table_schema_predicate}
    ORDER BY t.table_name
"""


def schema_predicate(alias: str, all_schemas: bool = False) -> str:
    """SQL predicate restricting ``<alias>.table_schema`` to the schemas in scope.

    Args:
        alias: Table alias the predicate applies to.
        all_schemas: Every non-system schema instead of only ``public``.
    """
    if all_schemas:
        return f"{alias}.table_schema NOT IN ('pg_catalog', 'information_schema')"
    return f"{alias}.table_schema = 'public'"


def suggest_tables(requested: str, candidates: Iterable[str], limit: int = 3) -> list[str]:
    """Rank existing table names as alternatives for a missing one.

    Candidates are ranked, case-insensitively, by tier: names starting with
    the first three characters of ``requested``, then names starting with its
    first two characters, then names containing its first three characters.
    Within a tier shorter names come first, then alphabetical order.

    Args:
        requested: The table name that was not found.
        candidates: Existing table names.
        limit: Maximum number of suggestions.

    Returns:
        Up to ``limit`` table names, best match first.

    Example:
        >>> suggest_tables("usres", ["orders", "user_roles", "users"])
        ['users', 'user_roles']
    """
    needle = requested.lower()
    if not needle:
        return []

    prefix3, prefix2 = needle[:3], needle[:2]
    ranked: list[tuple[int, int, str]] = []
    for name in set(candidates):
        lowered = name.lower()
        if lowered.startswith(prefix3):
            tier = 0
        elif lowered.startswith(prefix2):
            tier = 1
        elif prefix3 in lowered:
            tier = 2
        else:
            continue
        ranked.append((tier, len(name), name))

    ranked.sort()
    return [name for _, _, name in ranked[:limit]]


class SchemaIntrospector:
    """Schema introspection service backed by the shared connection pool.

    Attributes:
        pool_manager: Pool manager handing out connection leases.
    """

    def __init__(self, pool_manager: PoolManager) -> None:
        self.pool_manager = pool_manager

    async def get_schema(
        self,
        tables: list[str] | None = None,
        all_schemas: bool = False,
    ) -> SchemaResult:
        """Describe base tables in scope.

        Args:
            tables: Table names to describe; None or empty means every table.
            all_schemas: Look in every non-system schema instead of ``public``.

        Returns:
            SchemaResult: Found tables ordered by schema then name, and
                ``missing_tables`` for requested names with no match.

        Example:
            >>> introspector = SchemaIntrospector(pool_manager)
            >>> result = await introspector.get_schema(["users", "userz"])
            >>> result.missing_tables[0].suggestions
            ['users', 'user_roles']
        """
        requested = list(dict.fromkeys(tables or []))

        async with self.pool_manager.lease() as conn:
            found = await self._get_tables(conn, requested, all_schemas)

            missing_names = []
            if requested:
                found_names = {table.table_name for table in found}
                missing_names = [name for name in requested if name not in found_names]

            missing: list[MissingTableInfo] = []
            if missing_names:
                existing = await self._get_existing_table_names(conn, all_schemas)
                missing = [
                    MissingTableInfo(table_name=name, suggestions=suggest_tables(name, existing))
                    for name in missing_names
                ]

        logger.debug(
            "Schema introspection complete",
            extra={"tables_found": len(found), "tables_missing": len(missing)},
        )
        return SchemaResult(tables=found, missing_tables=missing or None)

    async def _get_tables(
        self, conn: Connection, requested: list[str], all_schemas: bool
    ) -> list[TableInfo]:
        """Fetch tables with their columns and key constraints.

        Args:
            conn: Database connection.
            requested: Table names to restrict to; empty means all tables.
            all_schemas: Schema scope.

        Returns:
            list[TableInfo]: Tables ordered by schema then name.
        """
        query = _SCHEMA_QUERY.format(
            table_schema_predicate=schema_predicate("t", all_schemas),
            constraint_schema_predicate=schema_predicate("tc", all_schemas),
            table_filter="AND t.table_name = ANY($1::text[])" if requested else "",
            constraint_filter="AND tc.table_name = ANY($1::text[])" if requested else "",
        )
        args = [requested] if requested else []
        rows = await conn.fetch(query, *args)

        return [
            TableInfo(
                schema_name=row["table_schema"],
                table_name=row["table_name"],
                columns=[ColumnInfo(**col) for col in json.loads(row["columns"])],
                constraints=[ConstraintInfo(**c) for c in json.loads(row["constraints"])],
            )
            for row in rows
        ]

    async def _get_existing_table_names(self, conn: Connection, all_schemas: bool) -> list[str]:
        query = _EXISTING_TABLES_QUERY.format(
            table_schema_predicate=schema_predicate("t", all_schemas)
        )
        rows = await conn.fetch(query)
        return [row["table_name"] for row in rows]
