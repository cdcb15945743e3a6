"""Unit tests for schema introspection.

This module tests table description assembly from information_schema rows,
schema scoping, missing-table detection and "did you mean" suggestions.
"""

import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from sequelae.db.introspection import SchemaIntrospector, schema_predicate, suggest_tables
from sequelae.db.pool import PoolManager

USERS_ROW = {
    "table_schema": "public",
    "table_name": "users",
    "columns": json.dumps(
        [
            {
                "column_name": "id",
                "data_type": "integer",
                "is_nullable": "NO",
                "column_default": "nextval('users_id_seq'::regclass)",
                "character_maximum_length": None,
            },
            {
                "column_name": "email",
                "data_type": "character varying",
                "is_nullable": "YES",
                "column_default": None,
                "character_maximum_length": 255,
            },
        ]
    ),
    "constraints": json.dumps(
        [{"constraint_name": "users_pkey", "constraint_type": "PRIMARY KEY", "column_name": "id"}]
    ),
}

AUDIT_ROW = {
    "table_schema": "audit",
    "table_name": "events",
    "columns": json.dumps(
        [
            {
                "column_name": "payload",
                "data_type": "jsonb",
                "is_nullable": "YES",
                "column_default": None,
                "character_maximum_length": None,
            }
        ]
    ),
    "constraints": "[]",
}


@pytest.fixture
def mock_connection() -> MagicMock:
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    return conn


@pytest.fixture
def introspector(mock_connection: MagicMock) -> SchemaIntrospector:
    manager = MagicMock(spec=PoolManager)

    @asynccontextmanager
    async def lease(*args, **kwargs):
        yield mock_connection

    manager.lease = MagicMock(side_effect=lease)
    return SchemaIntrospector(manager)


class TestSuggestTables:
    """Tests for the suggestion ranking."""

    CANDIDATES = ["users", "user_roles", "orders", "order_items", "products"]

    def test_transposed_letters(self) -> None:
        assert suggest_tables("usres", self.CANDIDATES) == ["users", "user_roles"]

    def test_wrong_last_letter(self) -> None:
        assert suggest_tables("userz", self.CANDIDATES) == ["users", "user_roles"]

    def test_case_insensitive(self) -> None:
        assert suggest_tables("USERZ", self.CANDIDATES) == ["users", "user_roles"]

    def test_substring_match(self) -> None:
        assert suggest_tables("rol", self.CANDIDATES) == ["user_roles"]

    def test_tiers_then_length_then_name(self) -> None:
        candidates = ["records_ord", "or_x", "order_items", "orders", "ordinal"]

        assert suggest_tables("ord", candidates) == ["orders", "ordinal", "order_items"]

    def test_prefix_tier_beats_substring_tier(self) -> None:
        assert suggest_tables("ord", ["records_ord", "or_x"]) == ["or_x", "records_ord"]

    def test_limit(self) -> None:
        candidates = ["usr_a", "usr_b", "usr_c", "usr_d"]

        assert suggest_tables("usr", candidates) == ["usr_a", "usr_b", "usr_c"]
        assert suggest_tables("usr", candidates, limit=1) == ["usr_a"]

    def test_no_match(self) -> None:
        assert suggest_tables("nonexistent_table", self.CANDIDATES) == []

    def test_empty_request(self) -> None:
        assert suggest_tables("", self.CANDIDATES) == []

    def test_duplicate_candidates(self) -> None:
        assert suggest_tables("users", ["users", "users"]) == ["users"]


class TestSchemaPredicate:
    def test_public_only(self) -> None:
        assert schema_predicate("t") == "t.table_schema = 'public'"

    def test_all_schemas(self) -> None:
        assert (
            schema_predicate("tc", all_schemas=True)
            == "tc.table_schema NOT IN ('pg_catalog', 'information_schema')"
        )


class TestGetSchema:
    """Tests for SchemaIntrospector.get_schema."""

    @pytest.mark.asyncio
    async def test_all_tables(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.return_value = [USERS_ROW]

        result = await introspector.get_schema()

        query = mock_connection.fetch.await_args.args[0]
        assert mock_connection.fetch.await_args.args[1:] == ()
        assert "t.table_schema = 'public'" in query
        assert "ANY($1" not in query
        assert result.missing_tables is None

        [table] = result.tables
        assert table.full_name == "public.users"
        assert [c.column_name for c in table.columns] == ["id", "email"]
        assert table.columns[0].nullable is False
        assert table.columns[1].character_maximum_length == 255
        assert table.constraints[0].constraint_type == "PRIMARY KEY"

    @pytest.mark.asyncio
    async def test_all_schemas(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.return_value = [AUDIT_ROW, USERS_ROW]

        result = await introspector.get_schema(all_schemas=True)

        query = mock_connection.fetch.await_args.args[0]
        assert "NOT IN ('pg_catalog', 'information_schema')" in query
        assert [t.full_name for t in result.tables] == ["audit.events", "public.users"]
        assert result.tables[0].constraints == []

    @pytest.mark.asyncio
    async def test_requested_tables_are_bound(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.return_value = [USERS_ROW]

        result = await introspector.get_schema(["users"])

        query, names = mock_connection.fetch.await_args.args
        assert "t.table_name = ANY($1::text[])" in query
        assert names == ["users"]
        assert mock_connection.fetch.await_count == 1
        assert "missingTables" not in result.to_dict()

    @pytest.mark.asyncio
    async def test_missing_table_with_suggestions(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.side_effect = [
            [USERS_ROW],
            [{"table_name": "orders"}, {"table_name": "user_roles"}, {"table_name": "users"}],
        ]

        result = await introspector.get_schema(["users", "userz"])

        assert [t.table_name for t in result.tables] == ["users"]
        [missing] = result.missing_tables
        assert missing.table_name == "userz"
        assert missing.suggestions == ["users", "user_roles"]
        assert result.to_dict()["missingTables"] == [
            {"table_name": "userz", "suggestions": ["users", "user_roles"]}
        ]

    @pytest.mark.asyncio
    async def test_nonexistent_table(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.side_effect = [[], [{"table_name": "users"}]]

        result = await introspector.get_schema(["nonexistent_table"])

        assert result.tables == []
        assert result.missing_tables[0].table_name == "nonexistent_table"
        assert result.missing_tables[0].suggestions == []

    @pytest.mark.asyncio
    async def test_duplicate_requests_collapsed(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        mock_connection.fetch.return_value = [USERS_ROW]

        await introspector.get_schema(["users", "users"])

        assert mock_connection.fetch.await_args.args[1] == ["users"]

    @pytest.mark.asyncio
    async def test_empty_list_means_all_tables(
        self, introspector: SchemaIntrospector, mock_connection: MagicMock
    ) -> None:
        await introspector.get_schema([])

        assert "ANY($1" not in mock_connection.fetch.await_args.args[0]
