"""Unit tests for SQLExecutor.

This module tests the transactional execution envelope, statement timeouts,
script detection, error translation, file execution and result serialization.
"""

import datetime
import decimal
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from sequelae.db.pool import PoolManager
from sequelae.models.errors import (
    DatabaseConnectionError,
    QueryError,
    SQLFileNotFoundError,
    ValidationError,
)
from sequelae.models.query import QueryRequest
from sequelae.services.sql_executor import SQLExecutor, count_statements, parse_command_tag


@pytest.fixture
def mock_statement() -> MagicMock:
    """Create a mock prepared statement returning two rows."""
    statement = MagicMock()
    statement.fetch = AsyncMock(return_value=[{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}])
    statement.get_statusmsg = MagicMock(return_value="SELECT 2")
    return statement


@pytest.fixture
def mock_transaction() -> MagicMock:
    transaction = MagicMock()
    transaction.start = AsyncMock()
    transaction.commit = AsyncMock()
    transaction.rollback = AsyncMock()
    return transaction


@pytest.fixture
def mock_connection(mock_statement: MagicMock, mock_transaction: MagicMock) -> MagicMock:
    """Create a mock asyncpg connection."""
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="SET")
    conn.prepare = AsyncMock(return_value=mock_statement)
    conn.transaction = MagicMock(return_value=mock_transaction)
    return conn


@pytest.fixture
def pool_manager(mock_connection: MagicMock) -> MagicMock:
    """Create a pool manager whose leases hand out the mock connection."""
    manager = MagicMock(spec=PoolManager)

    @asynccontextmanager
    async def lease(*args, **kwargs):
        yield mock_connection

    manager.lease = MagicMock(side_effect=lease)
    return manager


@pytest.fixture
def executor(pool_manager: MagicMock) -> SQLExecutor:
    return SQLExecutor(pool_manager)


def syntax_error(position: str | None = "8") -> asyncpg.PostgresError:
    error = asyncpg.exceptions.PostgresSyntaxError('syntax error at or near "FORM"')
    error.position = position
    return error


class TestExecuteQuery:
    """Test suite for the execution envelope."""

    @pytest.mark.asyncio
    async def test_select_in_transaction(
        self,
        executor: SQLExecutor,
        mock_connection: MagicMock,
        mock_transaction: MagicMock,
    ) -> None:
        result = await executor.execute_query("SELECT id, name FROM users")

        mock_connection.prepare.assert_awaited_once_with("SELECT id, name FROM users")
        mock_transaction.start.assert_awaited_once()
        mock_transaction.commit.assert_awaited_once()
        mock_transaction.rollback.assert_not_awaited()
        assert result.command == "SELECT"
        assert result.row_count == 2
        assert result.rows == [{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}]
        assert result.duration >= 0

    @pytest.mark.asyncio
    async def test_without_transaction(
        self, executor: SQLExecutor, mock_connection: MagicMock
    ) -> None:
        await executor.execute_query("SELECT 1", transactional=False)

        mock_connection.transaction.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sql", ["BEGIN", "  commit", "ROLLBACK", "START TRANSACTION"])
    async def test_transaction_control_not_wrapped(
        self,
        executor: SQLExecutor,
        mock_connection: MagicMock,
        mock_statement: MagicMock,
        sql: str,
    ) -> None:
        mock_statement.fetch.return_value = []
        mock_statement.get_statusmsg.return_value = sql.strip().upper()

        result = await executor.execute_query(sql)

        mock_connection.transaction.assert_not_called()
        assert result.row_count == 0

    @pytest.mark.asyncio
    async def test_statement_timeout_applied(
        self, executor: SQLExecutor, mock_connection: MagicMock
    ) -> None:
        await executor.execute_query("SELECT pg_sleep(1)", timeout_ms=5000)

        mock_connection.execute.assert_awaited_once_with("SET statement_timeout = 5000")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout_ms", [None, 0])
    async def test_no_timeout_leaves_session_alone(
        self, executor: SQLExecutor, mock_connection: MagicMock, timeout_ms: int | None
    ) -> None:
        await executor.execute_query("SELECT 1", timeout_ms=timeout_ms)

        mock_connection.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_statement_timeout_failure(
        self, executor: SQLExecutor, mock_connection: MagicMock
    ) -> None:
        mock_connection.execute.side_effect = asyncpg.exceptions.InsufficientPrivilegeError(
            "permission denied to set parameter"
        )

        with pytest.raises(QueryError, match="Failed to set statement timeout"):
            await executor.execute_query("SELECT 1", timeout_ms=100)

        mock_connection.prepare.assert_not_awaited()
        mock_connection.transaction.assert_not_called()

    @pytest.mark.parametrize(
        "error",
        [
            asyncpg.InterfaceError("connection is closed"),
            ConnectionResetError("connection reset by peer"),
        ],
    )
    @pytest.mark.asyncio
    async def test_statement_timeout_connection_lost(
        self, executor: SQLExecutor, mock_connection: MagicMock, error: Exception
    ) -> None:
        mock_connection.execute.side_effect = error

        with pytest.raises(DatabaseConnectionError, match="Database connection lost") as exc_info:
            await executor.execute_query("SELECT 1", timeout_ms=100)

        assert exc_info.value.__cause__ is error
        mock_connection.prepare.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_multi_statement_script(
        self, executor: SQLExecutor, mock_connection: MagicMock
    ) -> None:
        mock_connection.execute.return_value = "INSERT 0 1"
        sql = "CREATE TABLE t (id int); INSERT INTO t VALUES (1);"

        result = await executor.execute_query(sql)

        mock_connection.execute.assert_awaited_once_with(sql)
        mock_connection.prepare.assert_not_awaited()
        assert result.command == "INSERT"
        assert result.row_count == 1
        assert result.rows == []

    @pytest.mark.asyncio
    async def test_affected_rows_from_command_tag(
        self, executor: SQLExecutor, mock_statement: MagicMock
    ) -> None:
        mock_statement.fetch.return_value = []
        mock_statement.get_statusmsg.return_value = "UPDATE 7"

        result = await executor.execute_query("UPDATE users SET active = true")

        assert result.command == "UPDATE"
        assert result.row_count == 7

    @pytest.mark.asyncio
    async def test_execute_accepts_request(self, executor: SQLExecutor) -> None:
        result = await executor.execute(QueryRequest(sql="SELECT 1", transactional=False))

        assert result.command == "SELECT"


class TestErrorHandling:
    """Test suite for failure paths."""

    @pytest.mark.asyncio
    async def test_sql_error_rolls_back(
        self,
        executor: SQLExecutor,
        mock_statement: MagicMock,
        mock_transaction: MagicMock,
    ) -> None:
        error = syntax_error()
        mock_statement.fetch.side_effect = error

        with pytest.raises(QueryError) as exc_info:
            await executor.execute_query("SELECT * FORM users")

        mock_transaction.rollback.assert_awaited_once()
        mock_transaction.commit.assert_not_awaited()
        assert exc_info.value.message == 'syntax error at or near "FORM"'
        assert exc_info.value.position == 8
        assert exc_info.value.sqlstate == "42601"
        assert exc_info.value.details == {"position": 8, "sqlstate": "42601"}
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_prepare_error_without_position(
        self, executor: SQLExecutor, mock_connection: MagicMock
    ) -> None:
        mock_connection.prepare.side_effect = asyncpg.exceptions.UndefinedTableError(
            'relation "nope" does not exist'
        )

        with pytest.raises(QueryError) as exc_info:
            await executor.execute_query("SELECT * FROM nope")

        assert exc_info.value.position is None
        assert exc_info.value.sqlstate == "42P01"

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_original_error(
        self,
        executor: SQLExecutor,
        mock_statement: MagicMock,
        mock_transaction: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_statement.fetch.side_effect = syntax_error()
        mock_transaction.rollback.side_effect = asyncpg.InterfaceError("connection is closed")

        with caplog.at_level(logging.ERROR, logger="sequelae.services.sql_executor"):
            with pytest.raises(QueryError, match="syntax error"):
                await executor.execute_query("SELECT * FORM users")

        assert "Rollback failed" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_lost(
        self, executor: SQLExecutor, mock_statement: MagicMock
    ) -> None:
        mock_statement.fetch.side_effect = asyncpg.exceptions.ConnectionDoesNotExistError(
            "connection was closed in the middle of operation"
        )

        with pytest.raises(DatabaseConnectionError, match="connection lost"):
            await executor.execute_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_interface_error_is_connection_error(
        self, executor: SQLExecutor, mock_connection: MagicMock
    ) -> None:
        mock_connection.prepare.side_effect = asyncpg.InterfaceError("connection is closed")

        with pytest.raises(DatabaseConnectionError):
            await executor.execute_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_checkout_failure_propagates(
        self, pool_manager: MagicMock, executor: SQLExecutor
    ) -> None:
        pool_manager.lease.side_effect = DatabaseConnectionError("Failed to connect")

        with pytest.raises(DatabaseConnectionError, match="Failed to connect"):
            await executor.execute_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_unexpected_error_rolls_back_and_propagates(
        self,
        executor: SQLExecutor,
        mock_statement: MagicMock,
        mock_transaction: MagicMock,
    ) -> None:
        mock_statement.fetch.side_effect = RuntimeError("unexpected")

        with pytest.raises(RuntimeError, match="unexpected"):
            await executor.execute_query("SELECT 1")

        mock_transaction.rollback.assert_awaited_once()


class TestExecuteFile:
    """Test suite for file execution."""

    @pytest.mark.asyncio
    async def test_execute_relative_file(
        self,
        executor: SQLExecutor,
        mock_connection: MagicMock,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        (tmp_path / "query.sql").write_text("SELECT 1 AS one", encoding="utf-8")
        monkeypatch.chdir(tmp_path)

        await executor.execute_file("query.sql")

        mock_connection.prepare.assert_awaited_once_with("SELECT 1 AS one")

    @pytest.mark.asyncio
    async def test_missing_file(
        self,
        executor: SQLExecutor,
        mock_connection: MagicMock,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.chdir(tmp_path)

        with pytest.raises(SQLFileNotFoundError) as exc_info:
            await executor.execute_file("missing.sql")

        assert exc_info.value.message.startswith("File not found: ")
        assert exc_info.value.message.endswith("missing.sql")
        mock_connection.prepare.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_utf8_file(
        self,
        executor: SQLExecutor,
        mock_connection: MagicMock,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        (tmp_path / "latin1.sql").write_bytes(b"SELECT 'caf\xe9'")
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ValidationError, match="not valid UTF-8") as exc_info:
            await executor.execute_file("latin1.sql")

        assert not isinstance(exc_info.value, SQLFileNotFoundError)
        assert exc_info.value.details["path"].endswith("latin1.sql")
        assert exc_info.value.details["offset"] == 11
        mock_connection.prepare.assert_not_awaited()


class TestStatementCounting:
    """Tests for statement separation outside quotes and comments."""

    @pytest.mark.parametrize(
        ("sql", "expected"),
        [
            ("SELECT 1", 1),
            ("SELECT 1;", 1),
            ("SELECT 1; SELECT 2", 2),
            ("SELECT ';'", 1),
            ('SELECT 1 AS "a;b"', 1),
            ("SELECT 'it''s; fine'", 1),
            ("SELECT E'it\\'s; fine'", 1),
            ("-- first; second\nSELECT 1", 1),
            ("/* ; */ SELECT 1", 1),
            ("SELECT 1; -- trailing comment", 1),
            ("CREATE FUNCTION f() RETURNS int AS $$ SELECT 1; $$ LANGUAGE sql; SELECT f()", 2),
            ("DO $body$ BEGIN PERFORM 1; END $body$", 1),
            ("", 0),
            ("  ;  ; ", 0),
            ("-- nothing here", 0),
        ],
    )
    def test_count_statements(self, sql: str, expected: int) -> None:
        assert count_statements(sql) == expected

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("SELECT 3", ("SELECT", 3)),
            ("INSERT 0 5", ("INSERT", 5)),
            ("CREATE TABLE", ("CREATE", 0)),
            ("", (None, 0)),
            (None, (None, 0)),
        ],
    )
    def test_parse_command_tag(self, status: str | None, expected: tuple) -> None:
        assert parse_command_tag(status) == expected


class TestSerialization:
    """Tests for PostgreSQL type serialization."""

    def test_serialize_special_types(self, executor: SQLExecutor) -> None:
        row = {
            "created": datetime.datetime(2024, 1, 1, 12, 0),
            "day": datetime.date(2024, 1, 1),
            "elapsed": datetime.timedelta(seconds=90),
            "price": decimal.Decimal("99.99"),
            "id": uuid.UUID("12345678-1234-5678-1234-567812345678"),
            "blob": b"\x00\xff",
            "tags": ["a", decimal.Decimal("1.5")],
            "meta": {"when": datetime.date(2024, 2, 2)},
            "plain": "text",
        }

        [serialized] = executor._serialize_results([row])

        assert serialized == {
            "created": "2024-01-01T12:00:00",
            "day": "2024-01-01",
            "elapsed": "0:01:30",
            "price": 99.99,
            "id": "12345678-1234-5678-1234-567812345678",
            "blob": "00ff",
            "tags": ["a", 1.5],
            "meta": {"when": "2024-02-02"},
            "plain": "text",
        }

    @pytest.mark.asyncio
    async def test_rows_are_serialized(
        self, executor: SQLExecutor, mock_statement: MagicMock
    ) -> None:
        mock_statement.fetch.return_value = [{"price": decimal.Decimal("1.25")}]
        mock_statement.get_statusmsg.return_value = "SELECT 1"

        result = await executor.execute_query("SELECT price FROM items")

        assert result.rows == [{"price": 1.25}]
