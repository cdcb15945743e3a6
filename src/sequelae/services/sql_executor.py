"""SQL executor for PostgreSQL queries.

This module runs caller-supplied SQL on a leased pooled connection with an
optional per-request statement timeout and an automatic transaction envelope,
and normalizes the outcome into a ``QueryResult``.
"""

import datetime
import decimal
import logging
import re
import time
import uuid
from pathlib import Path
from typing import Any

import asyncpg
from asyncpg import Connection
from asyncpg.transaction import Transaction

from sequelae.db.pool import PoolManager
from sequelae.models.errors import (
    DatabaseConnectionError,
    QueryError,
    SQLFileNotFoundError,
    ValidationError,
)
from sequelae.models.query import QueryRequest, QueryResult

logger = logging.getLogger(__name__)

_DOLLAR_QUOTE_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


def count_statements(sql: str) -> int:
    """Count the statements in an SQL script.

    Semicolons inside string literals, quoted identifiers, comments and
    dollar-quoted bodies do not separate statements. Segments holding only
    whitespace or comments are not counted.

    Args:
        sql: SQL text.

    Returns:
        int: Number of non-empty statements.

    Example:
        >>> count_statements("SELECT ';'; -- done;")
        1
    """
    count = 0
    has_content = False
    i, n = 0, len(sql)

    while i < n:
        ch = sql[i]

        if sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
            continue

        if sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue

        if ch in ("'", '"'):
            # E'...' strings allow backslash escapes
            backslash_escapes = ch == "'" and i > 0 and sql[i - 1] in "eE"
            i += 1
            while i < n:
                if backslash_escapes and sql[i] == "\\":
                    i += 2
                    continue
                if sql[i] == ch:
                    if sql.startswith(ch * 2, i):
                        i += 2
                        continue
                    break
                i += 1
            has_content = True
            i += 1
            continue

        if ch == "$":
            match = _DOLLAR_QUOTE_TAG.match(sql, i)
            if match:
                tag = match.group(0)
                end = sql.find(tag, match.end())
                has_content = True
                i = n if end == -1 else end + len(tag)
                continue

        if ch == ";":
            if has_content:
                count += 1
            has_content = False
        elif not ch.isspace():
            has_content = True
        i += 1

    if has_content:
        count += 1
    return count


def parse_command_tag(status: str | None) -> tuple[str | None, int]:
    """Split a command tag such as ``INSERT 0 5`` into its verb and row count.

    Args:
        status: Command tag reported by the server.

    Returns:
        tuple: (verb, affected rows); the count is 0 when the tag has none.
    """
    if not status:
        return None, 0
    parts = status.split()
    row_count = int(parts[-1]) if parts[-1].isdigit() else 0
    return parts[0], row_count


class SQLExecutor:
    """SQL executor using the shared connection pool.

    Each call leases its own connection, so concurrent calls only contend
    for pool capacity.

    Example:
        >>> executor = SQLExecutor(pool_manager)
        >>> result = await executor.execute_query("SELECT 1 AS one")
        >>> result.rows
        [{'one': 1}]
    """

    def __init__(self, pool_manager: PoolManager) -> None:
        """Initialize SQL executor.

        Args:
            pool_manager: Pool manager handing out connection leases.
        """
        self.pool_manager = pool_manager

    async def execute_query(
        self,
        sql: str,
        transactional: bool = True,
        timeout_ms: int | None = None,
    ) -> QueryResult:
        """Execute SQL text.

        Args:
            sql: One statement or a semicolon-separated script.
            transactional: Wrap the SQL in a transaction unless it is itself a
                transaction-control statement.
            timeout_ms: Session statement timeout in milliseconds; 0 or None
                keeps the pool default.

        Returns:
            QueryResult: Command verb, row count, rows and duration.

        Raises:
            QueryError: If PostgreSQL rejects or fails the SQL.
            DatabaseConnectionError: If no connection could be obtained or it
                was lost mid-request.
        """
        request = QueryRequest(sql=sql, transactional=transactional, timeout_ms=timeout_ms)
        return await self.execute(request)

    async def execute_file(
        self,
        path: str,
        transactional: bool = True,
        timeout_ms: int | None = None,
    ) -> QueryResult:
        """Execute the SQL stored in a file.

        Relative paths are resolved against the current working directory.

        Raises:
            SQLFileNotFoundError: If the file does not exist.
            ValidationError: If the file is not valid UTF-8.
            QueryError: If PostgreSQL rejects or fails the SQL.
            DatabaseConnectionError: On connection failure.
        """
        resolved = Path.cwd() / path
        if not resolved.is_file():
            raise SQLFileNotFoundError(str(resolved))

        try:
            sql = resolved.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(
                f"SQL file is not valid UTF-8: {resolved}",
                details={"path": str(resolved), "offset": e.start},
            ) from e
        logger.debug("Executing SQL file", extra={"path": str(resolved), "bytes": len(sql)})
        return await self.execute_query(sql, transactional=transactional, timeout_ms=timeout_ms)

    async def execute(self, request: QueryRequest) -> QueryResult:
        """Execute a query request.

        This method:
        1. Leases a connection from the pool
        2. Applies the per-request statement timeout, if any
        3. Starts a transaction unless told otherwise
        4. Executes the SQL and commits
        5. Rolls back on failure, keeping the original error
        6. Serializes special PostgreSQL types in returned rows

        Args:
            request: SQL text with transaction and timeout options.

        Returns:
            QueryResult: Normalized result.

        Raises:
            QueryError: If PostgreSQL rejects or fails the SQL.
            DatabaseConnectionError: On connection failure.
        """
        start = time.perf_counter()

        async with self.pool_manager.lease() as conn:
            if request.timeout_ms:
                await self._set_statement_timeout(conn, request.timeout_ms)

            transaction = conn.transaction() if request.wraps_transaction else None
            try:
                if transaction is not None:
                    await transaction.start()
                records, status = await self._run(conn, request.sql)
                if transaction is not None:
                    await transaction.commit()
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                await self._rollback(transaction)
                logger.info(
                    "Query failed",
                    extra={"error_type": type(e).__name__, "sqlstate": getattr(e, "sqlstate", None)},
                )
                raise self._translate_error(e) from e
            except Exception:
                await self._rollback(transaction)
                raise

        command, tag_count = parse_command_tag(status)
        rows = self._serialize_results([dict(record) for record in records])
        result = QueryResult(
            command=command,
            row_count=len(rows) if rows else tag_count,
            rows=rows,
            duration=int((time.perf_counter() - start) * 1000),
        )
        logger.debug(
            "Query executed",
            extra={
                "command": result.command,
                "row_count": result.row_count,
                "duration_ms": result.duration,
            },
        )
        return result

    async def _run(self, conn: Connection, sql: str) -> tuple[list[asyncpg.Record], str]:
        """Run SQL and return (records, command tag).

        A single statement goes through a prepared statement so rows come
        back; scripts go through the simple query protocol, which reports
        only the last command tag.
        """
        if count_statements(sql) == 1:
            statement = await conn.prepare(sql)
            records = await statement.fetch()
            return records, statement.get_statusmsg()

        status = await conn.execute(sql)
        return [], status

    async def _set_statement_timeout(self, conn: Connection, timeout_ms: int) -> None:
        """Set the session statement timeout.

        Raises:
            QueryError: If the server rejects the setting.
            DatabaseConnectionError: If the connection is lost.
        """
        try:
            await conn.execute(f"SET statement_timeout = {int(timeout_ms)}")
        except (asyncpg.exceptions.PostgresConnectionError, asyncpg.InterfaceError, OSError) as e:
            raise self._translate_error(e) from e
        except asyncpg.PostgresError as e:
            raise QueryError(
                message=f"Failed to set statement timeout: {e!s}",
                sqlstate=getattr(e, "sqlstate", None),
                details={"timeout_ms": timeout_ms},
            ) from e

    async def _rollback(self, transaction: Transaction | None) -> None:
        if transaction is None:
            return
        try:
            await transaction.rollback()
        except Exception as e:
            logger.error(
                "Rollback failed",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
            )

    def _translate_error(self, error: Exception) -> QueryError | DatabaseConnectionError:
        """Map a driver exception onto the application hierarchy."""
        if isinstance(
            error,
            (asyncpg.exceptions.PostgresConnectionError, asyncpg.InterfaceError, OSError),
        ):
            return DatabaseConnectionError(
                message=f"Database connection lost: {error!s}",
                details={"error_type": type(error).__name__},
            )

        position = getattr(error, "position", None)
        return QueryError(
            message=str(error),
            position=int(position) if position else None,
            sqlstate=getattr(error, "sqlstate", None),
        )

    def _serialize_results(self, results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Serialize PostgreSQL-specific types to JSON-compatible types.

        This method handles serialization of types that are not natively
        JSON-serializable, including:
        - datetime types: converted to ISO format strings
        - decimal.Decimal: converted to float
        - uuid.UUID: converted to string
        - bytes: converted to hexadecimal string
        - Nested lists/dicts: recursively serialized

        Args:
            results: List of row dictionaries with potentially unserializable values.

        Returns:
            list: Results with all values serialized to JSON-compatible types.
        """

        def serialize_value(value: Any) -> Any:
            if value is None:
                return None

            if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
                return value.isoformat()

            if isinstance(value, datetime.timedelta):
                return str(value)

            if isinstance(value, decimal.Decimal):
                return float(value)

            if isinstance(value, uuid.UUID):
                return str(value)

            if isinstance(value, (bytes, bytearray, memoryview)):
                return bytes(value).hex()

            # asyncpg returns composite values as Records
            if isinstance(value, asyncpg.Record):
                return {k: serialize_value(v) for k, v in value.items()}

            if isinstance(value, (list, tuple)):
                return [serialize_value(v) for v in value]

            if isinstance(value, dict):
                return {k: serialize_value(v) for k, v in value.items()}

            return value

        return [{key: serialize_value(value) for key, value in row.items()} for row in results]
