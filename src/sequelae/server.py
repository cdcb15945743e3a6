"""FastMCP server exposing the sequelae tools.

The lifespan builds the components once per process (pool manager, query
executor, schema introspector, backup orchestrator) and closes the pool on
shutdown. Tools return JSON-serializable dicts and never raise: failures are
reported as ``{"success": False, "error": {...}}``.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar

from fastmcp import FastMCP
from pydantic import ValidationError as PydanticValidationError

from sequelae import __version__
from sequelae.config.settings import get_settings
from sequelae.db.introspection import SchemaIntrospector
from sequelae.db.pool import PoolManager, PoolStats
from sequelae.models.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    ErrorCode,
    SequelaeError,
)
from sequelae.observability import configure_logging, metrics
from sequelae.services.backup import BackupOrchestrator
from sequelae.services.sql_executor import SQLExecutor

logger = logging.getLogger(__name__)

TOOL_NAME = "sequelae-mcp"
NOT_CONFIGURED = "DATABASE_URL environment variable is not set"

T = TypeVar("T")

# Components built by the lifespan
_pool_manager: PoolManager | None = None
_executor: SQLExecutor | None = None
_introspector: SchemaIntrospector | None = None
_backup: BackupOrchestrator | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
    """Server lifecycle: load settings, build components, close the pool.

    Without DATABASE_URL the server still starts; every tool then answers
    with a configuration error.
    """
    global _pool_manager, _executor, _introspector, _backup

    settings = get_settings()
    configure_logging(
        level=settings.observability.log_level,
        log_format=settings.observability.log_format,
    )
    logger.info("Starting sequelae server", extra={"version": __version__})

    if settings.observability.metrics_enabled:
        metrics.start_metrics_server(settings.observability.metrics_port)
        logger.info(
            "Metrics server started", extra={"port": settings.observability.metrics_port}
        )

    if settings.pool.url:
        _pool_manager = PoolManager(settings.resilience)
        await _pool_manager.initialize(settings.pool)
        _executor = SQLExecutor(_pool_manager)
        _introspector = SchemaIntrospector(_pool_manager)
        _backup = BackupOrchestrator(settings.pool.url, settings.backup)
    else:
        logger.warning(f"{NOT_CONFIGURED}; tools will report a configuration error")

    try:
        yield
    finally:
        logger.info("Shutting down sequelae server")
        if _pool_manager is not None:
            await _pool_manager.close()
        _pool_manager = None
        _executor = None
        _introspector = None
        _backup = None


mcp = FastMCP("sequelae", lifespan=lifespan)


def _require(component: T | None) -> T:
    if component is None:
        raise ConfigurationError(NOT_CONFIGURED)
    return component


def _error_response(tool: str, error: Exception) -> dict[str, Any]:
    """Build the failure payload for a tool and record it."""
    if isinstance(error, SequelaeError):
        detail = error.to_error_detail()
    elif isinstance(error, PydanticValidationError):
        detail = SequelaeError(
            f"Invalid arguments: {error.errors()[0]['msg']}", code=ErrorCode.INVALID_REQUEST
        ).to_error_detail()
    else:
        logger.exception(f"Unexpected error in {tool}")
        detail = SequelaeError(str(error) or type(error).__name__).to_error_detail()

    if isinstance(error, DatabaseConnectionError):
        metrics.increment_checkout_failure()
    metrics.increment_tool_request(tool=tool, status=str(detail.code))
    return {"success": False, "error": detail.to_dict()}


async def sql_exec(
    query: str,
    transaction: bool = True,
    timeout: int | None = None,
) -> dict[str, Any]:
    """Execute SQL against the PostgreSQL database.

    Args:
        query: SQL statement or semicolon-separated script.
        transaction: Wrap the SQL in a transaction (rolled back on error).
        timeout: Statement timeout in milliseconds for this request.

    Returns:
        Command verb, row count, rows and duration in milliseconds.
    """
    start = time.perf_counter()
    try:
        result = await _require(_executor).execute_query(
            query, transactional=transaction, timeout_ms=timeout
        )
    except Exception as e:
        return _error_response("sql_exec", e)
    finally:
        metrics.observe_query_duration(time.perf_counter() - start)

    metrics.increment_tool_request(tool="sql_exec", status="success")
    return {"success": True, **result.to_dict()}


async def sql_file(
    filepath: str,
    transaction: bool = True,
    timeout: int | None = None,
) -> dict[str, Any]:
    """Execute the SQL stored in a file.

    Args:
        filepath: Path to the SQL file, relative to the server's working directory.
        transaction: Wrap the SQL in a transaction (rolled back on error).
        timeout: Statement timeout in milliseconds for this request.

    Returns:
        Command verb, row count, rows and duration in milliseconds.
    """
    start = time.perf_counter()
    try:
        result = await _require(_executor).execute_file(
            filepath, transactional=transaction, timeout_ms=timeout
        )
    except Exception as e:
        return _error_response("sql_file", e)
    finally:
        metrics.observe_query_duration(time.perf_counter() - start)

    metrics.increment_tool_request(tool="sql_file", status="success")
    return {"success": True, **result.to_dict()}


async def sql_schema(
    tables: list[str] | None = None,
    all_schemas: bool = False,
) -> dict[str, Any]:
    """Describe tables: columns, types, nullability, defaults and key constraints.

    Args:
        tables: Tables to describe; omit for every table. Unknown names are
            reported under missingTables with suggestions.
        all_schemas: Look in every non-system schema instead of only public.
    """
    try:
        result = await _require(_introspector).get_schema(tables, all_schemas=all_schemas)
    except Exception as e:
        return _error_response("sql_schema", e)

    metrics.increment_tool_request(tool="sql_schema", status="success")
    return {"success": True, **result.to_dict()}


async def sql_backup(
    format: str | None = None,
    tables: list[str] | None = None,
    schemas: list[str] | None = None,
    data_only: bool = False,
    schema_only: bool = False,
    compress: bool = False,
    output_path: str | None = None,
) -> dict[str, Any]:
    """Back up the database with pg_dump.

    Args:
        format: plain (default), custom, tar or directory.
        tables: Only dump these tables.
        schemas: Only dump these schemas.
        data_only: Dump data without schema.
        schema_only: Dump schema without data.
        compress: Compress the dump (custom format).
        output_path: Output file or directory; defaults to a timestamped name.
    """
    options = {
        "format": format,
        "tables": tables,
        "schemas": schemas,
        "dataOnly": data_only,
        "schemaOnly": schema_only,
        "compress": compress,
        "outputPath": output_path,
    }
    try:
        result = await _require(_backup).backup(
            {key: value for key, value in options.items() if value is not None}
        )
    except Exception as e:
        return _error_response("sql_backup", e)

    metrics.record_backup(result.success, result.duration / 1000)
    if not result.success:
        return _error_response("sql_backup", BackupError(result.error or "Backup failed"))

    metrics.increment_tool_request(tool="sql_backup", status="success")
    return {
        "success": True,
        "message": "Backup completed successfully",
        "outputPath": result.output_path,
        "size": result.size,
        "sizeFormatted": f"{result.size / 1024 / 1024:.2f} MB" if result.size else None,
        "duration": result.duration,
        "durationFormatted": f"{result.duration / 1000:.2f}s",
    }


async def sql_health(
    include_version: bool = True,
    include_connection_info: bool = True,
) -> dict[str, Any]:
    """Report database connectivity, server version and pool occupancy.

    Args:
        include_version: Include the PostgreSQL server version.
        include_connection_info: Include connection pool statistics.
    """
    health: dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
    }

    try:
        executor = _require(_executor)
        test = await executor.execute_query("SELECT 1 AS test", transactional=False)
        health["connectionTest"] = {"success": True, "latency": test.duration}
    except SequelaeError as e:
        health["status"] = "unhealthy"
        health["connectionTest"] = {"success": False, "error": e.message}

    if include_version and health["status"] == "healthy":
        try:
            version = await executor.execute_query("SELECT version()", transactional=False)
            if version.rows:
                health["database"] = {"version": version.rows[0]["version"]}
        except SequelaeError as e:
            health["database"] = {"error": e.message}

    if include_connection_info:
        stats = _pool_manager.stats() if _pool_manager is not None else PoolStats()
        metrics.set_pool_stats(stats)
        health["connectionPool"] = stats.model_dump()

    health["tool"] = {"name": TOOL_NAME, "version": __version__}

    metrics.increment_tool_request(tool="sql_health", status=health["status"])
    return health


mcp.tool(sql_exec)
mcp.tool(sql_file)
mcp.tool(sql_schema)
mcp.tool(sql_backup)
mcp.tool(sql_health)
