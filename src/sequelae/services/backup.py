"""Database backups through pg_dump.

This module validates backup options, builds the pg_dump argument vector,
resolves and checks the output path, runs pg_dump as a child process (never
through a shell) and reports the outcome as a ``BackupResult``.
"""

import asyncio
import logging
import os
import re
import shutil
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import PurePath
from typing import Any
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from sequelae.config.settings import BackupConfig
from sequelae.models.backup import BackupFormat, BackupOptions, BackupResult
from sequelae.models.errors import BackupError, ErrorCode, SequelaeError, ValidationError

logger = logging.getLogger(__name__)

_VALID_FORMATS = ", ".join(f.value for f in BackupFormat)
_NEEDS_QUOTING = re.compile(r"[^A-Za-z0-9_]")

PG_DUMP_NOT_FOUND = "pg_dump not found. Please ensure PostgreSQL client tools are installed."


class ConnectionTarget(BaseModel):
    """Connection parameters pg_dump needs, parsed from a connection string."""

    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    user: str | None = Field(default=None)
    password: str | None = Field(default=None, repr=False)
    database: str = Field(default="")

    @classmethod
    def from_url(cls, url: str) -> "ConnectionTarget":
        parts = urlsplit(url)
        return cls(
            host=parts.hostname or "localhost",
            port=parts.port or 5432,
            user=unquote(parts.username) if parts.username else None,
            password=unquote(parts.password) if parts.password else None,
            database=unquote(parts.path.lstrip("/")),
        )


def validate_backup_options(
    options: Mapping[str, Any] | BackupOptions | None = None,
) -> BackupOptions:
    """Validate backup options before any process is spawned.

    Args:
        options: Raw options from a tool call (camelCase or snake_case keys),
            an already-built BackupOptions, or None for defaults.

    Returns:
        BackupOptions: Validated options.

    Raises:
        ValidationError: On an unknown format, an empty output path,
            non-list tables/schemas, unknown keys, or both data-only and
            schema-only requested.

    Example:
        >>> validate_backup_options({"format": "zip"})
        Traceback (most recent call last):
        ...
        ValidationError: Invalid backup format: zip. Must be one of: plain, custom, tar, directory
    """
    if options is None:
        validated = BackupOptions()
    elif isinstance(options, BackupOptions):
        validated = options
    else:
        fmt = options.get("format")
        if fmt is not None and fmt not in [f.value for f in BackupFormat]:
            raise ValidationError(
                f"Invalid backup format: {fmt}. Must be one of: {_VALID_FORMATS}",
                details={"format": str(fmt)},
            )
        for key in ("tables", "schemas"):
            value = options.get(key)
            if value is not None and (
                not isinstance(value, list) or not all(isinstance(v, str) for v in value)
            ):
                raise ValidationError(f"{key.capitalize()} must be a list of strings")
        try:
            validated = BackupOptions.model_validate(dict(options))
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid backup options: {e.errors()[0]['msg']}",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e

    if validated.output_path is not None and not validated.output_path.strip():
        raise ValidationError("Output path cannot be empty")

    if validated.data_only and validated.schema_only:
        raise ValidationError("Cannot specify both dataOnly and schemaOnly options")

    return validated


def quote_identifier(name: str) -> str:
    """Quote a table or schema name for pg_dump's ``-t`` / ``-n`` patterns.

    Names containing a dot or any character outside ``[A-Za-z0-9_]`` are
    wrapped in double quotes with embedded double quotes doubled; other
    names are passed through unchanged.

    Example:
        >>> quote_identifier("sales.orders")
        '"sales.orders"'
        >>> quote_identifier("users")
        'users'
    """
    if "." in name or _NEEDS_QUOTING.search(name):
        escaped = name.replace('"', '""')
        return f'"{escaped}"'
    return name


def default_output_path(fmt: BackupFormat, now: datetime | None = None) -> str:
    """``backup_<timestamp>.<ext>``, with no extension for the directory format."""
    timestamp = (now or datetime.now(UTC)).strftime("%Y-%m-%dT%H-%M-%S")
    extension = fmt.default_extension
    return f"backup_{timestamp}.{extension}" if extension else f"backup_{timestamp}"


def resolve_output_path(output_path: str | None, fmt: BackupFormat) -> str:
    """Resolve where pg_dump writes, rejecting traversal and unwritable targets.

    Args:
        output_path: Requested path, or None for a timestamped default.
        fmt: Backup format (picks the default extension).

    Returns:
        str: Absolute, normalized output path.

    Raises:
        ValidationError: If the path has a ``..`` segment or its parent
            directory is not writable.
    """
    path = output_path or default_output_path(fmt)

    if ".." in PurePath(path).parts:
        raise ValidationError(
            "Invalid output path: directory traversal not allowed",
            details={"output_path": path},
        )

    resolved = os.path.abspath(os.path.normpath(path))
    output_dir = os.path.dirname(resolved)
    if not os.access(output_dir, os.W_OK):
        raise ValidationError(
            f"Output directory not writable: {output_dir}",
            details={"output_dir": output_dir},
        )
    return resolved


def build_pg_dump_args(
    options: BackupOptions,
    target: ConnectionTarget,
    output_path: str,
    config: BackupConfig | None = None,
) -> list[str]:
    """Build the pg_dump argument vector (without the executable).

    The password is never part of the arguments; it travels in PGPASSWORD.

    Args:
        options: Validated backup options.
        target: Connection parameters.
        output_path: Resolved output path.
        config: Compression level and parallel job settings.

    Returns:
        list[str]: Arguments for pg_dump.
    """
    config = config or BackupConfig()

    args = ["-h", target.host, "-p", str(target.port)]
    if target.user:
        args.extend(["-U", target.user])
    args.extend(["-d", target.database, "--no-password"])

    if options.format.flag:
        args.extend(["-F", options.format.flag])

    for table in options.tables:
        args.extend(["-t", quote_identifier(table)])
    for schema in options.schemas:
        args.extend(["-n", quote_identifier(schema)])

    if options.data_only:
        args.append("-a")
    if options.schema_only:
        args.append("-s")

    # Only the custom format takes a compression level here
    if options.compress and options.format is BackupFormat.CUSTOM:
        args.extend(["-Z", str(config.compression_level)])

    args.extend(["-f", output_path])
    if options.format is BackupFormat.DIRECTORY:
        args.extend(["-j", str(config.parallel_jobs)])

    return args


def measure_output_size(path: str) -> int | None:
    """Size of a dump file, or the total of a dump directory's files."""
    try:
        if os.path.isdir(path):
            return sum(
                os.path.getsize(os.path.join(root, name))
                for root, _, files in os.walk(path)
                for name in files
            )
        return os.path.getsize(path)
    except OSError:
        return None


class BackupOrchestrator:
    """Runs pg_dump for the configured database.

    Example:
        >>> orchestrator = BackupOrchestrator("postgresql://u:p@localhost/app")
        >>> result = await orchestrator.backup({"format": "custom", "compress": True})
        >>> result.success, result.output_path
        (True, '/srv/backups/backup_2024-01-01T12-00-00.dump')
    """

    def __init__(self, connection_string: str, backup_config: BackupConfig | None = None) -> None:
        """Initialize backup orchestrator.

        Args:
            connection_string: PostgreSQL connection URL.
            backup_config: pg_dump settings (defaults apply if None).
        """
        self.connection_string = connection_string
        self.backup_config = backup_config or BackupConfig()

    async def backup(
        self, options: Mapping[str, Any] | BackupOptions | None = None
    ) -> BackupResult:
        """Run a backup. Never raises; failures are reported in the result.

        Args:
            options: Backup options (see validate_backup_options).

        Returns:
            BackupResult: Output path, size and duration on success, or the
                error message on failure.
        """
        start = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        try:
            validated = validate_backup_options(options)
            executable = shutil.which(self.backup_config.pg_dump_path)
            if executable is None:
                raise BackupError(PG_DUMP_NOT_FOUND, code=ErrorCode.TOOL_NOT_INSTALLED)

            target = ConnectionTarget.from_url(self.connection_string)
            output_path = resolve_output_path(validated.output_path, validated.format)
            args = build_pg_dump_args(validated, target, output_path, self.backup_config)

            logger.info(
                "Starting pg_dump",
                extra={
                    "format": str(validated.format),
                    "output_path": output_path,
                    "tables": len(validated.tables),
                    "schemas": len(validated.schemas),
                },
            )
            await self._run_pg_dump(executable, args, target.password)

        except SequelaeError as e:
            logger.warning("Backup failed", extra={"error_code": str(e.code), "error": e.message})
            return BackupResult(success=False, duration=elapsed_ms(), error=e.message)
        except Exception as e:
            logger.exception("Unexpected error during backup")
            return BackupResult(success=False, duration=elapsed_ms(), error=str(e))

        result = BackupResult(
            success=True,
            output_path=output_path,
            size=measure_output_size(output_path),
            duration=elapsed_ms(),
        )
        logger.info(
            "Backup completed",
            extra={"output_path": output_path, "size": result.size, "duration_ms": result.duration},
        )
        return result

    async def _run_pg_dump(self, executable: str, args: list[str], password: str | None) -> None:
        """Spawn pg_dump and wait for it to exit.

        Raises:
            BackupError: If pg_dump cannot be started or exits non-zero.
        """
        env = dict(os.environ)
        if password:
            env["PGPASSWORD"] = password

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise BackupError(PG_DUMP_NOT_FOUND, code=ErrorCode.TOOL_NOT_INSTALLED) from e
        except OSError as e:
            raise BackupError(f"Failed to execute pg_dump: {e}") from e

        try:
            _, stderr = await process.communicate()
        except BaseException:
            # Cancelled or interrupted while waiting: the child must not outlive us.
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            raise BackupError(
                f"pg_dump failed with exit code {process.returncode}: {message}",
                details={"exit_code": process.returncode},
            )
