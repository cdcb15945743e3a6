"""Query request and result models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TRANSACTION_CONTROL_PREFIXES = ("BEGIN", "COMMIT", "ROLLBACK", "START TRANSACTION")


def is_transaction_control(sql: str) -> bool:
    """Check whether a statement manages its own transaction.

    Such statements are never wrapped in an automatic transaction, since
    wrapping them would nest BEGIN blocks or commit the wrapper early.

    Args:
        sql: SQL text as submitted by the caller.

    Returns:
        bool: True if the text starts with a transaction-control verb.
    """
    return sql.strip().upper().startswith(TRANSACTION_CONTROL_PREFIXES)


class QueryRequest(BaseModel):
    """A single SQL execution request."""

    sql: str = Field(..., description="Raw SQL text")
    transactional: bool = Field(
        default=True, description="Wrap the statement in BEGIN/COMMIT"
    )
    timeout_ms: int | None = Field(
        default=None, ge=0, description="Session statement_timeout in milliseconds"
    )

    @property
    def is_transaction_control(self) -> bool:
        """Whether the SQL is itself a transaction-control statement."""
        return is_transaction_control(self.sql)

    @property
    def wraps_transaction(self) -> bool:
        """Whether the executor opens a transaction around the SQL."""
        return self.transactional and not self.is_transaction_control


class QueryResult(BaseModel):
    """Normalized outcome of one executed statement."""

    model_config = ConfigDict(populate_by_name=True)

    command: str | None = Field(None, description="Command verb, e.g. SELECT or INSERT")
    row_count: int = Field(default=0, alias="rowCount", description="Rows returned or affected")
    rows: list[dict[str, Any]] = Field(default_factory=list, description="Returned rows")
    duration: int = Field(default=0, ge=0, description="Wall-clock duration in milliseconds")

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase keys)."""
        return self.model_dump(by_alias=True)
