"""
Query helpers shared by the track and listening event repositories.

Every helper takes an optional connection so callers can run several
statements inside one transaction from get_db_transaction().
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from listening_history.db.pool import get_db_connection
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _borrow(
    connection: psycopg.AsyncConnection | None,
) -> AsyncIterator[psycopg.AsyncConnection]:
    if connection is not None:
        yield connection
        return
    async with await get_db_connection() as conn:
        yield conn


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict, None when empty.

    Raises:
        DatabaseError: If the statement fails
    """
    try:
        async with _borrow(connection) as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()
    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Execute a statement and return the affected row count."""
    try:
        async with _borrow(connection) as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount
    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="execute") from e
