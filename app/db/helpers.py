"""
Read helpers over the shared pool.

Repositories pass SQL with %s placeholders; driver errors come back as
DatabaseError so callers can degrade a metric instead of crashing.
"""

from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A relational read failed."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


async def _run(cursor, query: str, params: tuple, many: bool):
    await cursor.execute(query, params)
    if many:
        return await cursor.fetchall()
    return await cursor.fetchone()


async def _read(
    operation: str,
    query: str,
    params: tuple,
    connection: psycopg.AsyncConnection | None,
    many: bool,
):
    try:
        if connection is not None:
            async with connection.cursor() as cur:
                return await _run(cur, query, params, many)

        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                return await _run(cur, query, params, many)

    except psycopg.Error as e:
        logger.error(f"Database {operation} error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Row dict, or None when the query matched nothing
    """
    row = await _read("fetch_one", query, params, connection, many=False)
    return row or None


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return every row as a dict."""
    return await _read("fetch_all", query, params, connection, many=True)
