"""
Read-only PostgreSQL pool for the metrics engine.

Calendar rows, bookings, payments and reviews are only ever read, so every
pooled connection runs in autocommit with read-only transactions.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

POOL_NAME = "service-metrics"
STATEMENT_TIMEOUT = "30s"
CLOSE_TIMEOUT_SECONDS = 30.0


class DatabasePoolManager:
    """
    Owns the relational store pool.

    A missing or unreachable database is not fatal for the engine: callers
    catch RuntimeError or DatabaseError and degrade the success rate to None.
    """

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")
        if not settings.DATABASE_URL:
            raise RuntimeError("Database config missing: set DATABASE_URL")

        pool_config = self._get_pool_config()
        logger.info(
            "Opening read-only database pool",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
            environment=settings.environment,
        )

        try:
            self.pool = AsyncConnectionPool(
                conninfo=settings.DATABASE_URL,
                name=POOL_NAME,
                open=False,
                **pool_config,
            )
            await self.pool.open(wait=True)
            self._initialized = True

            latency_ms = await self._ping()
            logger.info("Database pool ready", latency_ms=latency_ms)

        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            await self._discard_pool()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

    def _get_pool_config(self) -> dict[str, Any]:
        config = settings.get_db_pool_config()
        config["check"] = AsyncConnectionPool.check_connection
        config["configure"] = self._configure_connection
        return config

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        """Per-connection session setup: dict rows, UTC, read-only."""
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"{POOL_NAME}-{settings.environment}")
            )
        )
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET default_transaction_read_only = on")

    async def _ping(self) -> float:
        """Round-trip a trivial query; returns latency in milliseconds."""
        started = time.perf_counter()
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 AS ok")
                row = await cur.fetchone()
        if not row or row.get("ok") != 1:
            raise RuntimeError("Database ping returned an unexpected result")
        return round((time.perf_counter() - started) * 1000, 2)

    async def _discard_pool(self) -> None:
        if self.pool is None:
            return
        try:
            await self.pool.close()
        except Exception as e:
            logger.warning("Error discarding database pool", error=str(e))
        self.pool = None

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        logger.info("Closing database pool")
        try:
            if self.pool:
                await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a read-only connection.

        Usage:
            async with db_pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
        """
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        if self._closed:
            raise RuntimeError("Database pool is closed")

        try:
            async with self.pool.connection() as conn:
                yield conn
        except Exception as e:
            logger.error("Database connection error", error=str(e), error_type=type(e).__name__)
            raise

    async def health_check(self) -> dict[str, Any]:
        """Pool status for the engine health report."""
        if not self._initialized:
            return {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}
        if self._closed:
            return {"healthy": False, "error": "Pool is closed", "service": "database_pool"}

        try:
            latency_ms = await self._ping()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": latency_ms,
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Borrow a connection from the shared pool (use with async with)."""
    return db_pool.connection()
