"""
Startup and shutdown for the metrics engine's collaborators.

An HTTP layer can hand metrics_engine_lifespan() to its lifespan hook.
Neither store is required to start: a missing collaborator only makes the
metrics that need it return None.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from app.config import settings
from app.db.firestore import firestore_manager
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def engine_health() -> dict[str, Any]:
    """Combined collaborator status for a health endpoint."""
    database = await db_pool.health_check()
    firestore = firestore_manager.health_check()
    return {
        "healthy": database["healthy"] and firestore["healthy"],
        "services": {"database_pool": database, "firestore": firestore},
    }


@asynccontextmanager
async def metrics_engine_lifespan() -> AsyncIterator[None]:
    setup_logging(log_level=settings.LOG_LEVEL)
    logger.info("Metrics engine starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")
    except Exception as e:
        logger.error("Database pool unavailable, success rate disabled", error=str(e))

    if firestore_manager.get_store() is not None:
        startup_tasks.append("firestore")
    else:
        logger.error("Firestore unavailable, response time disabled")

    logger.info("Metrics engine started", services=startup_tasks)

    try:
        yield
    finally:
        logger.info("Metrics engine shutting down")
        try:
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
