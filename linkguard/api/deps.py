"""FastAPI dependencies."""

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from linkguard.db.session import get_db
from linkguard.verify.cache import VerificationCache
from linkguard.verify.health_checker import HealthChecker
from linkguard.worker.tasks import task_runner


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_health_checker() -> HealthChecker:
    """Dependency for the shared health checker."""
    if task_runner.checker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Link verification not initialized",
        )
    return task_runner.checker


def get_cache() -> VerificationCache:
    """Dependency for the shared verification cache."""
    if task_runner.cache is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Verification cache not initialized",
        )
    return task_runner.cache
