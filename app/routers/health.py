"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import logging

from ..core.config import settings
from ..core.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

@router.get("/")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }

@router.get("/db-health")
async def database_health(session: AsyncSession = Depends(get_db)):
    """Database health check using the session dependency"""
    try:
        result = await session.execute(text("SELECT 1 AS test"))
        return {
            "status": "healthy",
            "test_result": result.scalar()
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "error_type": type(e).__name__
        }
