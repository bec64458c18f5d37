"""
Health check endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from srm_swap import __version__
from srm_swap.api.routes.websocket import manager
from srm_swap.core.config import settings
from srm_swap.db.session import get_db

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns service status, database connectivity and open trade rooms.
    """
    db_ok = False
    try:
        await db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.warning("Health check: database connection failed", error=str(e))

    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "ok",
            "database": "ok" if db_ok else "error",
        },
        "realtime": {
            "rooms": len(manager.rooms),
            "redis_bridge": settings.realtime_redis_enabled,
        },
    }


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": f"{settings.app_name} API",
        "version": __version__,
        "docs": "/docs",
    }
