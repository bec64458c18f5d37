"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from srm_swap import __version__
from srm_swap.api import api_router
from srm_swap.api.routes.websocket import manager
from srm_swap.core.config import settings
from srm_swap.core.exceptions import TradeError
from srm_swap.core.logging import setup_logging
from srm_swap.middleware import RequestIdMiddleware

# Setup logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup and shutdown events.
    """
    logger.info(
        "Starting SRM Swap API",
        version=__version__,
        debug=settings.api_debug,
        redis_bridge=settings.realtime_redis_enabled,
    )

    if settings.auto_create_tables:
        from srm_swap.db.session import create_tables

        await create_tables()

    if settings.realtime_redis_enabled:
        await manager.start_redis_listener()

    yield

    logger.info("Shutting down SRM Swap API")
    await manager.close()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="SRM Swap - campus marketplace trades, supervised exchanges and disputes",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


@app.exception_handler(TradeError)
async def trade_error_handler(request: Request, exc: TradeError):
    """Map domain errors to their HTTP status."""
    logger.info(
        "Trade request rejected",
        path=request.url.path,
        error=str(exc),
        error_type=exc.error_type,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error_type": exc.error_type},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    from sqlalchemy.exc import TimeoutError as SQLTimeoutError

    error_type = type(exc).__name__
    error_str = str(exc)

    # SQLAlchemy raises TimeoutError for pool exhaustion, not PoolError
    is_pool_error = (
        isinstance(exc, SQLTimeoutError) or
        "QueuePool" in error_str or
        "pool limit" in error_str.lower()
    )

    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=error_str,
        error_type=error_type,
        is_pool_error=is_pool_error,
    )

    if is_pool_error:
        return JSONResponse(
            status_code=503,
            content={
                "detail": "Service temporarily unavailable due to high load. Please try again in a moment.",
                "error_type": "connection_pool_exhausted",
            },
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include API routes with /api prefix
app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "srm_swap.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
