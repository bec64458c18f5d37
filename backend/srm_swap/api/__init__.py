"""
API module for FastAPI routes.
"""
from fastapi import APIRouter

from srm_swap.api.routes import (
    health,
    issues,
    items,
    ratings,
    trades,
    users,
    websocket,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(items.router, prefix="/items", tags=["Items"])
# Registered before trades so /trades/issues/... is not read as a trade id
api_router.include_router(issues.router, prefix="/trades/issues", tags=["Issues"])
api_router.include_router(trades.router, prefix="/trades", tags=["Trades"])
api_router.include_router(ratings.router, prefix="/ratings", tags=["Ratings"])
api_router.include_router(users.router, prefix="/user", tags=["Users"])

# WebSocket route (no prefix - connects at /api/ws)
api_router.include_router(websocket.router, tags=["WebSocket"])
