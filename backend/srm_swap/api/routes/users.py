"""
User-scoped API routes.

Endpoints:
- GET /user/my-trades - Trades the caller is buying or selling in
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from srm_swap.api.deps import CurrentUser
from srm_swap.db.session import get_db
from srm_swap.schemas.trade import ParticipantTrade, build_participant_trade
from srm_swap.services.trades import TradeService

router = APIRouter()


@router.get("/my-trades", response_model=list[ParticipantTrade])
async def list_my_trades(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """The caller's trades as buyer or seller, latest activity first."""
    trades = await TradeService(db).list_for_user(current_user)
    return [build_participant_trade(t) for t in trades]
