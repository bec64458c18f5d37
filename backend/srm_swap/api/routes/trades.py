"""
Trade lifecycle API routes.

Endpoints:
- POST /trades - Open a trade on a listing (or return the existing one)
- GET /trades/pending-supervision - Supervisor queue
- GET /trades/{id} - Trade snapshot with chat history
- POST /trades/{id}/propose - Seller proposes final terms
- POST /trades/{id}/accept - Buyer accepts (listing becomes SOLD)
- POST /trades/{id}/decline - Buyer declines
- POST /trades/{id}/schedule - Supervisor sets meeting time and place
- POST /trades/{id}/mark-done - Supervisor confirms the exchange
- POST /trades/{id}/finish - Participant confirms completion
- POST /trades/{id}/report-issue - Participant opens a dispute

Every mutation runs under the trade room's lock and broadcasts the new
snapshot to the room before the response is returned.
"""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from srm_swap.api.deps import CurrentUser, MemberUser
from srm_swap.api.routes.websocket import (
    manager,
    publish_issue_update,
    publish_trade_update,
    trade_room,
)
from srm_swap.db.session import get_db
from srm_swap.models.trade import TradeStatus
from srm_swap.schemas.trade import (
    CreateTradeRequest,
    IssueResponse,
    ProposeDealRequest,
    ReportIssueRequest,
    ScheduleTradeRequest,
    TradeSnapshot,
    TradeSummary,
    build_issue_response,
    build_trade_snapshot,
    build_trade_summary,
)
from srm_swap.services.issues import IssueService
from srm_swap.services.trades import TradeService

router = APIRouter()


@router.post("", response_model=TradeSnapshot)
async def create_trade(
    request: CreateTradeRequest,
    response: Response,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Open a trade, or return the caller's existing trade on the listing."""
    trade, created = await TradeService(db).create_trade(current_user, request.listing_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return build_trade_snapshot(trade)


@router.get("/pending-supervision", response_model=list[TradeSummary])
async def list_pending_supervision(
    current_user: MemberUser,
    status_filter: TradeStatus | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    """Trades waiting for a supervisor, excluding the caller's own."""
    trades = await TradeService(db).list_pending_supervision(current_user, status_filter)
    return [build_trade_summary(t) for t in trades]


@router.get("/{trade_id}", response_model=TradeSnapshot)
async def get_trade(
    trade_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Get a trade with its messages and live issue."""
    trade = await TradeService(db).get_trade_for_user(trade_id, current_user)
    return build_trade_snapshot(trade)


@router.post("/{trade_id}/propose", response_model=TradeSnapshot)
async def propose_deal(
    trade_id: int,
    request: ProposeDealRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Seller locks in the final terms."""
    service = TradeService(db)
    async with manager.sequenced(trade_room(trade_id)):
        trade = await service.propose_deal(
            trade_id,
            current_user,
            money=request.money_proposal,
            barter=request.barter_proposal,
            commitment=request.commitment_proposal,
        )
        await publish_trade_update(trade)
    return build_trade_snapshot(trade)


@router.post("/{trade_id}/accept", response_model=TradeSnapshot)
async def accept_deal(
    trade_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Buyer accepts the proposal."""
    service = TradeService(db)
    async with manager.sequenced(trade_room(trade_id)):
        trade = await service.accept_deal(trade_id, current_user)
        await publish_trade_update(trade)
    return build_trade_snapshot(trade)


@router.post("/{trade_id}/decline", response_model=TradeSnapshot)
async def decline_deal(
    trade_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Buyer declines the proposal; negotiation resumes."""
    service = TradeService(db)
    async with manager.sequenced(trade_room(trade_id)):
        trade = await service.decline_deal(trade_id, current_user)
        await publish_trade_update(trade)
    return build_trade_snapshot(trade)


@router.post("/{trade_id}/schedule", response_model=TradeSnapshot)
async def schedule_trade(
    trade_id: int,
    request: ScheduleTradeRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Supervisor sets the meeting location and time."""
    service = TradeService(db)
    async with manager.sequenced(trade_room(trade_id)):
        trade = await service.schedule_trade(
            trade_id,
            current_user,
            location=request.location,
            scheduled_at=request.scheduled_at,
            supervisor_note=request.supervisor_note,
        )
        await publish_trade_update(trade)
    return build_trade_snapshot(trade)


@router.post("/{trade_id}/mark-done", response_model=TradeSnapshot)
async def mark_deal_done(
    trade_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Supervisor confirms the exchange happened."""
    service = TradeService(db)
    async with manager.sequenced(trade_room(trade_id)):
        trade = await service.mark_deal_done(trade_id, current_user)
        await publish_trade_update(trade)
    return build_trade_snapshot(trade)


@router.post("/{trade_id}/finish", response_model=TradeSnapshot)
async def finish_trade(
    trade_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Participant confirms completion. Repeated calls are no-ops."""
    service = TradeService(db)
    async with manager.sequenced(trade_room(trade_id)):
        trade, changed = await service.finish_trade(trade_id, current_user)
        if changed:
            await publish_trade_update(trade)
    return build_trade_snapshot(trade)


@router.post(
    "/{trade_id}/report-issue",
    response_model=IssueResponse,
    status_code=status.HTTP_201_CREATED,
)
async def report_issue(
    trade_id: int,
    request: ReportIssueRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Participant reports a problem with a scheduled trade."""
    async with manager.sequenced(trade_room(trade_id)):
        issue = await IssueService(db).report_issue(trade_id, current_user, request.description)
        trade = await TradeService(db).get_trade_or_raise(trade_id)
        await publish_trade_update(trade)
        await publish_issue_update(issue)
    return build_issue_response(issue)
