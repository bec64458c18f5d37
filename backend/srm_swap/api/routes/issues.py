"""
Dispute API routes.

Endpoints:
- GET /trades/issues/{status} - Supervisor dashboard by issue status
- POST /trades/issues/{id}/claim - Supervisor takes the dispute
- POST /trades/issues/{id}/resolve - Participant acknowledges resolution
- POST /trades/issues/{id}/finalize - Assigned supervisor closes it
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from srm_swap.api.deps import CurrentUser, MemberUser
from srm_swap.api.routes.websocket import (
    manager,
    publish_issue_update,
    publish_trade_update,
    trade_room,
)
from srm_swap.db.session import get_db
from srm_swap.models.issue import IssueStatus
from srm_swap.schemas.trade import (
    IssueResponse,
    IssueWithTrade,
    build_issue_response,
    build_issue_with_trade,
)
from srm_swap.services.issues import IssueService

router = APIRouter()


async def _publish(service: IssueService, issue) -> None:
    trade = await service.trades.get_trade_or_raise(issue.trade_id)
    await publish_trade_update(trade)
    await publish_issue_update(issue)


@router.get("/{issue_status}", response_model=list[IssueWithTrade])
async def list_issues(
    issue_status: IssueStatus,
    current_user: MemberUser,
    db: AsyncSession = Depends(get_db),
):
    """Issues visible to the calling supervisor."""
    issues = await IssueService(db).list_issues(current_user, issue_status)
    return [build_issue_with_trade(i) for i in issues]


@router.post("/{issue_id}/claim", response_model=IssueResponse)
async def claim_issue(
    issue_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Supervisor claims an open or pending issue."""
    service = IssueService(db)
    issue = await service.get_issue_or_raise(issue_id)
    async with manager.sequenced(trade_room(issue.trade_id)):
        issue = await service.claim_issue(issue_id, current_user)
        await _publish(service, issue)
    return build_issue_response(issue)


@router.post("/{issue_id}/resolve", response_model=IssueResponse)
async def resolve_issue_party(
    issue_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Buyer or seller marks their side of the dispute resolved."""
    service = IssueService(db)
    issue = await service.get_issue_or_raise(issue_id)
    async with manager.sequenced(trade_room(issue.trade_id)):
        issue, _ = await service.resolve_issue_party(issue_id, current_user)
        await _publish(service, issue)
    return build_issue_response(issue)


@router.post("/{issue_id}/finalize", response_model=IssueResponse)
async def finalize_issue(
    issue_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Assigned supervisor closes the dispute."""
    service = IssueService(db)
    issue = await service.get_issue_or_raise(issue_id)
    async with manager.sequenced(trade_room(issue.trade_id)):
        issue, _ = await service.finalize_issue(issue_id, current_user)
        await _publish(service, issue)
    return build_issue_response(issue)
