"""
Trade, chat message and issue schemas.

TradeSnapshot is both the HTTP response body and the payload broadcast to a
trade room as trade_status_updated, so clients can re-render from either.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from srm_swap.schemas.common import UserBrief, build_user_brief
from srm_swap.schemas.item import ItemResponse, build_item_response


# Requests
class CreateTradeRequest(BaseModel):
    """Buyer opens (or re-opens) a trade on a listing."""
    listing_id: int


class ProposeDealRequest(BaseModel):
    """Seller's final terms."""
    money_proposal: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    barter_proposal: Optional[str] = Field(None, max_length=1000)
    commitment_proposal: Optional[str] = Field(None, max_length=1000)


class ScheduleTradeRequest(BaseModel):
    """Supervisor's meeting arrangement."""
    location: str = Field(..., min_length=1, max_length=200)
    scheduled_at: datetime
    supervisor_note: Optional[str] = Field(None, max_length=1000)


class ReportIssueRequest(BaseModel):
    """Participant's dispute report."""
    description: str = Field(..., min_length=1, max_length=2000)


# Responses
class MessageResponse(BaseModel):
    """A persisted chat message."""
    id: int
    trade_id: int
    sender: UserBrief
    content: str
    created_at: datetime


class IssueResponse(BaseModel):
    """A dispute record."""
    id: int
    trade_id: int
    reporter: UserBrief
    supervisor: Optional[UserBrief] = None
    description: str
    status: str
    buyer_resolved: bool
    seller_resolved: bool
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TradeSummary(BaseModel):
    """Trade without its chat history, used in supervision queues."""
    id: int
    listing: ItemResponse
    buyer: UserBrief
    status: str
    money_proposal: Optional[Decimal] = None
    barter_proposal: Optional[str] = None
    commitment_proposal: Optional[str] = None
    proposer_id: Optional[int] = None
    location: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    supervisor: Optional[UserBrief] = None
    supervisor_note: Optional[str] = None
    supervisor_confirmed: bool
    buyer_finished: bool
    seller_finished: bool
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TradeSnapshot(TradeSummary):
    """Full trade state with messages and the live dispute."""
    messages: list[MessageResponse]
    active_issue: Optional[IssueResponse] = None


class ParticipantTrade(TradeSummary):
    """Entry in a participant's own trade list, with the latest message as preview."""
    last_message: Optional[MessageResponse] = None


class IssueWithTrade(IssueResponse):
    """Issue listing entry for supervisors."""
    trade: TradeSummary


def build_message_response(message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        trade_id=message.trade_id,
        sender=build_user_brief(message.sender),
        content=message.content,
        created_at=message.created_at,
    )


def build_issue_response(issue) -> IssueResponse:
    return IssueResponse(
        id=issue.id,
        trade_id=issue.trade_id,
        reporter=build_user_brief(issue.reporter),
        supervisor=build_user_brief(issue.supervisor),
        description=issue.description,
        status=issue.status.value,
        buyer_resolved=issue.buyer_resolved,
        seller_resolved=issue.seller_resolved,
        resolved_at=issue.resolved_at,
        created_at=issue.created_at,
        updated_at=issue.updated_at,
    )


def _summary_fields(trade) -> dict:
    return dict(
        id=trade.id,
        listing=build_item_response(trade.listing),
        buyer=build_user_brief(trade.buyer),
        status=trade.status.value,
        money_proposal=trade.money_proposal,
        barter_proposal=trade.barter_proposal,
        commitment_proposal=trade.commitment_proposal,
        proposer_id=trade.proposer_id,
        location=trade.location,
        scheduled_at=trade.scheduled_at,
        supervisor=build_user_brief(trade.supervisor),
        supervisor_note=trade.supervisor_note,
        supervisor_confirmed=trade.supervisor_confirmed,
        # Computed view: the live issue's flags win over the stored ones
        buyer_finished=trade.buyer_done,
        seller_finished=trade.seller_done,
        completed_at=trade.completed_at,
        created_at=trade.created_at,
        updated_at=trade.updated_at,
    )


def build_trade_summary(trade) -> TradeSummary:
    return TradeSummary(**_summary_fields(trade))


def build_participant_trade(trade) -> ParticipantTrade:
    last = trade.messages[-1] if trade.messages else None
    return ParticipantTrade(
        **_summary_fields(trade),
        last_message=build_message_response(last) if last is not None else None,
    )


def build_trade_snapshot(trade) -> TradeSnapshot:
    issue = trade.active_issue
    return TradeSnapshot(
        **_summary_fields(trade),
        messages=[build_message_response(m) for m in trade.messages],
        active_issue=build_issue_response(issue) if issue is not None else None,
    )


def build_issue_with_trade(issue) -> IssueWithTrade:
    return IssueWithTrade(
        **build_issue_response(issue).model_dump(),
        trade=build_trade_summary(issue.trade),
    )
