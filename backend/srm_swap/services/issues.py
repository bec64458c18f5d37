"""
Dispute handling for scheduled trades.

A participant reports an issue, which moves the trade to UNDER_REVIEW. A
supervisor claims it, each party acknowledges the resolution, and the
supervisor finalizes it. Both parties acknowledging completes the trade.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from structlog import get_logger

from srm_swap.core.exceptions import InvalidStateError, NotFoundError
from srm_swap.core.roles import (
    TradeSide,
    is_admin,
    require_assigned_supervisor,
    require_independent_supervisor,
    require_participant,
)
from srm_swap.db.transaction import atomic
from srm_swap.models.issue import Issue, IssueStatus
from srm_swap.models.item import Item
from srm_swap.models.trade import Trade, TradeStatus
from srm_swap.models.user import User
from srm_swap.services.trades import TradeService

logger = get_logger()

REPORTABLE_STATUSES = (TradeStatus.SCHEDULED, TradeStatus.UNDER_REVIEW)
LIVE_ISSUE_STATUSES = (IssueStatus.OPEN, IssueStatus.PENDING)


def _no_live_issue():
    return ~exists().where(
        Issue.trade_id == Trade.id,
        Issue.status != IssueStatus.RESOLVED,
    ).correlate(Trade)


class IssueService:
    """Service for the dispute sub-engine."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.trades = TradeService(db)

    async def get_issue(self, issue_id: int) -> Optional[Issue]:
        """Get an issue with its trade loaded."""
        result = await self.db.execute(
            select(Issue)
            .options(selectinload(Issue.trade))
            .where(Issue.id == issue_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    async def get_issue_or_raise(self, issue_id: int) -> Issue:
        issue = await self.get_issue(issue_id)
        if issue is None:
            raise NotFoundError("Issue not found")
        return issue

    async def _update_issue(
        self,
        issue_id: int,
        allowed: tuple[IssueStatus, ...],
        values: dict[str, Any],
        action: str,
    ) -> None:
        stmt = (
            update(Issue)
            .where(Issue.id == issue_id, Issue.status.in_(list(allowed)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise InvalidStateError(f"Cannot {action}: the issue changed in the meantime")

    async def report_issue(self, trade_id: int, reporter: User, description: str) -> Issue:
        """
        Open a dispute: SCHEDULED -> UNDER_REVIEW.

        Allowed again on an UNDER_REVIEW trade whose earlier issue has been
        resolved. The new issue inherits the trade's supervisor, if any.
        """
        trade = await self.trades.get_trade_or_raise(trade_id)
        require_participant(trade, reporter)

        if trade.status not in REPORTABLE_STATUSES:
            raise InvalidStateError("Issues can only be reported after a trade is scheduled")
        if trade.active_issue is not None:
            raise InvalidStateError("An issue is already open for this trade")

        issue = Issue(
            trade_id=trade_id,
            reporter_id=reporter.id,
            supervisor_id=trade.supervisor_id,
            description=description,
            status=IssueStatus.OPEN,
        )
        async with atomic(self.db):
            stmt = (
                update(Trade)
                .where(
                    Trade.id == trade_id,
                    Trade.status.in_(list(REPORTABLE_STATUSES)),
                    _no_live_issue(),
                )
                .values(status=TradeStatus.UNDER_REVIEW)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            if result.rowcount == 0:
                raise InvalidStateError("Cannot report an issue: the trade changed in the meantime")
            self.db.add(issue)

        logger.info(
            "trade_issue_reported",
            trade_id=trade_id,
            issue_id=issue.id,
            reporter_id=reporter.id,
        )
        return await self.get_issue_or_raise(issue.id)

    async def claim_issue(self, issue_id: int, supervisor: User) -> Issue:
        """A supervisor takes the dispute: OPEN/PENDING -> PENDING."""
        issue = await self.get_issue_or_raise(issue_id)
        require_independent_supervisor(issue.trade, supervisor)
        if issue.status not in LIVE_ISSUE_STATUSES:
            raise InvalidStateError("This issue has already been resolved")

        async with atomic(self.db):
            await self._update_issue(
                issue_id,
                LIVE_ISSUE_STATUSES,
                {"status": IssueStatus.PENDING, "supervisor_id": supervisor.id},
                "claim the issue",
            )

        logger.info(
            "trade_issue_claimed",
            issue_id=issue_id,
            trade_id=issue.trade_id,
            supervisor_id=supervisor.id,
            previous_supervisor_id=issue.supervisor_id,
        )
        return await self.get_issue_or_raise(issue_id)

    async def resolve_issue_party(self, issue_id: int, participant: User) -> tuple[Issue, bool]:
        """
        A participant acknowledges the resolution.

        Once both parties have acknowledged, the flags are written onto the
        trade and it moves to COMPLETED in the same transaction.

        Returns:
            Tuple of (issue, trade_completed)
        """
        issue = await self.get_issue_or_raise(issue_id)
        side = require_participant(issue.trade, participant)
        if issue.status not in LIVE_ISSUE_STATUSES:
            raise InvalidStateError("This issue has already been resolved")

        flag = "buyer_resolved" if side == TradeSide.BUYER else "seller_resolved"

        async with atomic(self.db):
            await self._update_issue(
                issue_id,
                LIVE_ISSUE_STATUSES,
                {flag: True},
                "resolve the issue",
            )
            both_resolved = exists().where(
                Issue.id == issue_id,
                Issue.buyer_resolved.is_(True),
                Issue.seller_resolved.is_(True),
            )
            result = await self.db.execute(
                update(Trade)
                .where(
                    Trade.id == issue.trade_id,
                    Trade.status == TradeStatus.UNDER_REVIEW,
                    both_resolved,
                )
                .values(
                    buyer_finished=True,
                    seller_finished=True,
                    status=TradeStatus.COMPLETED,
                    completed_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            completed = result.rowcount > 0

        logger.info(
            "trade_issue_party_resolved",
            issue_id=issue_id,
            trade_id=issue.trade_id,
            side=side.value,
        )
        if completed:
            logger.info("trade_completed", trade_id=issue.trade_id, via_issue=issue_id)
        return await self.get_issue_or_raise(issue_id), completed

    async def finalize_issue(self, issue_id: int, supervisor: User) -> tuple[Issue, bool]:
        """
        The assigned supervisor closes the dispute: PENDING -> RESOLVED.

        The parties' acknowledgements are folded onto the trade's finished
        flags; when both are set the trade completes.

        Returns:
            Tuple of (issue, trade_completed)
        """
        issue = await self.get_issue_or_raise(issue_id)
        require_independent_supervisor(issue.trade, supervisor)
        require_assigned_supervisor(issue.supervisor_id, supervisor)
        if issue.status != IssueStatus.PENDING:
            raise InvalidStateError("Only a claimed issue can be finalized")

        trade = issue.trade
        buyer_finished = trade.buyer_finished or issue.buyer_resolved
        seller_finished = trade.seller_finished or issue.seller_resolved
        values: dict[str, Any] = {
            "buyer_finished": buyer_finished,
            "seller_finished": seller_finished,
        }
        if buyer_finished and seller_finished:
            values.update(status=TradeStatus.COMPLETED, completed_at=datetime.now(timezone.utc))

        async with atomic(self.db):
            await self._update_issue(
                issue_id,
                (IssueStatus.PENDING,),
                {"status": IssueStatus.RESOLVED, "resolved_at": datetime.now(timezone.utc)},
                "finalize the issue",
            )
            # A trade already completed by both acknowledgements stays as is
            result = await self.db.execute(
                update(Trade)
                .where(Trade.id == issue.trade_id, Trade.status == TradeStatus.UNDER_REVIEW)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

        completed = "status" in values and result.rowcount > 0
        logger.info(
            "trade_issue_finalized",
            issue_id=issue_id,
            trade_id=issue.trade_id,
            supervisor_id=supervisor.id,
            trade_completed=completed,
        )
        return await self.get_issue_or_raise(issue_id), completed

    async def list_issues(
        self,
        supervisor: User,
        status: IssueStatus = IssueStatus.OPEN,
    ) -> list[Issue]:
        """
        Issues for a supervisor's dashboard.

        OPEN issues are visible to every supervisor except on trades they
        take part in. PENDING and RESOLVED issues are limited to those the
        caller supervises; admins see all of them.
        """
        query = (
            select(Issue)
            .join(Trade, Issue.trade_id == Trade.id)
            .join(Item, Trade.listing_id == Item.id)
            .options(selectinload(Issue.trade))
            .where(Issue.status == status)
            .order_by(Issue.created_at.desc(), Issue.id.desc())
        )
        if status == IssueStatus.OPEN:
            query = query.where(
                Trade.buyer_id != supervisor.id,
                Item.seller_id != supervisor.id,
            )
        elif not is_admin(supervisor):
            query = query.where(Issue.supervisor_id == supervisor.id)

        result = await self.db.execute(query)
        return list(result.unique().scalars().all())
