"""
Trade lifecycle service.

Handles:
- Opening a trade on a listing (one per buyer and listing)
- Seller proposals, buyer accept/decline
- Supervisor scheduling and confirmation of the in-person exchange
- Dual completion by buyer and seller
- Supervision queues

Every status change is a conditional UPDATE guarded on the status the
operation requires, executed inside atomic(). A concurrent request that
changed the row first makes the update match nothing, which is reported as
InvalidStateError instead of being silently overwritten.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload
from structlog import get_logger

from srm_swap.core.config import settings
from srm_swap.core.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError
from srm_swap.core.roles import (
    TradeSide,
    can_view_trade,
    require_assigned_supervisor,
    require_buyer,
    require_independent_supervisor,
    require_participant,
    require_seller,
)
from srm_swap.db.transaction import atomic
from srm_swap.models.item import Item, ItemStatus
from srm_swap.models.message import Message
from srm_swap.models.trade import Trade, TradeStatus
from srm_swap.models.user import User

logger = get_logger()

# Statuses a supervisor's queue shows when no filter is given
SUPERVISION_STATUSES = (TradeStatus.ACCEPTED, TradeStatus.SCHEDULED)

# Statuses in which participants may confirm the physical exchange
FINISHABLE_STATUSES = (TradeStatus.SCHEDULED, TradeStatus.UNDER_REVIEW)

UNAVAILABLE_LISTING_STATUSES = (ItemStatus.SOLD, ItemStatus.REMOVED)


def trade_query():
    """Select a trade with everything a snapshot needs, refreshing stale rows."""
    return (
        select(Trade)
        .options(
            joinedload(Trade.listing).joinedload(Item.seller),
            joinedload(Trade.buyer),
            joinedload(Trade.supervisor),
            selectinload(Trade.messages).joinedload(Message.sender),
            selectinload(Trade.issues),
        )
        .execution_options(populate_existing=True)
    )


class TradeService:
    """Service enforcing the trade state machine."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_trade(self, trade_id: int) -> Trade | None:
        """Get a trade by ID with listing, parties, messages and issues."""
        result = await self.db.execute(trade_query().where(Trade.id == trade_id))
        return result.unique().scalar_one_or_none()

    async def get_trade_or_raise(self, trade_id: int) -> Trade:
        trade = await self.get_trade(trade_id)
        if trade is None:
            raise NotFoundError("Trade not found")
        return trade

    async def get_trade_for_user(self, trade_id: int, user: User) -> Trade:
        """Get a trade the user is allowed to see."""
        trade = await self.get_trade_or_raise(trade_id)
        if not can_view_trade(trade, user):
            raise PermissionDeniedError("Not authorized to view this trade")
        return trade

    async def _find_existing(self, listing_id: int, buyer_id: int) -> Trade | None:
        result = await self.db.execute(
            trade_query().where(
                Trade.listing_id == listing_id,
                Trade.buyer_id == buyer_id,
            )
        )
        return result.unique().scalar_one_or_none()

    async def list_for_user(self, user: User) -> list[Trade]:
        """Trades the user takes part in as buyer or seller, latest activity first."""
        result = await self.db.execute(
            trade_query()
            .join(Item, Trade.listing_id == Item.id)
            .where(or_(Trade.buyer_id == user.id, Item.seller_id == user.id))
            .order_by(Trade.updated_at.desc(), Trade.id.desc())
        )
        return list(result.unique().scalars().all())

    async def list_pending_supervision(
        self,
        supervisor: User,
        status: TradeStatus | None = None,
    ) -> list[Trade]:
        """
        Trades waiting on a supervisor.

        Trades the caller takes part in are excluded, so nobody is offered
        their own deal to supervise.
        """
        statuses: Iterable[TradeStatus] = (status,) if status else SUPERVISION_STATUSES
        query = (
            select(Trade)
            .join(Item, Trade.listing_id == Item.id)
            .options(
                joinedload(Trade.listing).joinedload(Item.seller),
                joinedload(Trade.buyer),
                joinedload(Trade.supervisor),
                selectinload(Trade.issues),
            )
            .where(
                Trade.status.in_(list(statuses)),
                Trade.buyer_id != supervisor.id,
                Item.seller_id != supervisor.id,
            )
            .order_by(Trade.updated_at.desc(), Trade.id.desc())
        )
        result = await self.db.execute(query)
        return list(result.unique().scalars().all())

    # ------------------------------------------------------------------
    # Transition helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_status(trade: Trade, allowed: Iterable[TradeStatus], action: str) -> None:
        if trade.status not in tuple(allowed):
            raise InvalidStateError(
                f"Cannot {action} while the trade is {trade.status.value}"
            )

    async def _transition(
        self,
        trade_id: int,
        allowed: Iterable[TradeStatus],
        values: dict[str, Any],
        action: str,
        *conditions: Any,
    ) -> None:
        """Apply values only if the row is still in an allowed status."""
        stmt = (
            update(Trade)
            .where(Trade.id == trade_id, Trade.status.in_(list(allowed)), *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise InvalidStateError(f"Cannot {action}: the trade changed in the meantime")

    async def _mark_listing_sold(self, listing_id: int) -> None:
        """Listing becomes SOLD at most once."""
        stmt = (
            update(Item)
            .where(Item.id == listing_id, Item.status != ItemStatus.SOLD)
            .values(status=ItemStatus.SOLD)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise InvalidStateError("This listing has already been sold")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_trade(self, buyer: User, listing_id: int) -> tuple[Trade, bool]:
        """
        Open a trade on a listing, or return the buyer's existing one.

        Returns:
            Tuple of (trade, created)
        """
        listing = await self.db.get(Item, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")

        if listing.seller_id == buyer.id:
            raise PermissionDeniedError("You cannot initiate a trade for your own item")

        existing = await self._find_existing(listing_id, buyer.id)
        if existing is not None:
            return existing, False

        if listing.status in UNAVAILABLE_LISTING_STATUSES:
            raise InvalidStateError(f"Listing is {listing.status.value} and cannot be traded")

        trade = Trade(
            listing_id=listing_id,
            buyer_id=buyer.id,
            status=TradeStatus.NEGOTIATING,
        )
        try:
            async with atomic(self.db):
                self.db.add(trade)
        except IntegrityError:
            # Lost the race against a concurrent request for the same pair
            existing = await self._find_existing(listing_id, buyer.id)
            if existing is None:
                raise
            return existing, False

        logger.info(
            "trade_created",
            trade_id=trade.id,
            listing_id=listing_id,
            buyer_id=buyer.id,
        )
        return await self.get_trade_or_raise(trade.id), True

    async def propose_deal(
        self,
        trade_id: int,
        seller: User,
        money: Optional[Decimal] = None,
        barter: Optional[str] = None,
        commitment: Optional[str] = None,
    ) -> Trade:
        """Seller locks in final terms: NEGOTIATING -> PROPOSED."""
        trade = await self.get_trade_or_raise(trade_id)
        require_seller(trade, seller, "propose the final deal")
        self._require_status(trade, (TradeStatus.NEGOTIATING,), "propose a deal")

        async with atomic(self.db):
            await self._transition(
                trade_id,
                (TradeStatus.NEGOTIATING,),
                {
                    "status": TradeStatus.PROPOSED,
                    "money_proposal": money,
                    "barter_proposal": barter,
                    "commitment_proposal": commitment,
                    "proposer_id": seller.id,
                },
                "propose a deal",
            )

        logger.info(
            "trade_deal_proposed",
            trade_id=trade_id,
            seller_id=seller.id,
            money=str(money) if money is not None else None,
        )
        return await self.get_trade_or_raise(trade_id)

    async def accept_deal(self, trade_id: int, buyer: User) -> Trade:
        """
        Buyer accepts: PROPOSED -> ACCEPTED and the listing becomes SOLD.

        Both writes share one transaction; if either fails neither persists.
        """
        trade = await self.get_trade_or_raise(trade_id)
        require_buyer(trade, buyer, "accept the final deal")
        if trade.status != TradeStatus.PROPOSED:
            raise InvalidStateError("No deal has been proposed yet")

        async with atomic(self.db):
            await self._transition(
                trade_id,
                (TradeStatus.PROPOSED,),
                {"status": TradeStatus.ACCEPTED},
                "accept the deal",
            )
            await self._mark_listing_sold(trade.listing_id)

        logger.info(
            "trade_deal_accepted",
            trade_id=trade_id,
            buyer_id=buyer.id,
            listing_id=trade.listing_id,
        )
        return await self.get_trade_or_raise(trade_id)

    async def decline_deal(self, trade_id: int, buyer: User) -> Trade:
        """Buyer declines: PROPOSED -> NEGOTIATING with the terms cleared."""
        trade = await self.get_trade_or_raise(trade_id)
        require_buyer(trade, buyer, "decline the final deal")
        if trade.status != TradeStatus.PROPOSED:
            raise InvalidStateError("No proposal to decline")

        async with atomic(self.db):
            await self._transition(
                trade_id,
                (TradeStatus.PROPOSED,),
                {
                    "status": TradeStatus.NEGOTIATING,
                    "money_proposal": None,
                    "barter_proposal": None,
                    "commitment_proposal": None,
                    "proposer_id": None,
                },
                "decline the deal",
            )

        logger.info("trade_deal_declined", trade_id=trade_id, buyer_id=buyer.id)
        return await self.get_trade_or_raise(trade_id)

    async def schedule_trade(
        self,
        trade_id: int,
        supervisor: User,
        location: str,
        scheduled_at: datetime,
        supervisor_note: Optional[str] = None,
    ) -> Trade:
        """
        Supervisor sets the meeting: ACCEPTED -> SCHEDULED.

        The supervisor already bound to a scheduled trade may reschedule it.
        """
        trade = await self.get_trade_or_raise(trade_id)
        require_independent_supervisor(trade, supervisor)

        conditions = []
        if trade.status == TradeStatus.SCHEDULED:
            if trade.supervisor_id != supervisor.id:
                raise PermissionDeniedError("This trade is already supervised by another member")
            allowed = (TradeStatus.SCHEDULED,)
            conditions.append(Trade.supervisor_id == supervisor.id)
        else:
            self._require_status(trade, (TradeStatus.ACCEPTED,), "schedule the trade")
            allowed = (TradeStatus.ACCEPTED,)

        async with atomic(self.db):
            await self._transition(
                trade_id,
                allowed,
                {
                    "status": TradeStatus.SCHEDULED,
                    "location": location,
                    "scheduled_at": scheduled_at,
                    "supervisor_note": supervisor_note,
                    "supervisor_id": supervisor.id,
                },
                "schedule the trade",
                *conditions,
            )

        logger.info(
            "trade_scheduled",
            trade_id=trade_id,
            supervisor_id=supervisor.id,
            location=location,
            scheduled_at=scheduled_at.isoformat(),
        )
        return await self.get_trade_or_raise(trade_id)

    async def mark_deal_done(self, trade_id: int, supervisor: User) -> Trade:
        """Supervisor confirms the exchange took place. Status is unchanged."""
        trade = await self.get_trade_or_raise(trade_id)
        require_independent_supervisor(trade, supervisor)
        require_assigned_supervisor(trade.supervisor_id, supervisor)
        self._require_status(trade, FINISHABLE_STATUSES, "confirm the deal")

        async with atomic(self.db):
            await self._transition(
                trade_id,
                FINISHABLE_STATUSES,
                {"supervisor_confirmed": True},
                "confirm the deal",
            )

        logger.info("trade_supervisor_confirmed", trade_id=trade_id, supervisor_id=supervisor.id)
        return await self.get_trade_or_raise(trade_id)

    async def finish_trade(self, trade_id: int, participant: User) -> tuple[Trade, bool]:
        """
        A participant confirms the physical exchange.

        Sets the caller's finished flag; once both flags are set the trade
        becomes COMPLETED in the same transaction. Repeated calls, and calls
        on a completed trade, change nothing.

        Returns:
            Tuple of (trade, changed)
        """
        trade = await self.get_trade_or_raise(trade_id)
        side = require_participant(trade, participant)

        if trade.status == TradeStatus.COMPLETED:
            return trade, False

        self._require_status(trade, FINISHABLE_STATUSES, "finish the trade")
        if trade.active_issue is not None:
            raise InvalidStateError("An issue is under review; it must be resolved first")
        if settings.require_supervisor_confirmation and not trade.supervisor_confirmed:
            raise InvalidStateError("The supervisor has not confirmed the exchange yet")

        flag = Trade.buyer_finished if side == TradeSide.BUYER else Trade.seller_finished
        if getattr(trade, flag.key):
            return trade, False

        async with atomic(self.db):
            await self._transition(
                trade_id,
                FINISHABLE_STATUSES,
                {flag.key: True},
                "finish the trade",
            )
            completed = await self._complete_if_both_finished(trade_id)

        logger.info(
            "trade_party_finished",
            trade_id=trade_id,
            user_id=participant.id,
            side=side.value,
        )
        if completed:
            logger.info("trade_completed", trade_id=trade_id)
        return await self.get_trade_or_raise(trade_id), True

    async def _complete_if_both_finished(self, trade_id: int) -> bool:
        """
        Move to COMPLETED when both flags are set.

        Re-reading both flags inside the UPDATE makes the completion fire
        exactly once even when buyer and seller finish concurrently.
        """
        stmt = (
            update(Trade)
            .where(
                Trade.id == trade_id,
                Trade.status.in_(list(FINISHABLE_STATUSES)),
                Trade.buyer_finished.is_(True),
                Trade.seller_finished.is_(True),
            )
            .values(status=TradeStatus.COMPLETED, completed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0
