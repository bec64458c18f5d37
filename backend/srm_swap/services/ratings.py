"""
Rating service for post-trade reviews and trust scores.

Handles:
- Reviews between the two parties of a completed trade
- Trust score updates for the reviewed user
- Review listings per user
"""
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from srm_swap.core.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError
from srm_swap.core.roles import participant_side, require_participant
from srm_swap.db.transaction import atomic
from srm_swap.models.rating import Rating
from srm_swap.models.trade import Trade, TradeStatus
from srm_swap.models.user import User
from srm_swap.schemas.rating import RatingCreate

logger = get_logger()


class RatingService:
    """Service for managing ratings and trust scores."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_existing(self, trade_id: int, reviewer_id: int) -> Rating | None:
        result = await self.db.execute(
            select(Rating).where(
                Rating.trade_id == trade_id,
                Rating.reviewer_id == reviewer_id,
            )
        )
        return result.scalar_one_or_none()

    async def submit_rating(self, reviewer: User, data: RatingCreate) -> Rating:
        """
        Rate the other party of a completed trade.

        The reviewee's trust score grows by the rounded mean of the three
        scores. Each participant rates a trade once.

        Raises:
            NotFoundError: Trade does not exist
            PermissionDeniedError: Reviewer is not a participant or rates the wrong user
            InvalidStateError: Trade is not completed, or was already rated
        """
        trade = await self.db.get(Trade, data.trade_id)
        if trade is None:
            raise NotFoundError("Trade not found")

        require_participant(trade, reviewer)
        if data.reviewee_id == reviewer.id:
            raise PermissionDeniedError("Cannot review yourself")
        if participant_side(trade, data.reviewee_id) is None:
            raise PermissionDeniedError("You can only rate the other party of this trade")
        if trade.status != TradeStatus.COMPLETED:
            raise InvalidStateError("Only completed trades can be rated")
        if await self._get_existing(trade.id, reviewer.id) is not None:
            raise InvalidStateError("You have already rated this trade")

        rating = Rating(
            trade_id=trade.id,
            reviewer_id=reviewer.id,
            reviewee_id=data.reviewee_id,
            accuracy=data.accuracy,
            honesty=data.honesty,
            experience=data.experience,
            comment=data.comment,
        )
        try:
            async with atomic(self.db):
                self.db.add(rating)
                await self.db.flush()
                await self.db.execute(
                    update(User)
                    .where(User.id == data.reviewee_id)
                    .values(trust_score=User.trust_score + rating.points)
                    .execution_options(synchronize_session=False)
                )
        except IntegrityError as e:
            raise InvalidStateError("You have already rated this trade") from e

        logger.info(
            "rating_submitted",
            trade_id=trade.id,
            reviewer_id=reviewer.id,
            reviewee_id=data.reviewee_id,
            points=rating.points,
        )
        result = await self.db.execute(
            select(Rating)
            .where(Rating.id == rating.id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one()

    async def get_ratings_for_user(
        self,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Rating], int]:
        """
        Get ratings received by a user.

        Returns:
            Tuple of (ratings, total_count)
        """
        count_query = select(func.count()).where(Rating.reviewee_id == user_id)
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            select(Rating)
            .where(Rating.reviewee_id == user_id)
            .order_by(Rating.created_at.desc(), Rating.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        return list(result.unique().scalars().all()), total
