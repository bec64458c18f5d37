"""
Listing service.

Sellers create listings, which start PENDING in the normal marketplace
unless stated otherwise. Members and admins moderate them from the pending
queue, verifying or removing each one. A
listing is marked SOLD only by an accepted trade, never by moderation.
"""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from srm_swap.core.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError
from srm_swap.core.roles import can_supervise
from srm_swap.db.transaction import atomic
from srm_swap.models.item import Item, ItemStatus
from srm_swap.models.user import User
from srm_swap.schemas.item import ItemCreate

logger = get_logger()

# Moderation transitions members and admins may apply
MODERATION_TRANSITIONS: dict[ItemStatus, tuple[ItemStatus, ...]] = {
    ItemStatus.PENDING: (ItemStatus.VERIFIED, ItemStatus.REMOVED),
    ItemStatus.VERIFIED: (ItemStatus.REMOVED,),
}


class ItemService:
    """Service for marketplace listings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_item(self, item_id: int) -> Optional[Item]:
        result = await self.db.execute(
            select(Item)
            .where(Item.id == item_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    async def get_item_or_raise(self, item_id: int) -> Item:
        item = await self.get_item(item_id)
        if item is None:
            raise NotFoundError("Listing not found")
        return item

    async def list_items(
        self,
        status: ItemStatus | None = ItemStatus.VERIFIED,
        category: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Item]:
        query = select(Item)
        if status is not None:
            query = query.where(Item.status == status)
        if category:
            query = query.where(Item.category == category)
        query = query.order_by(Item.created_at.desc(), Item.id.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.unique().scalars().all())

    async def list_pending(self, limit: int = 50, offset: int = 0) -> list[Item]:
        """Moderation queue: listings awaiting review, oldest first."""
        result = await self.db.execute(
            select(Item)
            .where(Item.status == ItemStatus.PENDING)
            .order_by(Item.created_at.asc(), Item.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.unique().scalars().all())

    async def create_item(self, seller: User, data: ItemCreate) -> Item:
        """Create a listing awaiting moderation."""
        item = Item(
            seller_id=seller.id,
            title=data.title,
            description=data.description,
            category=data.category,
            tags=list(data.tags),
            listing_type=data.listing_type,
            price=data.price,
            images=list(data.images),
            marketplace=data.marketplace,
            allow_hybrid=data.allow_hybrid,
            status=ItemStatus.PENDING,
        )
        async with atomic(self.db):
            self.db.add(item)

        logger.info(
            "item_created",
            item_id=item.id,
            seller_id=seller.id,
            listing_type=data.listing_type.value,
        )
        return await self.get_item_or_raise(item.id)

    async def moderate_item(self, item_id: int, moderator: User, status: ItemStatus) -> Item:
        """A member or admin verifies or removes a listing."""
        if not can_supervise(moderator):
            raise PermissionDeniedError("Only members can moderate listings")
        if status == ItemStatus.SOLD:
            raise InvalidStateError("Listings are marked SOLD only by an accepted trade")

        item = await self.get_item_or_raise(item_id)
        current = item.status
        if status not in MODERATION_TRANSITIONS.get(current, ()):
            raise InvalidStateError(
                f"Cannot move a {current.value} listing to {status.value}"
            )

        async with atomic(self.db):
            result = await self.db.execute(
                update(Item)
                .where(Item.id == item_id, Item.status == current)
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InvalidStateError("Cannot moderate: the listing changed in the meantime")

        logger.info(
            "item_moderated",
            item_id=item_id,
            moderator_id=moderator.id,
            from_status=current.value,
            to_status=status.value,
        )
        return await self.get_item_or_raise(item_id)
