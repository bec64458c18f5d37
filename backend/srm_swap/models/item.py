"""
Marketplace listing model.

Status moves PENDING -> VERIFIED/REMOVED through moderation and to SOLD
exactly once, when a trade on the listing is accepted.
"""
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from srm_swap.db.base import Base

if TYPE_CHECKING:
    from srm_swap.models.user import User


class ListingType(str, Enum):
    """How the seller wants to part with the item."""
    SELL = "SELL"
    LEND = "LEND"
    BARTER = "BARTER"


class MarketplaceSegment(str, Enum):
    """Which marketplace the listing appears in."""
    NORMAL = "NORMAL"
    FRESHERS = "FRESHERS"


class ItemStatus(str, Enum):
    """Lifecycle status of a listing."""
    PENDING = "PENDING"      # Awaiting moderation
    VERIFIED = "VERIFIED"    # Approved by moderation
    SOLD = "SOLD"            # A trade on it was accepted
    REMOVED = "REMOVED"      # Taken down by moderation


class Item(Base):
    """A tradeable good listed by a seller."""

    __tablename__ = "items"

    seller_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    listing_type: Mapped[ListingType] = mapped_column(
        SQLEnum(ListingType, native_enum=False, length=10),
        nullable=False,
    )
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    images: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    marketplace: Mapped[MarketplaceSegment] = mapped_column(
        SQLEnum(MarketplaceSegment, native_enum=False, length=10),
        default=MarketplaceSegment.NORMAL,
        nullable=False,
    )
    # Seller accepts part cash + part barter
    allow_hybrid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[ItemStatus] = mapped_column(
        SQLEnum(ItemStatus, native_enum=False, length=10),
        default=ItemStatus.PENDING,
        nullable=False,
        index=True,
    )

    seller: Mapped["User"] = relationship(
        "User",
        back_populates="listings",
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<Item id={self.id} seller={self.seller_id} status={self.status}>"
