"""
Listing schemas.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from srm_swap.models.item import ItemStatus, ListingType, MarketplaceSegment
from srm_swap.schemas.common import UserBrief, build_user_brief


class ItemCreate(BaseModel):
    """Request to create a listing."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    category: str = Field(..., min_length=1, max_length=60)
    tags: list[str] = Field(default_factory=list)
    listing_type: ListingType
    price: Optional[Decimal] = None
    images: list[str] = Field(default_factory=list)
    marketplace: MarketplaceSegment = MarketplaceSegment.NORMAL
    allow_hybrid: bool = False

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v: Any) -> Optional[Decimal]:
        """Unparseable or blank prices are stored as no price."""
        if v is None or v == "":
            return None
        try:
            price = Decimal(str(v))
        except InvalidOperation:
            return None
        if not price.is_finite() or price < 0:
            return None
        return price


class ItemModerationRequest(BaseModel):
    """Admin moderation decision."""
    status: ItemStatus


class ItemResponse(BaseModel):
    """Listing response."""
    id: int
    seller: UserBrief
    title: str
    description: Optional[str] = None
    category: str
    tags: list[str]
    listing_type: str
    price: Optional[Decimal] = None
    images: list[str]
    marketplace: str
    allow_hybrid: bool
    status: str
    created_at: datetime
    updated_at: datetime


def build_item_response(item) -> ItemResponse:
    return ItemResponse(
        id=item.id,
        seller=build_user_brief(item.seller),
        title=item.title,
        description=item.description,
        category=item.category,
        tags=list(item.tags or []),
        listing_type=item.listing_type.value,
        price=item.price,
        images=list(item.images or []),
        marketplace=item.marketplace.value,
        allow_hybrid=item.allow_hybrid,
        status=item.status.value,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )
