"""
SQLAlchemy models for the SRM Swap application.
"""
from srm_swap.models.user import User
from srm_swap.models.item import Item, ItemStatus, ListingType, MarketplaceSegment
from srm_swap.models.trade import Trade, TradeStatus
from srm_swap.models.message import Message
from srm_swap.models.issue import Issue, IssueStatus
from srm_swap.models.rating import Rating

__all__ = [
    "User",
    "Item",
    "ItemStatus",
    "ListingType",
    "MarketplaceSegment",
    "Trade",
    "TradeStatus",
    "Message",
    "Issue",
    "IssueStatus",
    "Rating",
]
