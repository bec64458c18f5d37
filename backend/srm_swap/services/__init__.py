"""
Business services for the trade engine.
"""
from srm_swap.services.chat import ChatService
from srm_swap.services.issues import IssueService
from srm_swap.services.items import ItemService
from srm_swap.services.ratings import RatingService
from srm_swap.services.trades import TradeService

__all__ = [
    "ChatService",
    "IssueService",
    "ItemService",
    "RatingService",
    "TradeService",
]
