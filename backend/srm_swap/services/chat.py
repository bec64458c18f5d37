"""
Trade chat persistence.

Messages are written before they are relayed, so the history returned by a
trade snapshot is never behind what room members have seen.
"""
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from structlog import get_logger

from srm_swap.core.config import settings
from srm_swap.core.exceptions import PermissionDeniedError, TradeError
from srm_swap.core.roles import is_participant
from srm_swap.db.transaction import atomic
from srm_swap.models.message import Message
from srm_swap.models.trade import Trade
from srm_swap.models.user import User
from srm_swap.services.trades import TradeService

logger = get_logger()


def can_chat(trade: Trade, user: User) -> bool:
    """Buyer, seller and the assigned supervisor may post in a trade room."""
    return is_participant(trade, user.id) or (
        trade.supervisor_id is not None and trade.supervisor_id == user.id
    )


class ChatService:
    """Service for trade room messages."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.trades = TradeService(db)

    @staticmethod
    def clean_content(content: Any) -> str:
        if content is not None and not isinstance(content, str):
            raise TradeError("Message content must be text")
        text = (content or "").strip()
        if not text:
            raise TradeError("Message cannot be empty")
        if len(text) > settings.message_max_length:
            raise TradeError(
                f"Message exceeds {settings.message_max_length} characters"
            )
        return text

    async def send_message(self, trade_id: int, sender: User, content: Any) -> Message:
        """Persist a chat message from a trade participant."""
        text = self.clean_content(content)
        trade = await self.trades.get_trade_or_raise(trade_id)
        if not can_chat(trade, sender):
            raise PermissionDeniedError("You are not a member of this trade room")

        message = Message(trade_id=trade_id, sender_id=sender.id, content=text)
        async with atomic(self.db):
            self.db.add(message)

        logger.debug(
            "trade_message_sent",
            trade_id=trade_id,
            message_id=message.id,
            sender_id=sender.id,
        )
        result = await self.db.execute(
            select(Message)
            .options(joinedload(Message.sender))
            .where(Message.id == message.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
