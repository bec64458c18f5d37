"""
Chat message model.

Messages are append-only and scoped to one trade; the id order is the
order in which they were stored and broadcast.
"""
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from srm_swap.db.base import Base

if TYPE_CHECKING:
    from srm_swap.models.trade import Trade
    from srm_swap.models.user import User


class Message(Base):
    """A chat entry in a trade room."""

    __tablename__ = "messages"

    trade_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trades.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    trade: Mapped["Trade"] = relationship("Trade", back_populates="messages")
    sender: Mapped["User"] = relationship("User", lazy="joined")

    def __repr__(self) -> str:
        return f"<Message id={self.id} trade={self.trade_id} sender={self.sender_id}>"
