"""
Dispute model.

An issue is opened by a trade participant after scheduling and moves
OPEN -> PENDING (claimed by a supervisor) -> RESOLVED, never backwards.
"""
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from srm_swap.db.base import Base

if TYPE_CHECKING:
    from srm_swap.models.trade import Trade
    from srm_swap.models.user import User


class IssueStatus(str, Enum):
    """Status of a dispute."""
    OPEN = "OPEN"            # Reported, not yet claimed
    PENDING = "PENDING"      # Claimed by a supervisor
    RESOLVED = "RESOLVED"    # Closed by the supervisor


class Issue(Base):
    """A dispute raised against a trade."""

    __tablename__ = "issues"

    trade_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trades.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reporter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Inherited from the trade's supervisor, reassigned on claim
    supervisor_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[IssueStatus] = mapped_column(
        SQLEnum(IssueStatus, native_enum=False, length=10),
        default=IssueStatus.OPEN,
        nullable=False,
        index=True,
    )

    buyer_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    seller_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    trade: Mapped["Trade"] = relationship("Trade", back_populates="issues")
    reporter: Mapped["User"] = relationship("User", foreign_keys=[reporter_id], lazy="joined")
    supervisor: Mapped[Optional["User"]] = relationship(
        "User",
        foreign_keys=[supervisor_id],
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<Issue id={self.id} trade={self.trade_id} status={self.status}>"
