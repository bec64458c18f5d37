"""
Trade model for the buyer/seller negotiation lifecycle.

A trade tracks one buyer's deal on one listing from free-form negotiation
through the seller's proposal, supervised in-person exchange and completion:

    NEGOTIATING -> PROPOSED -> ACCEPTED -> SCHEDULED -> COMPLETED
         ^____________|                       |
                                              v
                                        UNDER_REVIEW -> COMPLETED

Declining a proposal is the only backward move; a reported issue suspends
completion until the dispute is resolved.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from srm_swap.db.base import Base

if TYPE_CHECKING:
    from srm_swap.models.issue import Issue
    from srm_swap.models.item import Item
    from srm_swap.models.message import Message
    from srm_swap.models.user import User


class TradeStatus(str, Enum):
    """Status of a trade."""
    NEGOTIATING = "NEGOTIATING"    # Chat only, no terms on the table
    PROPOSED = "PROPOSED"          # Seller locked in final terms
    ACCEPTED = "ACCEPTED"          # Buyer accepted; listing is SOLD
    SCHEDULED = "SCHEDULED"        # Supervisor set meeting time and place
    UNDER_REVIEW = "UNDER_REVIEW"  # A party reported an issue
    COMPLETED = "COMPLETED"        # Both parties confirmed the exchange


class Trade(Base):
    """
    A deal between a listing's seller and one buyer.

    The seller is derived from the listing; there is at most one trade per
    (listing, buyer) pair.
    """

    __tablename__ = "trades"
    __table_args__ = (
        UniqueConstraint("listing_id", "buyer_id", name="uq_trades_listing_buyer"),
    )

    # Parties
    listing_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    buyer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[TradeStatus] = mapped_column(
        SQLEnum(TradeStatus, native_enum=False, length=20),
        default=TradeStatus.NEGOTIATING,
        nullable=False,
        index=True,
    )

    # Proposal terms (set by the seller, cleared on decline)
    money_proposal: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    barter_proposal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    commitment_proposal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proposer_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Scheduling
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    supervisor_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    supervisor_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supervisor_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Completion tracking
    buyer_finished: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    seller_finished: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    listing: Mapped["Item"] = relationship("Item", lazy="joined")
    buyer: Mapped["User"] = relationship("User", foreign_keys=[buyer_id], lazy="joined")
    supervisor: Mapped[Optional["User"]] = relationship(
        "User",
        foreign_keys=[supervisor_id],
        lazy="joined",
    )
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="trade",
        order_by="Message.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    issues: Mapped[list["Issue"]] = relationship(
        "Issue",
        back_populates="trade",
        order_by="Issue.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Trade id={self.id} listing={self.listing_id} buyer={self.buyer_id} status={self.status}>"

    @property
    def seller_id(self) -> int:
        return self.listing.seller_id

    @property
    def active_issue(self) -> Optional["Issue"]:
        """The live dispute record, if any."""
        from srm_swap.models.issue import IssueStatus

        for issue in reversed(self.issues):
            if issue.status != IssueStatus.RESOLVED:
                return issue
        return None

    @property
    def buyer_done(self) -> bool:
        """
        Buyer completion as exposed to clients.

        While a dispute is live the issue's resolution flag is the source of
        truth; the stored flag is only written when the dispute closes.
        """
        issue = self.active_issue
        if issue is not None:
            return issue.buyer_resolved
        return self.buyer_finished

    @property
    def seller_done(self) -> bool:
        """Seller counterpart of buyer_done."""
        issue = self.active_issue
        if issue is not None:
            return issue.seller_resolved
        return self.seller_finished
