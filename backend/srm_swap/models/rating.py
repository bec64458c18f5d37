"""
Post-trade rating model.
"""
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from srm_swap.db.base import Base

if TYPE_CHECKING:
    from srm_swap.models.user import User


class Rating(Base):
    """
    One participant's review of the other after a completed trade.

    Each dimension is scored 1-5; a reviewer rates a given trade once.
    """

    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("trade_id", "reviewer_id", name="uq_ratings_trade_reviewer"),
        CheckConstraint("accuracy BETWEEN 1 AND 5", name="ck_ratings_accuracy"),
        CheckConstraint("honesty BETWEEN 1 AND 5", name="ck_ratings_honesty"),
        CheckConstraint("experience BETWEEN 1 AND 5", name="ck_ratings_experience"),
    )

    trade_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trades.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reviewer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewee_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    accuracy: Mapped[int] = mapped_column(Integer, nullable=False)
    honesty: Mapped[int] = mapped_column(Integer, nullable=False)
    experience: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reviewer: Mapped["User"] = relationship("User", foreign_keys=[reviewer_id], lazy="joined")

    def __repr__(self) -> str:
        return f"<Rating trade={self.trade_id} {self.reviewer_id}->{self.reviewee_id}>"

    @property
    def points(self) -> int:
        """Trust score contribution: rounded mean of the three dimensions."""
        return round((self.accuracy + self.honesty + self.experience) / 3)
