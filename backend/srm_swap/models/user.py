"""
User model.

Credentials and token issuance live in the external auth service; this row
carries the identity, role and trust score the trade engine relies on.
"""
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from srm_swap.core.roles import Role
from srm_swap.db.base import Base

if TYPE_CHECKING:
    from srm_swap.models.item import Item


class User(Base):
    """A student, supervising member or admin."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )
    full_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    role: Mapped[Role] = mapped_column(
        SQLEnum(Role, native_enum=False, length=20),
        default=Role.STUDENT,
        nullable=False,
    )

    # Reputation: incremented by ratings received after completed trades
    trust_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    listings: Mapped[list["Item"]] = relationship(
        "Item",
        back_populates="seller",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
