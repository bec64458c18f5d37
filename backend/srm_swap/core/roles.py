"""
Roles and capability guards.

Every trade operation checks the caller through one of the guards below
instead of comparing role strings inline. Guards raise PermissionDeniedError.
"""
from enum import Enum
from typing import TYPE_CHECKING, Optional

from srm_swap.core.exceptions import PermissionDeniedError

if TYPE_CHECKING:
    from srm_swap.models.trade import Trade
    from srm_swap.models.user import User


class Role(str, Enum):
    """Marketplace role of a user."""
    STUDENT = "STUDENT"  # Lists items and trades
    MEMBER = "MEMBER"    # Supervises in-person exchanges
    ADMIN = "ADMIN"      # Moderation; passes every supervisor check


class TradeSide(str, Enum):
    """Which participant of a trade a user is."""
    BUYER = "BUYER"
    SELLER = "SELLER"


def can_supervise(user: "User") -> bool:
    """Members and admins may supervise trades."""
    return user.role in (Role.MEMBER, Role.ADMIN)


def is_admin(user: "User") -> bool:
    return user.role == Role.ADMIN


def participant_side(trade: "Trade", user_id: int) -> Optional[TradeSide]:
    """Return the side the user plays in the trade, or None for outsiders."""
    if trade.buyer_id == user_id:
        return TradeSide.BUYER
    if trade.listing.seller_id == user_id:
        return TradeSide.SELLER
    return None


def is_participant(trade: "Trade", user_id: int) -> bool:
    return participant_side(trade, user_id) is not None


def require_seller(trade: "Trade", user: "User", action: str) -> None:
    if trade.listing.seller_id != user.id:
        raise PermissionDeniedError(f"Only the seller can {action}")


def require_buyer(trade: "Trade", user: "User", action: str) -> None:
    if trade.buyer_id != user.id:
        raise PermissionDeniedError(f"Only the buyer can {action}")


def require_participant(trade: "Trade", user: "User") -> TradeSide:
    side = participant_side(trade, user.id)
    if side is None:
        raise PermissionDeniedError("You are not a participant in this trade")
    return side


def require_independent_supervisor(trade: "Trade", user: "User") -> None:
    """
    Caller must hold a supervisor role and must not be buyer or seller.

    Self-supervision is rejected even for admins.
    """
    if not can_supervise(user):
        raise PermissionDeniedError("Only members can supervise trades")
    if is_participant(trade, user.id):
        raise PermissionDeniedError("You cannot supervise your own trade")


def require_assigned_supervisor(
    assigned_supervisor_id: Optional[int],
    user: "User",
) -> None:
    """Caller must be the supervisor bound to the record, or an admin."""
    if not can_supervise(user):
        raise PermissionDeniedError("Only members can supervise trades")
    if is_admin(user):
        return
    if assigned_supervisor_id != user.id:
        raise PermissionDeniedError("You are not the supervisor assigned to this record")


def can_view_trade(trade: "Trade", user: "User") -> bool:
    """Participants, the assigned supervisor and any supervisor may view."""
    return (
        is_participant(trade, user.id)
        or trade.supervisor_id == user.id
        or can_supervise(user)
    )
