"""
Tests for role and relationship guards.
"""
from types import SimpleNamespace

import pytest

from srm_swap.core.exceptions import PermissionDeniedError
from srm_swap.core.roles import (
    Role,
    TradeSide,
    can_supervise,
    can_view_trade,
    participant_side,
    require_assigned_supervisor,
    require_buyer,
    require_independent_supervisor,
    require_participant,
    require_seller,
)


def _user(user_id: int, role: Role = Role.STUDENT):
    return SimpleNamespace(id=user_id, role=role)


@pytest.fixture
def trade():
    return SimpleNamespace(
        buyer_id=2,
        listing=SimpleNamespace(seller_id=1),
        supervisor_id=3,
    )


def test_supervisor_roles():
    assert can_supervise(_user(1, Role.MEMBER))
    assert can_supervise(_user(1, Role.ADMIN))
    assert not can_supervise(_user(1, Role.STUDENT))


def test_participant_side(trade):
    assert participant_side(trade, 1) == TradeSide.SELLER
    assert participant_side(trade, 2) == TradeSide.BUYER
    assert participant_side(trade, 3) is None


def test_seller_and_buyer_guards(trade):
    require_seller(trade, _user(1), "propose")
    require_buyer(trade, _user(2), "accept")

    with pytest.raises(PermissionDeniedError, match="Only the seller can propose"):
        require_seller(trade, _user(2), "propose")
    with pytest.raises(PermissionDeniedError, match="Only the buyer can accept"):
        require_buyer(trade, _user(1), "accept")


def test_require_participant(trade):
    assert require_participant(trade, _user(2)) == TradeSide.BUYER
    with pytest.raises(PermissionDeniedError):
        require_participant(trade, _user(3, Role.MEMBER))


def test_independent_supervisor(trade):
    require_independent_supervisor(trade, _user(9, Role.MEMBER))

    with pytest.raises(PermissionDeniedError):
        require_independent_supervisor(trade, _user(9, Role.STUDENT))
    with pytest.raises(PermissionDeniedError):
        require_independent_supervisor(trade, _user(1, Role.ADMIN))


def test_assigned_supervisor(trade):
    require_assigned_supervisor(3, _user(3, Role.MEMBER))
    require_assigned_supervisor(3, _user(8, Role.ADMIN))
    require_assigned_supervisor(None, _user(8, Role.ADMIN))

    with pytest.raises(PermissionDeniedError):
        require_assigned_supervisor(3, _user(4, Role.MEMBER))
    with pytest.raises(PermissionDeniedError):
        require_assigned_supervisor(None, _user(4, Role.MEMBER))


def test_can_view_trade(trade):
    assert can_view_trade(trade, _user(1))
    assert can_view_trade(trade, _user(3, Role.MEMBER))
    assert can_view_trade(trade, _user(5, Role.MEMBER))
    assert not can_view_trade(trade, _user(5))
