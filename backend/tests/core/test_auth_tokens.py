"""
Tests for bearer token helpers.
"""
from datetime import timedelta

import pytest

from srm_swap.services.auth import create_access_token, decode_access_token, resolve_token_user


def test_token_round_trip():
    payload = decode_access_token(create_access_token(42))
    assert payload is not None
    assert payload.sub == "42"
    assert payload.type == "access"


def test_expired_token_rejected():
    token = create_access_token(42, expires_delta=timedelta(seconds=-1))
    assert decode_access_token(token) is None


def test_garbage_token_rejected():
    assert decode_access_token("not-a-jwt") is None


@pytest.mark.asyncio
async def test_resolve_token_user(session_factory, db_session, buyer):
    async with session_factory() as db:
        user = await resolve_token_user(db, create_access_token(buyer.id))
    assert user is not None and user.id == buyer.id

    buyer.is_active = False
    await db_session.commit()

    async with session_factory() as db:
        assert await resolve_token_user(db, create_access_token(buyer.id)) is None
