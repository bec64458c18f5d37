"""
Pytest configuration and fixtures.

Provides fixtures for:
- In-memory SQLite database shared by every session of a test
- HTTP client whose requests each get their own session, as in production
- Users for every role with auth headers
- A verified listing and trades in each lifecycle state
- Fake WebSocket connections that record the frames they receive
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REALTIME_REDIS_ENABLED", "false")
os.environ.setdefault("API_DEBUG", "false")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from srm_swap.api.routes.websocket import manager
from srm_swap.core.roles import Role
from srm_swap.db.base import Base
from srm_swap.db.session import get_db
from srm_swap.main import app
from srm_swap.models import (
    Issue,
    IssueStatus,
    Item,
    ItemStatus,
    ListingType,
    Trade,
    TradeStatus,
    User,
)
from srm_swap.services.auth import create_access_token

# Use SQLite for testing; StaticPool keeps one in-memory database per engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session used by fixtures to seed data."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client against the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# -----------------------------------------------------------------------------
# Real-time fixtures
# -----------------------------------------------------------------------------

class FakeWebSocket:
    """Stands in for a Starlette WebSocket and records sent frames."""

    def __init__(self, name: str = "ws", fail: bool = False):
        self.name = name
        self.fail = fail
        self.accepted = False
        self.frames: list[dict[str, Any]] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.frames.append(data)

    def of_type(self, event: str) -> list[dict[str, Any]]:
        return [f for f in self.frames if f["type"] == event]

    def __repr__(self) -> str:
        return f"<FakeWebSocket {self.name}>"


@pytest_asyncio.fixture
async def realtime():
    """The global connection manager, emptied after the test."""
    yield manager
    manager.rooms.clear()
    manager.memberships.clear()
    manager.authenticated.clear()
    manager._room_locks.clear()
    manager._room_lock_users.clear()


@pytest.fixture
def make_socket() -> Callable[..., FakeWebSocket]:
    return FakeWebSocket


@pytest_asyncio.fixture
async def room_listener(realtime) -> Callable[[int], Any]:
    """Join a recording socket to a trade room."""

    async def listen(trade_id: int, user: User | None = None) -> FakeWebSocket:
        socket = FakeWebSocket(f"listener-{trade_id}")
        await realtime.connect(socket, user)
        await realtime.join(socket, f"trade:{trade_id}")
        return socket

    return listen


# -----------------------------------------------------------------------------
# User Fixtures
# -----------------------------------------------------------------------------

async def _create_user(db: AsyncSession, email: str, name: str, role: Role) -> User:
    user = User(email=email, full_name=name, role=role, is_active=True)
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def seller(db_session) -> User:
    return await _create_user(db_session, "seller@srmist.edu.in", "Sana Seller", Role.STUDENT)


@pytest_asyncio.fixture
async def buyer(db_session) -> User:
    return await _create_user(db_session, "buyer@srmist.edu.in", "Bala Buyer", Role.STUDENT)


@pytest_asyncio.fixture
async def supervisor(db_session) -> User:
    return await _create_user(db_session, "member@srmist.edu.in", "Meera Member", Role.MEMBER)


@pytest_asyncio.fixture
async def supervisor_2(db_session) -> User:
    return await _create_user(db_session, "member2@srmist.edu.in", "Mohan Member", Role.MEMBER)


@pytest_asyncio.fixture
async def admin(db_session) -> User:
    return await _create_user(db_session, "admin@srmist.edu.in", "Asha Admin", Role.ADMIN)


@pytest_asyncio.fixture
async def outsider(db_session) -> User:
    return await _create_user(db_session, "other@srmist.edu.in", "Omar Other", Role.STUDENT)


@pytest.fixture
def headers_for() -> Callable[[User], dict]:
    """Build auth headers for a user."""

    def build(user: User) -> dict:
        token = create_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return build


# -----------------------------------------------------------------------------
# Listing and trade fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture
async def listing(db_session, seller) -> Item:
    """A verified listing owned by the seller."""
    item = Item(
        seller_id=seller.id,
        title="Engineering Graphics drafter",
        description="Mini drafter, barely used",
        category="Stationery",
        tags=["drafter", "first-year"],
        listing_type=ListingType.SELL,
        price=Decimal("450.00"),
        images=[],
        status=ItemStatus.VERIFIED,
    )
    db_session.add(item)
    await db_session.commit()
    return item


async def _create_trade(db: AsyncSession, listing: Item, buyer: User, **fields) -> Trade:
    trade = Trade(listing_id=listing.id, buyer_id=buyer.id, **fields)
    db.add(trade)
    await db.commit()
    return trade


@pytest_asyncio.fixture
async def negotiating_trade(db_session, listing, buyer) -> Trade:
    return await _create_trade(db_session, listing, buyer, status=TradeStatus.NEGOTIATING)


@pytest_asyncio.fixture
async def proposed_trade(db_session, listing, buyer, seller) -> Trade:
    return await _create_trade(
        db_session,
        listing,
        buyer,
        status=TradeStatus.PROPOSED,
        money_proposal=Decimal("400.00"),
        proposer_id=seller.id,
    )


@pytest_asyncio.fixture
async def accepted_trade(db_session, listing, buyer, seller) -> Trade:
    listing.status = ItemStatus.SOLD
    return await _create_trade(
        db_session,
        listing,
        buyer,
        status=TradeStatus.ACCEPTED,
        money_proposal=Decimal("400.00"),
        proposer_id=seller.id,
    )


@pytest_asyncio.fixture
async def scheduled_trade(db_session, listing, buyer, seller, supervisor) -> Trade:
    listing.status = ItemStatus.SOLD
    return await _create_trade(
        db_session,
        listing,
        buyer,
        status=TradeStatus.SCHEDULED,
        money_proposal=Decimal("400.00"),
        proposer_id=seller.id,
        location="Tech Park lobby",
        scheduled_at=datetime.now(timezone.utc) + timedelta(days=1),
        supervisor_id=supervisor.id,
    )


@pytest_asyncio.fixture
async def confirmed_trade(db_session, scheduled_trade) -> Trade:
    """Scheduled trade whose supervisor already marked the deal done."""
    scheduled_trade.supervisor_confirmed = True
    await db_session.commit()
    return scheduled_trade


@pytest_asyncio.fixture
async def open_issue(db_session, scheduled_trade, buyer, supervisor) -> Issue:
    """Issue reported by the buyer; the trade is under review."""
    scheduled_trade.status = TradeStatus.UNDER_REVIEW
    issue = Issue(
        trade_id=scheduled_trade.id,
        reporter_id=buyer.id,
        supervisor_id=supervisor.id,
        description="Seller brought a different model",
        status=IssueStatus.OPEN,
    )
    db_session.add(issue)
    await db_session.commit()
    return issue
