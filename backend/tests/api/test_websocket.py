"""
Tests for trade rooms: the connection manager and client frame handling.

Connections are FakeWebSocket objects that record every frame sent to them.
"""
import asyncio
import json
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient
import pytest

from srm_swap.api.routes.websocket import ConnectionManager, dispatch_event, trade_room
from srm_swap.main import app
from srm_swap.services.chat import ChatService


# -----------------------------------------------------------------------------
# ConnectionManager
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_broadcast_to_empty_room_is_noop():
    manager = ConnectionManager()
    sent = await manager.broadcast("trade:404", "trade_status_updated", {"id": 404})
    assert sent == 0


@pytest.mark.asyncio
async def test_broadcast_reaches_only_room_members(make_socket):
    manager = ConnectionManager()
    a, b, c = make_socket("a"), make_socket("b"), make_socket("c")
    for ws in (a, b, c):
        await manager.connect(ws)
    await manager.join(a, "trade:1")
    await manager.join(b, "trade:1")
    await manager.join(c, "trade:2")

    sent = await manager.broadcast("trade:1", "receive_message", {"content": "hi"})

    assert sent == 2
    assert a.frames[0]["type"] == "receive_message"
    assert a.frames[0]["room"] == "trade:1"
    assert a.frames[0]["data"] == {"content": "hi"}
    assert "timestamp" in a.frames[0]
    assert len(b.frames) == 1
    assert c.frames == []


@pytest.mark.asyncio
async def test_disconnect_leaves_every_room(make_socket):
    manager = ConnectionManager()
    ws = make_socket()
    await manager.connect(ws)
    await manager.join(ws, "trade:1")
    await manager.join(ws, "trade:2")

    await manager.disconnect(ws)

    assert "trade:1" not in manager.rooms
    assert "trade:2" not in manager.rooms
    assert ws not in manager.memberships
    assert await manager.broadcast("trade:1", "pong", None) == 0


@pytest.mark.asyncio
async def test_failed_send_drops_connection_only(make_socket):
    manager = ConnectionManager()
    alive, dead = make_socket("alive"), make_socket("dead", fail=True)
    for ws in (alive, dead):
        await manager.connect(ws)
        await manager.join(ws, "trade:7")

    sent = await manager.broadcast("trade:7", "trade_status_updated", {"status": "ACCEPTED"})

    assert sent == 1
    assert len(alive.frames) == 1
    assert manager.members("trade:7") == {alive}
    assert dead not in manager.memberships


@pytest.mark.asyncio
async def test_leave_room(make_socket):
    manager = ConnectionManager()
    ws = make_socket()
    await manager.connect(ws)
    await manager.join(ws, "trade:3")
    await manager.leave(ws, "trade:3")

    assert manager.members("trade:3") == set()
    assert manager.memberships[ws] == set()


@pytest.mark.asyncio
async def test_publish_goes_through_redis_when_enabled(make_socket):
    manager = ConnectionManager()
    ws = make_socket()
    await manager.connect(ws)
    await manager.join(ws, "trade:9")

    redis = AsyncMock()
    manager._redis = redis
    with patch("srm_swap.api.routes.websocket.settings.realtime_redis_enabled", True):
        await manager.publish("trade:9", "issue_updated", {"id": 1})

    redis.publish.assert_awaited_once()
    channel, body = redis.publish.await_args.args
    assert channel == "room:trade:9"
    assert json.loads(body) == {"type": "issue_updated", "data": {"id": 1}}
    # Local delivery happens when the listener receives it back
    assert ws.frames == []


@pytest.mark.asyncio
async def test_sequenced_serializes_one_room(make_socket):
    """Work for one room runs one at a time in arrival order."""
    manager = ConnectionManager()
    order: list[str] = []

    async def job(name: str, delay: float):
        async with manager.sequenced("trade:1"):
            order.append(f"{name}-start")
            await asyncio.sleep(delay)
            order.append(f"{name}-end")

    await asyncio.gather(job("first", 0.02), job("second", 0))

    assert order == ["first-start", "first-end", "second-start", "second-end"]


# -----------------------------------------------------------------------------
# dispatch_event
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ping(realtime, make_socket, session_factory):
    ws = make_socket()
    await realtime.connect(ws)
    await dispatch_event(ws, {"action": "ping"}, session_factory)
    assert ws.frames[-1]["type"] == "pong"


@pytest.mark.asyncio
async def test_unknown_action(realtime, make_socket, session_factory):
    ws = make_socket()
    await realtime.connect(ws)
    await dispatch_event(ws, {"action": "subscribe"}, session_factory)
    assert ws.frames[-1]["type"] == "error"
    assert "Unknown action" in ws.frames[-1]["data"]["detail"]


@pytest.mark.asyncio
async def test_join_requires_authentication(realtime, make_socket, session_factory, negotiating_trade):
    ws = make_socket()
    await realtime.connect(ws)
    await dispatch_event(ws, {"action": "join_trade", "trade_id": negotiating_trade.id}, session_factory)

    assert ws.frames[-1]["type"] == "error"
    assert realtime.members(trade_room(negotiating_trade.id)) == set()


@pytest.mark.asyncio
async def test_join_unknown_trade(realtime, make_socket, session_factory, buyer):
    ws = make_socket()
    await realtime.connect(ws, buyer)
    await dispatch_event(ws, {"action": "join_trade", "trade_id": 999}, session_factory)

    assert ws.frames[-1]["type"] == "error"
    assert ws.frames[-1]["data"]["detail"] == "Trade not found"


@pytest.mark.asyncio
async def test_join_and_leave(realtime, make_socket, session_factory, negotiating_trade, buyer):
    ws = make_socket()
    await realtime.connect(ws, buyer)
    room = trade_room(negotiating_trade.id)

    await dispatch_event(ws, {"action": "join_trade", "trade_id": negotiating_trade.id}, session_factory)
    assert ws.frames[-1]["type"] == "joined"
    assert realtime.members(room) == {ws}

    await dispatch_event(ws, {"action": "leave_trade", "trade_id": negotiating_trade.id}, session_factory)
    assert ws.frames[-1]["type"] == "left"
    assert realtime.members(room) == set()


@pytest.mark.asyncio
async def test_send_message_echoes_to_sender_and_room(
    realtime, make_socket, session_factory, negotiating_trade, buyer, seller
):
    buyer_ws, seller_ws = make_socket("buyer"), make_socket("seller")
    await realtime.connect(buyer_ws, buyer)
    await realtime.connect(seller_ws, seller)
    for ws in (buyer_ws, seller_ws):
        await dispatch_event(ws, {"action": "join_trade", "trade_id": negotiating_trade.id}, session_factory)

    await dispatch_event(
        buyer_ws,
        {"action": "send_message", "trade_id": negotiating_trade.id, "content": "Can you do 400?"},
        session_factory,
    )

    for ws in (buyer_ws, seller_ws):
        received = ws.of_type("receive_message")
        assert len(received) == 1
        assert received[0]["data"]["content"] == "Can you do 400?"
        assert received[0]["data"]["sender"]["id"] == buyer.id
        assert received[0]["room"] == trade_room(negotiating_trade.id)


@pytest.mark.asyncio
async def test_messages_arrive_in_storage_order(
    realtime, make_socket, session_factory, scheduled_trade, buyer, seller, supervisor
):
    """Three quick messages from different senders reach every member in the same order."""
    sockets = {}
    for name, user in (("buyer", buyer), ("seller", seller), ("supervisor", supervisor)):
        ws = make_socket(name)
        await realtime.connect(ws, user)
        await dispatch_event(ws, {"action": "join_trade", "trade_id": scheduled_trade.id}, session_factory)
        sockets[name] = ws

    await asyncio.gather(
        dispatch_event(sockets["buyer"], {"action": "send_message", "trade_id": scheduled_trade.id, "content": "one"}, session_factory),
        dispatch_event(sockets["seller"], {"action": "send_message", "trade_id": scheduled_trade.id, "content": "two"}, session_factory),
        dispatch_event(sockets["supervisor"], {"action": "send_message", "trade_id": scheduled_trade.id, "content": "three"}, session_factory),
    )

    sequences = [
        [f["data"]["id"] for f in ws.of_type("receive_message")]
        for ws in sockets.values()
    ]
    assert all(len(seq) == 3 for seq in sequences)
    assert sequences[0] == sequences[1] == sequences[2]
    assert sequences[0] == sorted(sequences[0])


@pytest.mark.asyncio
async def test_send_message_by_outsider_is_rejected(
    realtime, make_socket, session_factory, negotiating_trade, buyer, outsider
):
    buyer_ws, outsider_ws = make_socket("buyer"), make_socket("outsider")
    await realtime.connect(buyer_ws, buyer)
    await realtime.connect(outsider_ws, outsider)
    await dispatch_event(buyer_ws, {"action": "join_trade", "trade_id": negotiating_trade.id}, session_factory)

    await dispatch_event(
        outsider_ws,
        {"action": "send_message", "trade_id": negotiating_trade.id, "content": "spam"},
        session_factory,
    )

    assert outsider_ws.frames[-1]["type"] == "error"
    assert buyer_ws.of_type("receive_message") == []


@pytest.mark.asyncio
async def test_send_empty_message_returns_error(realtime, make_socket, session_factory, negotiating_trade, buyer):
    ws = make_socket()
    await realtime.connect(ws, buyer)
    await dispatch_event(
        ws,
        {"action": "send_message", "trade_id": negotiating_trade.id, "content": "   "},
        session_factory,
    )
    assert ws.frames[-1]["type"] == "error"
    assert ws.of_type("receive_message") == []


@pytest.mark.asyncio
async def test_non_text_content_returns_error(realtime, make_socket, session_factory, negotiating_trade, buyer):
    ws = make_socket()
    await realtime.connect(ws, buyer)

    await dispatch_event(
        ws,
        {"action": "send_message", "trade_id": negotiating_trade.id, "content": 123},
        session_factory,
    )

    assert ws.frames[-1]["type"] == "error"
    assert ws.frames[-1]["data"]["detail"] == "Message content must be text"


@pytest.mark.asyncio
async def test_storage_failure_keeps_connection_usable(
    realtime, make_socket, session_factory, negotiating_trade, buyer
):
    ws = make_socket()
    await realtime.connect(ws, buyer)

    with patch.object(ChatService, "send_message", AsyncMock(side_effect=RuntimeError("db gone"))):
        await dispatch_event(
            ws,
            {"action": "send_message", "trade_id": negotiating_trade.id, "content": "hello"},
            session_factory,
        )

    assert ws.frames[-1]["type"] == "error"
    assert ws.frames[-1]["data"]["detail"] == "Message could not be sent"
    assert realtime.members(trade_room(negotiating_trade.id)) == set()

    await dispatch_event(ws, {"action": "ping"}, session_factory)
    assert ws.frames[-1]["type"] == "pong"


@pytest.mark.asyncio
async def test_rejected_send_does_not_join_room(
    realtime, make_socket, session_factory, negotiating_trade, outsider
):
    ws = make_socket()
    await realtime.connect(ws, outsider)

    await dispatch_event(ws, {"action": "send_message", "trade_id": 99999, "content": "hi"}, session_factory)
    assert ws.frames[-1]["type"] == "error"
    assert realtime.members(trade_room(99999)) == set()

    await dispatch_event(
        ws,
        {"action": "send_message", "trade_id": negotiating_trade.id, "content": "hi"},
        session_factory,
    )
    assert ws.frames[-1]["type"] == "error"
    assert realtime.members(trade_room(negotiating_trade.id)) == set()
    assert realtime.memberships[ws] == set()


@pytest.mark.asyncio
async def test_sender_joins_room_after_successful_send(
    realtime, make_socket, session_factory, negotiating_trade, buyer
):
    ws = make_socket()
    await realtime.connect(ws, buyer)

    await dispatch_event(
        ws,
        {"action": "send_message", "trade_id": negotiating_trade.id, "content": "hi"},
        session_factory,
    )

    assert realtime.members(trade_room(negotiating_trade.id)) == {ws}
    assert len(ws.of_type("receive_message")) == 1


def test_invalid_json_frame_keeps_socket_open():
    with TestClient(app) as client:
        with client.websocket_connect("/api/ws") as ws:
            ws.send_text("this is not json")
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["data"]["detail"] == "Invalid JSON"

            ws.send_json({"action": "ping"})
            assert ws.receive_json()["type"] == "pong"


@pytest.mark.asyncio
async def test_room_lock_released_when_idle():
    manager = ConnectionManager()
    seen: list[bool] = []

    async def job():
        async with manager.sequenced("trade:5"):
            seen.append("trade:5" in manager._room_locks)
            await asyncio.sleep(0)

    await asyncio.gather(job(), job())

    assert seen == [True, True]
    assert manager._room_locks == {}
    assert manager._room_lock_users == {}


@pytest.mark.asyncio
async def test_redis_listener_restarts_after_failure():
    manager = ConnectionManager()
    calls = 0
    resubscribed = asyncio.Event()

    async def listen():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ConnectionError("Connection reset by peer")
        resubscribed.set()
        await asyncio.Event().wait()

    with patch.object(manager, "_listen", listen), \
            patch("srm_swap.api.routes.websocket.REDIS_RETRY_SECONDS", 0):
        await manager.start_redis_listener()
        await asyncio.wait_for(resubscribed.wait(), timeout=1)
        await manager.stop_redis_listener()

    assert calls == 2
    assert manager._redis_task is None
