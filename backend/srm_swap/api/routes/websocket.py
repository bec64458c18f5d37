"""
WebSocket API for trade rooms.

Every trade has a room named trade:<id>. Connections join rooms and receive:
- receive_message: a chat message, after it has been stored
- trade_status_updated: the full trade snapshot after any transition
- issue_updated: a dispute record after it changed

Architecture:
- Clients connect with a JWT and send join/leave/send_message frames
- Mutations for a room run under that room's lock and publish before
  releasing it, so members observe events in commit order
- With realtime_redis_enabled, events go through Redis Pub/Sub so every API
  worker delivers them to its own connections
"""
import asyncio
import json
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from srm_swap.core.config import settings
from srm_swap.core.exceptions import TradeError
from srm_swap.core.roles import can_view_trade
from srm_swap.db.session import async_session_maker
from srm_swap.models.user import User
from srm_swap.schemas.trade import (
    build_issue_response,
    build_message_response,
    build_trade_snapshot,
)
from srm_swap.services.auth import resolve_token_user
from srm_swap.services.chat import ChatService
from srm_swap.services.trades import TradeService

logger = structlog.get_logger()

router = APIRouter()

REDIS_CHANNEL_PREFIX = "room:"
REDIS_RETRY_SECONDS = 1.0


def trade_room(trade_id: int) -> str:
    """Room name for a trade."""
    return f"trade:{trade_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionManager:
    """
    Manages WebSocket connections and trade room membership.

    Features:
    - Room membership per connection and connections per room
    - Per-room lock for ordered delivery
    - Redis Pub/Sub integration for cross-worker messaging
    - Automatic cleanup on disconnect or failed send
    """

    def __init__(self):
        # Map of room -> set of connections
        self.rooms: dict[str, set[WebSocket]] = defaultdict(set)
        # Map of connection -> set of joined rooms
        self.memberships: dict[WebSocket, set[str]] = defaultdict(set)
        # Map of connection -> user
        self.authenticated: dict[WebSocket, User] = {}
        # Map of room -> lock, kept only while someone holds or awaits it
        self._room_locks: dict[str, asyncio.Lock] = {}
        self._room_lock_users: dict[str, int] = {}
        self._redis: Redis | None = None
        self._redis_task: asyncio.Task | None = None
        # Guards the membership maps
        self._lock = asyncio.Lock()

    async def get_redis(self) -> Redis:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = Redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    async def connect(self, websocket: WebSocket, user: User | None = None) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()

        async with self._lock:
            self.memberships[websocket] = set()
            if user:
                self.authenticated[websocket] = user

        logger.info(
            "WebSocket connected",
            user_id=user.id if user else None,
            authenticated=user is not None,
        )

    def user_for(self, websocket: WebSocket) -> User | None:
        return self.authenticated.get(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove the connection from every room it joined."""
        async with self._lock:
            rooms = self.memberships.pop(websocket, set())
            for room in rooms:
                self.rooms[room].discard(websocket)
                if not self.rooms[room]:
                    del self.rooms[room]
            user = self.authenticated.pop(websocket, None)

        logger.info(
            "WebSocket disconnected",
            user_id=user.id if user else None,
            rooms=sorted(rooms),
        )

    async def join(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self.rooms[room].add(websocket)
            self.memberships[websocket].add(room)
        logger.debug("WebSocket joined room", room=room)

    async def leave(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]
            if websocket in self.memberships:
                self.memberships[websocket].discard(room)
        logger.debug("WebSocket left room", room=room)

    def members(self, room: str) -> set[WebSocket]:
        return set(self.rooms.get(room, ()))

    @asynccontextmanager
    async def sequenced(self, room: str) -> AsyncIterator[None]:
        """
        Serialize mutation and publication for one room.

        Usage:
            async with manager.sequenced(trade_room(trade.id)):
                trade = await service.accept_deal(...)
                await publish_trade_update(trade)
        """
        lock = self._room_locks.setdefault(room, asyncio.Lock())
        self._room_lock_users[room] = self._room_lock_users.get(room, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._room_lock_users[room] -= 1
            if not self._room_lock_users[room]:
                del self._room_lock_users[room]
                del self._room_locks[room]

    async def broadcast(self, room: str, event: str, data: Any) -> int:
        """
        Send an event to every connection in a room.

        Returns:
            Number of connections that received the event
        """
        connections = self.members(room)
        if not connections:
            return 0

        frame = {"type": event, "data": data, "room": room, "timestamp": _now()}
        sent = 0
        dead: list[WebSocket] = []
        for websocket in connections:
            try:
                await self._send(websocket, frame)
                sent += 1
            except Exception as e:
                logger.warning("Failed to send to WebSocket", room=room, error=str(e))
                dead.append(websocket)

        for websocket in dead:
            await self.disconnect(websocket)

        return sent

    async def publish(self, room: str, event: str, data: Any) -> None:
        """Deliver an event locally, or through Redis when the bridge is on."""
        if not settings.realtime_redis_enabled:
            await self.broadcast(room, event, data)
            return

        redis = await self.get_redis()
        await redis.publish(
            f"{REDIS_CHANNEL_PREFIX}{room}",
            json.dumps({"type": event, "data": data}, default=str),
        )

    async def _send(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        """Send a message to a WebSocket connection."""
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning("WebSocket send failed", error=str(e))
            raise

    async def send_event(
        self,
        websocket: WebSocket,
        event: str,
        data: Any = None,
        room: str | None = None,
    ) -> None:
        await self._send(websocket, {"type": event, "data": data, "room": room, "timestamp": _now()})

    async def send_error(self, websocket: WebSocket, error: str, room: str | None = None) -> None:
        """Send an error frame to a single connection."""
        await self.send_event(websocket, "error", {"detail": error}, room)

    async def start_redis_listener(self) -> None:
        """
        Start the Redis Pub/Sub listener.

        Listens on room:* and re-broadcasts to local connections.
        """
        if self._redis_task is not None:
            return

        async def listener():
            while True:
                try:
                    await self._listen()
                except asyncio.CancelledError:
                    logger.info("Redis Pub/Sub listener cancelled")
                    raise
                except Exception as e:
                    # Published events are lost until the subscription is back
                    logger.error(
                        "Redis Pub/Sub listener failed, restarting",
                        error=str(e),
                        retry_in=REDIS_RETRY_SECONDS,
                        exc_info=True,
                    )
                    await asyncio.sleep(REDIS_RETRY_SECONDS)

        self._redis_task = asyncio.create_task(listener())

    async def _listen(self) -> None:
        """Subscribe to room:* and re-broadcast until the connection ends."""
        redis = await self.get_redis()
        pubsub = redis.pubsub()
        await pubsub.psubscribe(f"{REDIS_CHANNEL_PREFIX}*")

        logger.info("Redis Pub/Sub listener started")

        try:
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                room = message["channel"][len(REDIS_CHANNEL_PREFIX):]
                try:
                    payload = json.loads(message["data"])
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from Redis", channel=message["channel"])
                    continue
                await self.broadcast(room, payload["type"], payload.get("data"))
        finally:
            await pubsub.aclose()

        raise ConnectionError("Redis Pub/Sub subscription ended")

    async def stop_redis_listener(self) -> None:
        """Stop the Redis Pub/Sub listener."""
        if self._redis_task:
            self._redis_task.cancel()
            try:
                await self._redis_task
            except asyncio.CancelledError:
                pass
            self._redis_task = None

    async def close(self) -> None:
        """Stop the listener and release the Redis client."""
        await self.stop_redis_listener()
        if self._redis:
            await self._redis.aclose()
            self._redis = None


# Global connection manager instance
manager = ConnectionManager()


# Helpers for publishing from the HTTP routes
async def publish_trade_update(trade) -> None:
    """Broadcast the trade snapshot to its room."""
    snapshot = build_trade_snapshot(trade)
    await manager.publish(
        trade_room(trade.id),
        "trade_status_updated",
        snapshot.model_dump(mode="json"),
    )


async def publish_issue_update(issue) -> None:
    """Broadcast a dispute record to its trade's room."""
    await manager.publish(
        trade_room(issue.trade_id),
        "issue_updated",
        build_issue_response(issue).model_dump(mode="json"),
    )


def _trade_id(data: dict[str, Any]) -> int | None:
    try:
        return int(data.get("trade_id"))
    except (TypeError, ValueError):
        return None


async def dispatch_event(
    websocket: WebSocket,
    data: dict[str, Any],
    session_factory: Callable[[], AsyncSession] = async_session_maker,
    connections: ConnectionManager | None = None,
) -> None:
    """
    Handle one client frame.

    Frames:
    {"action": "join_trade", "trade_id": 12}
    {"action": "leave_trade", "trade_id": 12}
    {"action": "send_message", "trade_id": 12, "content": "Still available?"}
    {"action": "ping"}
    """
    connections = connections or manager
    action = data.get("action")

    if action == "ping":
        await connections.send_event(websocket, "pong")
        return

    if action not in ("join_trade", "leave_trade", "send_message"):
        await connections.send_error(websocket, f"Unknown action: {action}")
        return

    trade_id = _trade_id(data)
    if trade_id is None:
        await connections.send_error(websocket, "trade_id is required")
        return
    room = trade_room(trade_id)

    if action == "leave_trade":
        await connections.leave(websocket, room)
        await connections.send_event(websocket, "left", {"trade_id": trade_id}, room)
        return

    user = connections.user_for(websocket)
    if user is None:
        await connections.send_error(websocket, "Authentication required", room)
        return

    if action == "join_trade":
        async with session_factory() as db:
            trade = await TradeService(db).get_trade(trade_id)
        if trade is None:
            await connections.send_error(websocket, "Trade not found", room)
            return
        if not can_view_trade(trade, user):
            # Room membership is not restricted; record who listens in
            logger.warning("Trade room joined by non-member", room=room, user_id=user.id)
        await connections.join(websocket, room)
        await connections.send_event(websocket, "joined", {"trade_id": trade_id}, room)
        return

    async with connections.sequenced(room):
        try:
            async with session_factory() as db:
                message = await ChatService(db).send_message(trade_id, user, data.get("content"))
                payload = build_message_response(message).model_dump(mode="json")
        except TradeError as e:
            await connections.send_error(websocket, str(e), room)
            return
        except Exception as e:
            logger.error(
                "Failed to store trade message",
                room=room,
                user_id=user.id,
                error=str(e),
                exc_info=True,
            )
            await connections.send_error(websocket, "Message could not be sent", room)
            return
        # The sender always hears its own echo
        await connections.join(websocket, room)
        await connections.publish(room, "receive_message", payload)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """
    WebSocket endpoint for trade rooms.

    Authentication:
    Pass JWT token as query parameter: /ws?token=<jwt_token>
    Unauthenticated connections may only ping.
    """
    user = None
    if token:
        async with async_session_maker() as db:
            user = await resolve_token_user(db, token)
        if user is None:
            logger.debug("WebSocket auth failed")

    await manager.connect(websocket, user)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                await manager.send_error(websocket, "Invalid JSON")
                continue
            if not isinstance(data, dict):
                await manager.send_error(websocket, "Frames must be JSON objects")
                continue
            await dispatch_event(websocket, data)
    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error", error=str(e), exc_info=True)
        await manager.disconnect(websocket)
