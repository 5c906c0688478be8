"""
Realtime gateway: authenticated WebSocket connections, group rooms, fan-out.

Features:
- Authentication before the socket is accepted (close 4001 on failure)
- One routable connection per user via ``ConnectionRegistry`` (newest wins)
- Group rooms joined on request, after a membership check
- Fan-out of persisted messages and seen receipts
- Typed error events to the originating connection; one bad frame never
  takes the connection down
- Dead-connection cleanup on send failure
- Frames from one connection are handled strictly in arrival order

Inbound frames are JSON objects with a ``type``:

    sendDirectMessage   {receiverId, message, messageType?, fileUrl?, clientId?}
    sendGroupMessage    {groupId, message, messageType?, fileUrl?, clientId?}
    markDirectSeen      {senderId}
    markGroupSeen       {groupId}
    joinGroup           {groupId}
    leaveGroup          {groupId}
    ping

Outbound frames:

    newDirectMessage, newGroupMessage         {data, clientId?}
    messagesMarkedAsSeen                      {senderId, receiverId, updated}
    groupMessagesMarkedAsSeen                 {groupId, userId, updated}
    updateOnlineUsers                         {users}
    joinedGroup, leftGroup, removedFromGroup  {groupId}
    sendMessageError, markSeenError,
    joinGroupError, error                     {code, message, clientId?}
    pong
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from fastapi import Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, authenticate_token
from app.core.cache import ChatCache, get_cache
from app.core.config import get_settings
from app.core.database import get_session_context
from app.core.errors import ChatError, InvalidInput, NotGroupMember, Unauthorized, run_with_timeout
from app.core.registry import ConnectionRegistry
from app.services import groups as group_service
from app.services import messages as message_service

from teamchat_shared.schemas.messages import (
    DirectMessageRead,
    DirectMessageSend,
    GroupMessageRead,
    GroupMessageSend,
    GroupRoomRequest,
    GroupSeenReceipt,
    MarkDirectSeen,
    MarkGroupSeen,
    SeenReceipt,
)

logger = logging.getLogger(__name__)
settings = get_settings()

CLOSE_AUTH_FAILED = 4001
CLOSE_GOING_AWAY = 1001

M = TypeVar("M", bound=BaseModel)
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
CacheFactory = Callable[[], Awaitable[ChatCache]]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class Connection:
    """A single WebSocket connection and its per-connection state."""

    __slots__ = ("id", "websocket", "user_id", "jti", "state", "rooms", "_send_lock")

    def __init__(self, websocket: WebSocket, user_id: UUID, jti: str | None = None):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.jti = jti
        self.state = ConnectionState.CONNECTING
        self.rooms: set[UUID] = set()
        self._send_lock = asyncio.Lock()

    async def send(self, payload: dict[str, Any]) -> bool:
        """Send one JSON frame. Returns False if the socket is gone."""
        if self.state == ConnectionState.DISCONNECTED:
            return False
        try:
            async with self._send_lock:
                await self.websocket.send_text(json.dumps(payload))
        except Exception as exc:
            logger.debug("Send failed on %s: %r", self.id, exc)
            return False
        return True


def _parse(model: type[M], frame: dict[str, Any]) -> M:
    try:
        return model.model_validate(frame)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "frame"
        raise InvalidInput(f"{field}: {first.get('msg', 'invalid value')}")


def _error_frame(event: str, exc: ChatError, client_id: Any = None) -> dict[str, Any]:
    frame = {"type": event, "code": exc.code, "message": exc.message}
    if client_id is not None:
        frame["clientId"] = client_id
    return frame


class RealtimeGateway:
    """
    Owns every live connection of this process.

    ``_connections`` and ``_rooms`` are guarded by ``_lock``; the
    user -> connection mapping lives in the registry, which has its own lock.
    """

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        session_factory: SessionFactory = get_session_context,
        cache_factory: CacheFactory = get_cache,
    ) -> None:
        self.registry = registry or ConnectionRegistry()
        self._session_factory = session_factory
        self._cache_factory = cache_factory
        self._connections: dict[str, Connection] = {}
        # group_id -> connection ids joined to that group's room
        self._rooms: dict[UUID, set[str]] = {}
        self._lock = asyncio.Lock()
        self._handlers: dict[str, Callable[[Connection, dict[str, Any]], Awaitable[None]]] = {
            "sendDirectMessage": self._on_send_direct_message,
            "sendGroupMessage": self._on_send_group_message,
            "markDirectSeen": self._on_mark_direct_seen,
            "markGroupSeen": self._on_mark_group_seen,
            "joinGroup": self._on_join_group,
            "leaveGroup": self._on_leave_group,
            "ping": self._on_ping,
        }

    @property
    def connections(self) -> dict[str, Connection]:
        return self._connections

    async def room_members(self, group_id: UUID) -> set[str]:
        async with self._lock:
            return set(self._rooms.get(group_id, ()))

    # --- Lifecycle ---

    async def authenticate(self, token: str | None) -> AuthenticatedUser:
        if not token:
            raise Unauthorized()
        async with self._session_factory() as session:
            return await authenticate_token(token, session)

    async def connect(self, websocket: WebSocket, auth: AuthenticatedUser) -> Connection:
        """Accept an authenticated socket and make it the user's routable connection."""
        conn = Connection(websocket, auth.user_id, auth.jti)
        conn.state = ConnectionState.AUTHENTICATED
        await websocket.accept()

        async with self._lock:
            self._connections[conn.id] = conn
        await self.registry.register(auth.user_id, conn.id)
        conn.state = ConnectionState.ACTIVE

        logger.info(
            "WebSocket connected: user=%s connection=%s (total: %d)",
            auth.user_id, conn.id, len(self._connections),
        )
        await self.broadcast_online_users()
        return conn

    async def disconnect(self, conn: Connection, *, notify: bool = True) -> None:
        """Forget a connection: rooms, connection table, registry."""
        if conn.state == ConnectionState.DISCONNECTED:
            return
        conn.state = ConnectionState.DISCONNECTED

        async with self._lock:
            self._connections.pop(conn.id, None)
            for group_id in conn.rooms:
                members = self._rooms.get(group_id)
                if members is not None:
                    members.discard(conn.id)
                    if not members:
                        del self._rooms[group_id]
            conn.rooms.clear()

        offline = await self.registry.unregister(conn.id)
        logger.info(
            "WebSocket disconnected: user=%s connection=%s offline=%s",
            conn.user_id, conn.id, offline is not None,
        )
        if notify:
            await self.broadcast_online_users()

    async def serve(self, websocket: WebSocket, auth: AuthenticatedUser) -> None:
        """Run one connection until the client goes away."""
        conn = await self.connect(websocket, auth)
        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_frame(conn, raw)
        except WebSocketDisconnect as exc:
            logger.debug("Client closed %s with code %s", conn.id, exc.code)
        finally:
            await self.disconnect(conn)

    async def close_for_revoked_jwt(self, jti: str) -> None:
        """Close all connections opened with a revoked credential."""
        to_close = [c for c in list(self._connections.values()) if c.jti == jti]
        for conn in to_close:
            await self._close_socket(conn, CLOSE_AUTH_FAILED, "credential_revoked")
            await self.disconnect(conn)

    async def close(self) -> None:
        """Close every connection (application shutdown)."""
        for conn in list(self._connections.values()):
            await self._close_socket(conn, CLOSE_GOING_AWAY, "server_shutdown")
            await self.disconnect(conn, notify=False)
        async with self._lock:
            self._rooms.clear()
        await self.registry.clear()

    async def _close_socket(self, conn: Connection, code: int, reason: str) -> None:
        try:
            await conn.websocket.close(code=code, reason=reason)
        except Exception as exc:
            logger.debug("Close failed on %s: %r", conn.id, exc)

    # --- Rooms ---

    async def join_room(self, conn: Connection, group_id: UUID) -> None:
        async with self._lock:
            self._rooms.setdefault(group_id, set()).add(conn.id)
            conn.rooms.add(group_id)

    async def leave_room(self, conn: Connection, group_id: UUID) -> None:
        async with self._lock:
            members = self._rooms.get(group_id)
            if members is not None:
                members.discard(conn.id)
                if not members:
                    del self._rooms[group_id]
            conn.rooms.discard(group_id)

    async def evict_user_from_room(self, group_id: UUID, user_id: UUID) -> None:
        """Remove every connection of ``user_id`` from a room (membership revoked)."""
        evicted = [
            c for c in list(self._connections.values())
            if c.user_id == user_id and group_id in c.rooms
        ]
        for conn in evicted:
            await self.leave_room(conn, group_id)
            await conn.send({"type": "removedFromGroup", "groupId": str(group_id)})
        if evicted:
            logger.info("Evicted user %s from group %s (%d connections)", user_id, group_id, len(evicted))

    # --- Delivery ---

    async def _send_many(self, targets: Iterable[Connection], payload: dict[str, Any]) -> None:
        dead = [conn for conn in targets if not await conn.send(payload)]
        for conn in dead:
            await self.disconnect(conn, notify=False)
        if dead:
            await self.broadcast_online_users()

    async def _current_connections(self, user_ids: Iterable[UUID]) -> dict[str, Connection]:
        found: dict[str, Connection] = {}
        for user_id in user_ids:
            connection_id = await self.registry.lookup(user_id)
            conn = self._connections.get(connection_id) if connection_id else None
            if conn is not None:
                found[conn.id] = conn
        return found

    async def send_to_user(self, user_id: UUID, payload: dict[str, Any]) -> bool:
        """Push to the user's current connection. False when the user is offline."""
        targets = await self._current_connections([user_id])
        if not targets:
            return False
        await self._send_many(targets.values(), payload)
        return True

    async def broadcast_online_users(self) -> None:
        users = sorted(str(user_id) for user_id in await self.registry.snapshot())
        payload = {"type": "updateOnlineUsers", "users": users}
        dead = [conn for conn in list(self._connections.values()) if not await conn.send(payload)]
        for conn in dead:
            await self.disconnect(conn, notify=False)

    async def deliver_direct_message(
        self,
        msg: DirectMessageRead,
        origin: Connection | None = None,
        client_id: Any = None,
    ) -> None:
        """Push a persisted direct message to the sender's and receiver's current connections."""
        payload: dict[str, Any] = {
            "type": "newDirectMessage",
            "data": msg.model_dump(mode="json", by_alias=True),
        }
        if client_id is not None:
            payload["clientId"] = client_id

        targets = await self._current_connections([msg.sender_id, msg.receiver_id])
        if origin is not None and origin.state == ConnectionState.ACTIVE:
            targets[origin.id] = origin
        await self._send_many(targets.values(), payload)

    async def deliver_group_message(
        self,
        msg: GroupMessageRead,
        origin: Connection | None = None,
        client_id: Any = None,
    ) -> None:
        """Push a persisted group message to the group's room and to the sender."""
        payload: dict[str, Any] = {
            "type": "newGroupMessage",
            "data": msg.model_dump(mode="json", by_alias=True),
        }
        if client_id is not None:
            payload["clientId"] = client_id

        room = await self.room_members(msg.group_id)
        targets = {cid: self._connections[cid] for cid in room if cid in self._connections}
        targets.update(await self._current_connections([msg.sender_id]))
        if origin is not None and origin.state == ConnectionState.ACTIVE:
            targets[origin.id] = origin
        await self._send_many(targets.values(), payload)

    async def notify_direct_seen(self, receipt: SeenReceipt) -> None:
        """Tell the original sender their messages were seen.

        Nothing is sent when the receipt changed no rows.
        """
        if not receipt.updated:
            return
        await self.send_to_user(
            receipt.sender_id,
            {"type": "messagesMarkedAsSeen", **receipt.model_dump(mode="json", by_alias=True)},
        )

    async def notify_group_seen(self, receipt: GroupSeenReceipt, senders: Iterable[UUID]) -> None:
        payload = {
            "type": "groupMessagesMarkedAsSeen",
            **receipt.model_dump(mode="json", by_alias=True),
        }
        for sender_id in senders:
            await self.send_to_user(sender_id, payload)

    # --- Inbound frames ---

    async def handle_frame(self, conn: Connection, raw: str) -> None:
        """Dispatch one inbound frame. Errors go back to ``conn`` as events."""
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            await conn.send({
                "type": "error",
                "code": "INVALID_JSON",
                "message": "Could not parse message as JSON.",
            })
            return
        if not isinstance(frame, dict):
            await conn.send({
                "type": "error",
                "code": "INVALID_JSON",
                "message": "Frames must be JSON objects.",
            })
            return

        event = frame.get("type")
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            await conn.send({
                "type": "error",
                "code": "UNKNOWN_EVENT",
                "message": f"Unknown event type: {event!r}",
            })
            return

        try:
            await handler(conn, frame)
        except Exception:
            logger.exception("Handler for %s failed on %s", event, conn.id)
            await conn.send({
                "type": "error",
                "code": ChatError.code,
                "message": ChatError.default_message,
            })

    async def _on_ping(self, conn: Connection, frame: dict[str, Any]) -> None:
        await conn.send({"type": "pong"})

    async def _on_send_direct_message(self, conn: Connection, frame: dict[str, Any]) -> None:
        client_id = frame.get("clientId")
        try:
            req = _parse(DirectMessageSend, frame)
            async with self._session_factory() as session:
                cache = await self._cache_factory()
                msg = await message_service.send_direct_message(session, cache, conn.user_id, req)
        except ChatError as exc:
            logger.info("Send rejected on %s: %s", conn.id, exc.code)
            await conn.send(_error_frame("sendMessageError", exc, client_id))
            return
        await self.deliver_direct_message(msg, origin=conn, client_id=client_id)

    async def _on_send_group_message(self, conn: Connection, frame: dict[str, Any]) -> None:
        client_id = frame.get("clientId")
        try:
            req = _parse(GroupMessageSend, frame)
            async with self._session_factory() as session:
                cache = await self._cache_factory()
                msg = await message_service.send_group_message(session, cache, conn.user_id, req)
        except ChatError as exc:
            logger.info("Send rejected on %s: %s", conn.id, exc.code)
            await conn.send(_error_frame("sendMessageError", exc, client_id))
            return
        await self.deliver_group_message(msg, origin=conn, client_id=client_id)

    async def _on_mark_direct_seen(self, conn: Connection, frame: dict[str, Any]) -> None:
        try:
            req = _parse(MarkDirectSeen, frame)
            async with self._session_factory() as session:
                cache = await self._cache_factory()
                receipt = await message_service.mark_direct_seen(
                    session, cache, conn.user_id, req.sender_id
                )
        except ChatError as exc:
            await conn.send(_error_frame("markSeenError", exc))
            return
        await self.notify_direct_seen(receipt)

    async def _on_mark_group_seen(self, conn: Connection, frame: dict[str, Any]) -> None:
        try:
            req = _parse(MarkGroupSeen, frame)
            async with self._session_factory() as session:
                cache = await self._cache_factory()
                receipt, senders = await message_service.mark_group_seen(
                    session, cache, conn.user_id, req.group_id
                )
        except ChatError as exc:
            await conn.send(_error_frame("markSeenError", exc))
            return
        await self.notify_group_seen(receipt, senders)

    async def _on_join_group(self, conn: Connection, frame: dict[str, Any]) -> None:
        try:
            req = _parse(GroupRoomRequest, frame)
            async with self._session_factory() as session:
                member = await run_with_timeout(
                    group_service.is_group_member(req.group_id, conn.user_id, session),
                    settings.store_timeout_seconds,
                )
            if not member:
                raise NotGroupMember()
        except ChatError as exc:
            await conn.send(_error_frame("joinGroupError", exc))
            return

        await self.join_room(conn, req.group_id)
        await conn.send({"type": "joinedGroup", "groupId": str(req.group_id)})

    async def _on_leave_group(self, conn: Connection, frame: dict[str, Any]) -> None:
        try:
            req = _parse(GroupRoomRequest, frame)
        except ChatError as exc:
            await conn.send(_error_frame("error", exc))
            return
        await self.leave_room(conn, req.group_id)
        await conn.send({"type": "leftGroup", "groupId": str(req.group_id)})


def get_gateway(request: Request) -> RealtimeGateway:
    """FastAPI dependency: the process-wide gateway created in ``create_app``."""
    return request.app.state.gateway
