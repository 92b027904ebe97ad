import asyncio
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from app.infra.realtime.events import RealtimeEvent

logger = structlog.get_logger(__name__)


def build_envelope(
    event: RealtimeEvent | str,
    payload: Mapping[str, Any],
    room: str | None = None,
) -> dict[str, Any]:
    return {
        "event": event.value if isinstance(event, RealtimeEvent) else event,
        "room": room,
        "payload": dict(payload),
        "sent_at": datetime.now(UTC).isoformat(),
    }


class InMemoryRealtimeHub:
    """In-process room hub for websocket fan-out.

    Delivery is at-most-once: a broadcast to an empty room is dropped and
    nothing is replayed. Clients reconcile through the read APIs after a
    reconnect.
    """

    def __init__(self) -> None:
        self._room_members: dict[str, set[WebSocket]] = defaultdict(set)
        self._socket_rooms: dict[WebSocket, set[str]] = defaultdict(set)
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)

    def member_count(self, room: str) -> int:
        members = self._room_members.get(room)
        if members is None:
            return 0
        return len(members)

    def connection_count(self) -> int:
        return len(self._connections)

    def is_member(self, websocket: WebSocket, room: str) -> bool:
        return websocket in self._room_members.get(room, ())

    def rooms_of(self, websocket: WebSocket) -> set[str]:
        return set(self._socket_rooms.get(websocket, ()))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
            rooms = self._socket_rooms.pop(websocket, set())
            for room in rooms:
                self._discard_member(room, websocket)

    async def join(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self._room_members[room].add(websocket)
            self._socket_rooms[websocket].add(room)

    async def leave(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self._discard_member(room, websocket)

            rooms = self._socket_rooms.get(websocket)
            if rooms is not None:
                rooms.discard(room)
                if not rooms:
                    self._socket_rooms.pop(websocket, None)

    async def broadcast(
        self,
        rooms: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
        *,
        exclude: WebSocket | None = None,
    ) -> None:
        unique_rooms = [room for room in dict.fromkeys(rooms) if room]
        if not unique_rooms:
            return

        async with self._lock:
            recipients_by_room = {
                room: set(self._room_members.get(room, set())) for room in unique_rooms
            }

        for room, recipients in recipients_by_room.items():
            recipients.discard(exclude)
            if not recipients:
                continue

            envelope = build_envelope(event, payload, room=room)
            stale = await self._send_all(recipients, envelope)
            if stale:
                async with self._lock:
                    for websocket in stale:
                        self._discard_member(room, websocket)
                        rooms_left = self._socket_rooms.get(websocket, set())
                        rooms_left.discard(room)
                        if not rooms_left:
                            self._socket_rooms.pop(websocket, None)

    async def broadcast_all(self, event: RealtimeEvent, payload: Mapping[str, Any]) -> None:
        async with self._lock:
            recipients = set(self._connections)
        if not recipients:
            return

        stale = await self._send_all(recipients, build_envelope(event, payload))
        if stale:
            async with self._lock:
                for websocket in stale:
                    self._connections.discard(websocket)

    async def _send_all(
        self, recipients: set[WebSocket], envelope: dict[str, Any]
    ) -> list[WebSocket]:
        stale: list[WebSocket] = []
        for websocket in recipients:
            try:
                await websocket.send_json(envelope)
            except (RuntimeError, WebSocketDisconnect):
                stale.append(websocket)
        if stale:
            logger.info(
                "realtime_stale_connections_dropped",
                realtime_event=envelope["event"],
                room=envelope["room"],
                count=len(stale),
            )
        return stale

    def _discard_member(self, room: str, websocket: WebSocket) -> None:
        members = self._room_members.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            self._room_members.pop(room, None)
